#!/usr/bin/env python3
"""
Tap Monitor Script
==================

Standalone script to check a running ttysrv instance from the outside.

This script:
    1. Connects to the TCP tap of a running ttysrv
    2. Counts received bytes for a configurable duration
    3. Logs throughput every few seconds
    4. Reports a final summary (exit 1 if nothing was received)

Prerequisites:
    - ttysrv must be running and the device must be producing output

Usage:
    python scripts/tap_monitor.py --duration 60
    python scripts/tap_monitor.py --host 192.168.1.20 --port 666
"""

import argparse
import asyncio
import logging
import os
import sys
import time


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_monitor(
    host: str,
    port: int,
    duration: int,
    report_interval: int,
) -> dict:
    """
    Read the tap for `duration` seconds.
    
    Args:
        host: ttysrv host
        port: ttysrv tap port
        duration: Seconds to monitor
        report_interval: Seconds between progress reports
    
    Returns:
        Final metrics dict
    """
    logger.info(f"Connecting to tap at {host}:{port} for {duration}s")
    reader, writer = await asyncio.open_connection(host, port)
    
    start_time = time.time()
    last_report_time = start_time
    total_bytes = 0
    chunks = 0
    last_report_bytes = 0
    disconnected = False
    
    try:
        while True:
            remaining = duration - (time.time() - start_time)
            if remaining <= 0:
                break
            
            try:
                data = await asyncio.wait_for(reader.read(4096), timeout=min(remaining, 0.5))
            except asyncio.TimeoutError:
                data = None
            
            if data == b"":
                logger.warning("Tap closed by server")
                disconnected = True
                break
            if data:
                total_bytes += len(data)
                chunks += 1
            
            time_since_report = time.time() - last_report_time
            if time_since_report >= report_interval:
                rate = (total_bytes - last_report_bytes) / time_since_report
                logger.info(f"Received {total_bytes} bytes ({rate:.0f} B/s)")
                last_report_time = time.time()
                last_report_bytes = total_bytes
    finally:
        writer.close()
    
    total_time = time.time() - start_time
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Bytes received: {total_bytes} in {chunks} reads")
    logger.info(f"Average rate: {total_bytes / total_time if total_time > 0 else 0:.0f} B/s")
    logger.info("=" * 60)
    
    return {
        "duration": total_time,
        "bytes_received": total_bytes,
        "reads": chunks,
        "disconnected": disconnected,
    }


def main():
    parser = argparse.ArgumentParser(description="Monitor the live stream of a running ttysrv")
    parser.add_argument("--host", default="127.0.0.1", help="ttysrv host (default: 127.0.0.1)")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("TTYSRV_PORT", 666)),
        help="ttysrv tap port (default: 666)",
    )
    parser.add_argument("--duration", type=int, default=30, help="Seconds to monitor (default: 30)")
    parser.add_argument("--report-interval", type=int, default=5, help="Seconds between reports (default: 5)")
    args = parser.parse_args()
    
    result = asyncio.run(run_monitor(
        host=args.host,
        port=args.port,
        duration=args.duration,
        report_interval=args.report_interval,
    ))
    
    sys.exit(0 if result["bytes_received"] > 0 else 1)


if __name__ == "__main__":
    main()
