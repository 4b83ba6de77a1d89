"""
ttysrv Main Application
=======================

Command-line entry point for the serial tap server.

Wiring:
    SerialFrameSource -> BroadcastHub -> {LogFileSink, TapServer clients}
                                      -> status API (optional, read-only)

Exit codes:
    0 - source ended or shutdown was requested
    1 - fatal error (bad config, device, log file or port; log write failure)

Usage:
    ttysrv --dev /dev/ttyUSB0 --baud 115200 --log ttysrv.log --port 666
    python -m ttysrv --config ttysrv.yaml --status-port 8666
"""

import argparse
import asyncio
import logging
import signal
import socket
import sys
from typing import AsyncIterable, Dict, List, Optional

from ttysrv import __version__
from ttysrv.broadcast import BroadcastHub
from ttysrv.config import Settings, load_config, setup_logging
from ttysrv.errors import ConfigError, TtysrvError
from ttysrv.observability import (
    bind_status_socket,
    create_status_app,
    create_status_server,
    serve_status,
)
from ttysrv.sinks import LogFileSink, TapServer
from ttysrv.stream import OverflowPolicy, SerialFrameSource


logger = logging.getLogger(__name__)


# =============================================================================
# Command Line
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments. Unset options leave config values alone."""
    parser = argparse.ArgumentParser(
        prog="ttysrv",
        description="Capture a serial device to a log file and serve it live over TCP",
    )
    parser.add_argument("--dev", help="Serial device to listen on (default: /dev/ttyUSB0)")
    parser.add_argument("--baud", type=int, help="Baud rate (default: 115200)")
    parser.add_argument("--log", help="Log file used to capture serial output (default: ttysrv.log)")
    parser.add_argument("--port", type=int, help="Port to run the tap server on (default: 666)")
    parser.add_argument("--host", help="Address to bind the tap server to (default: 0.0.0.0)")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--queue-size", type=int, help="Frames buffered per subscriber (default: 256)")
    parser.add_argument(
        "--overflow",
        choices=[p.value for p in OverflowPolicy],
        help="What to do when a subscriber falls behind (default: drop_oldest)",
    )
    parser.add_argument(
        "--delivery-timeout",
        type=float,
        help="Seconds a blocked delivery may wait before dropping the subscriber (block only)",
    )
    parser.add_argument("--status-port", type=int, help="Serve the HTTP status API on this port")
    parser.add_argument("--no-echo", action="store_true", help="Do not echo captured output to stdout")
    parser.add_argument("--truncate", action="store_true", help="Truncate the log file instead of appending")
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> Dict[str, Dict[str, object]]:
    """Translate parsed arguments into config overrides."""
    overrides: Dict[str, Dict[str, object]] = {}
    
    def put(section: str, key: str, value: object) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value
    
    put("serial", "device", args.dev)
    put("serial", "baud", args.baud)
    put("log_file", "path", args.log)
    put("server", "port", args.port)
    put("server", "host", args.host)
    put("hub", "subscriber_queue_size", args.queue_size)
    put("hub", "overflow_policy", args.overflow)
    put("hub", "delivery_timeout", args.delivery_timeout)
    put("logging", "level", args.log_level)
    
    if args.status_port is not None:
        put("status", "port", args.status_port)
        put("status", "enabled", True)
    if args.no_echo:
        put("log_file", "echo", False)
    if args.truncate:
        put("log_file", "append", False)
    
    return overrides


# =============================================================================
# Service
# =============================================================================

def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform / not the main thread
            pass


async def run_service(
    settings: Settings,
    source: Optional[AsyncIterable[bytes]] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """
    Run the tap server until the source ends or a stop is requested.
    
    Args:
        settings: Loaded configuration
        source: Frame source to use instead of opening the serial device
        stop_event: Event that requests shutdown when set. A fresh one
            wired to SIGINT/SIGTERM is used when None.
    
    Returns:
        Process exit code (0)
    
    Raises:
        TtysrvError: On any fatal condition
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
    
    serial_source: Optional[SerialFrameSource] = None
    if source is None:
        serial_source = SerialFrameSource(
            device=settings.serial.device,
            baud=settings.serial.baud,
            read_size=settings.serial.read_size,
            read_timeout=settings.serial.read_timeout,
        )
        serial_source.open()
        source = serial_source
    
    hub = BroadcastHub(
        queue_size=settings.hub.subscriber_queue_size,
        overflow_policy=settings.hub.overflow_policy,
        delivery_timeout=settings.hub.delivery_timeout,
    )
    log_sink = LogFileSink(
        hub,
        settings.log_file.path,
        echo=settings.log_file.echo,
        append=settings.log_file.append,
    )
    tap_server = TapServer(hub, host=settings.server.host, port=settings.server.port)
    
    hub_task: Optional[asyncio.Task] = None
    log_task: Optional[asyncio.Task] = None
    stop_task: Optional[asyncio.Task] = None
    status_task: Optional[asyncio.Task] = None
    status_server = None
    status_socket: Optional[socket.socket] = None
    
    try:
        log_sink.open()
        await tap_server.start()
        if settings.status.enabled:
            status_socket = bind_status_socket(settings.status.host, settings.status.port)
        
        log_task = asyncio.create_task(log_sink.run(), name="log_sink")
        hub_task = asyncio.create_task(hub.run(source), name="broadcast_hub")
        stop_task = asyncio.create_task(stop_event.wait(), name="stop_signal")
        watched = {hub_task, log_task, stop_task}
        
        if status_socket is not None:
            app = create_status_app(hub, tap_server, log_sink, serial_source)
            status_server = create_status_server(app, status_socket)
            status_task = asyncio.create_task(
                serve_status(status_server, status_socket),
                name="status_api",
            )
            watched.add(status_task)
        
        done, _ = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
        
        if hub_task in done:
            logger.info("Source ended, letting subscribers drain")
        elif log_task in done:
            logger.error("Log sink stopped unexpectedly")
        else:
            logger.info("Shutdown requested")
        
        if not hub_task.done():
            hub_task.cancel()
        try:
            await hub_task
        except asyncio.CancelledError:
            pass
        
        # Raises LogWriteError if the capture log failed
        await log_task
    
    finally:
        if log_task is not None and not log_task.done():
            log_task.cancel()
        log_sink.close()
        await tap_server.stop(drain_timeout=settings.server.drain_timeout)
        if stop_task is not None:
            stop_task.cancel()
        if serial_source is not None:
            serial_source.close()
        hub.close()
        if status_server is not None and status_task is not None:
            status_server.should_exit = True
            # Raises ServerBindError if uvicorn could not start
            await status_task
        if status_socket is not None:
            status_socket.close()
    
    logger.info(
        f"ttysrv stopped after {hub.frames_ingested} frames "
        f"({hub.metrics()['bytes_ingested']} bytes)"
    )
    return 0


# =============================================================================
# Main Entry Point
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point."""
    args = parse_args(argv)
    
    try:
        settings = load_config(args.config, overrides=build_overrides(args))
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.critical(str(e))
        return 1
    
    setup_logging(settings)
    logger.info(f"Starting ttysrv {__version__}")
    
    try:
        return asyncio.run(run_service(settings))
    except TtysrvError as e:
        logger.critical(f"Fatal: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
