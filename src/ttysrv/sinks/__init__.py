"""
Sinks Module
============

Consumers of the broadcast stream:
    - LogFileSink: capture file + stdout echo (write failure is fatal)
    - TapServer: raw TCP tap, one subscription per client (failures local)
"""

from ttysrv.sinks.log_file import LogFileSink
from ttysrv.sinks.tcp import TapClient, TapServer


__all__ = [
    "LogFileSink",
    "TapClient",
    "TapServer",
]
