"""
capsession Capture Module

Control of the external tools that do the real work:
- Packet capture with rotation (tcpdump)
- Post-processing of finished capture files
"""

from .sniffer import CaptureRunner, pid_alive, read_cmdline
from .postprocess import PostProcessor

__all__ = [
    'CaptureRunner',
    'PostProcessor',
    'pid_alive',
    'read_cmdline',
]
