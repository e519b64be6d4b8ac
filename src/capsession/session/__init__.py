"""
capsession Session Module

Lifecycle management of capture sessions:
- Session directory naming, tagging and current/last pointers
- Metadata descriptor generation
- start / stop / save / discard / status operations
"""

from .layout import SessionStore
from .manager import SessionManager, SessionStatus, StopResult

__all__ = [
    'SessionStore',
    'SessionManager',
    'SessionStatus',
    'StopResult',
]
