"""
capsession Common Utilities

Shared utilities and helpers used across capsession modules.
"""

from .utils import run_command, find_binary, require_binary, confirm, format_elapsed

__all__ = [
    'run_command',
    'find_binary',
    'require_binary',
    'confirm',
    'format_elapsed',
]
