"""
Capture session errors.

Operations report ordinary outcomes (warnings, declined prompts) through
their return values. These exceptions are reserved for conditions that must
abort the current command.
"""


class CaptureSessionError(Exception):
    """Base class for all capsession errors."""


class ConfigError(CaptureSessionError):
    """Host configuration file could not be read or has the wrong shape."""


class MissingBinaryError(CaptureSessionError):
    """A required external executable is not available."""

    def __init__(self, binary: str, purpose: str = ""):
        self.binary = binary
        self.purpose = purpose
        message = f"Required executable not found: {binary}"
        if purpose:
            message += f" ({purpose})"
        super().__init__(message)


class SessionError(CaptureSessionError):
    """The session directory tree is not in a state the command can act on."""
