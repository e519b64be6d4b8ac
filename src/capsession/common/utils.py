"""
capsession Common Utilities

Shared helpers for running external commands, asking the operator for
confirmation and formatting capture durations.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from ..errors import MissingBinaryError

logger = logging.getLogger("capsession.common")

# Exit code reported for a command that could not be executed at all
COMMAND_NOT_FOUND_EXIT_CODE = 127

# Time conversion
SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600


def run_command(cmd: List[str], cwd: Optional[Path] = None,
                check: bool = False, capture: bool = True) -> Tuple[int, str, str]:
    """
    Run an external command with proper error handling.

    Args:
        cmd: Command and arguments as list
        cwd: Working directory for the command
        check: Raise exception on non-zero exit
        capture: Capture stdout/stderr

    Returns:
        Tuple of (returncode, stdout, stderr)
    """
    logger.debug("Running command: %s", ' '.join(cmd))

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            check=check,
            capture_output=capture,
            text=True
        )
        return result.returncode, result.stdout or "", result.stderr or ""
    except subprocess.CalledProcessError as e:
        return e.returncode, e.stdout or "", e.stderr or ""
    except (FileNotFoundError, NotADirectoryError):
        return COMMAND_NOT_FOUND_EXIT_CODE, "", f"Command not found: {cmd[0]}"


def find_binary(name: str) -> Optional[str]:
    """Resolve an executable name or path, returning None if unavailable."""
    return shutil.which(name)


def require_binary(name: str, purpose: str = "") -> str:
    """
    Resolve an executable or abort.

    Raises:
        MissingBinaryError: If the executable cannot be found
    """
    path = find_binary(name)
    if path is None:
        raise MissingBinaryError(name, purpose)
    logger.debug("Found %s at %s", name, path)
    return path


def confirm(question: str, default: bool = False) -> bool:
    """
    Ask the operator a yes/no question.

    EOF and Ctrl+C count as the default answer, which is "no" unless stated
    otherwise.
    """
    suffix = " [Y/n] " if default else " [y/N] "
    try:
        response = input(question + suffix).lower().strip()
    except (EOFError, KeyboardInterrupt):
        print()
        return default

    if not response:
        return default
    return response in ('y', 'yes')


def format_elapsed(seconds: float) -> str:
    """
    Format a capture duration as e.g. '1h02m05s'.

    Negative durations (clock skew) are shown as zero.
    """
    total = max(0, int(seconds))
    hours, rest = divmod(total, SECONDS_PER_HOUR)
    minutes, secs = divmod(rest, SECONDS_PER_MINUTE)
    return f"{hours}h{minutes:02d}m{secs:02d}s"
