"""
Capture process control.

Launches the external packet-capture tool (tcpdump by default) as a detached
background process with periodic file rotation and a post-rotation hook, and
signals it to terminate.

tcpdump flags used:
    -i IFACE     interface to listen on
    -U           packet-buffered output, files are usable while capturing
    -G SECONDS   rotate the output file every SECONDS
    -w PATTERN   strftime-style output file pattern
    -z COMMAND   run COMMAND on every file closed by rotation
"""

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import List, Optional

from ..errors import SessionError

logger = logging.getLogger("capsession.capture")

CAPTURE_LOG = 'capture.log'
CAPTURE_FILE_PATTERN = '%Y-%m-%d_%H-%M-%S.pcap'

# tcpdump prints this to stderr once the interface is open
LISTENING_MARKER = 'listening on'

STOP_POLL_INTERVAL = 0.1


def pid_alive(pid: int) -> bool:
    """Check whether a process with this PID exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user (e.g. tcpdump started via sudo)
        return True
    return True


def read_cmdline(pid: int) -> Optional[List[str]]:
    """
    Command line of a running process, from /proc.

    Returns:
        The argument list, or None where /proc cannot tell (not Linux,
        process gone, or not readable)
    """
    try:
        raw = Path(f'/proc/{pid}/cmdline').read_bytes()
    except OSError:
        return None
    return [part.decode('utf-8', errors='replace') for part in raw.split(b'\0') if part]


class CaptureRunner:
    """Starts and stops one capture tool process."""

    def __init__(self, binary: str, rotate_seconds: int = 3600,
                 rotate_hook: Optional[str] = None,
                 grace_seconds: float = 1.0, stop_timeout: float = 5.0):
        """
        Args:
            binary: Resolved path of the capture executable
            rotate_seconds: Rotation interval for output files
            rotate_hook: Resolved path of the post-rotation command (optional)
            grace_seconds: How long to wait before checking the tool is listening
            stop_timeout: How long to wait for the tool to exit after SIGTERM
        """
        self.binary = binary
        self.rotate_seconds = rotate_seconds
        self.rotate_hook = rotate_hook
        self.grace_seconds = grace_seconds
        self.stop_timeout = stop_timeout

    def build_command(self, interface: str, session_dir: Path) -> List[str]:
        cmd = [
            self.binary,
            '-i', interface,
            '-U',
            '-G', str(self.rotate_seconds),
            '-w', str(session_dir / CAPTURE_FILE_PATTERN),
        ]
        if self.rotate_hook:
            cmd.extend(['-z', self.rotate_hook])
        return cmd

    def start(self, interface: str, session_dir: Path) -> subprocess.Popen:
        """
        Launch the capture tool in the background.

        The process gets its own session so it survives this command exiting,
        and its output goes to capture.log inside the session directory.
        """
        cmd = self.build_command(interface, session_dir)
        log_path = session_dir / CAPTURE_LOG
        logger.debug("Launching capture: %s", ' '.join(cmd))

        with open(log_path, 'ab') as log:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        logger.debug("Capture running with PID %s", process.pid)
        return process

    def wait_until_listening(self, process: subprocess.Popen, session_dir: Path) -> bool:
        """
        Give the capture tool a short grace period, then check it is listening.

        Returns:
            True if the process is alive and reported it is listening
        """
        time.sleep(self.grace_seconds)

        returncode = process.poll()
        if returncode is not None:
            logger.debug("Capture exited early with code %s", returncode)
            return False

        return self.is_listening(session_dir)

    @staticmethod
    def is_listening(session_dir: Path) -> bool:
        log_path = session_dir / CAPTURE_LOG
        try:
            output = log_path.read_text(encoding='utf-8', errors='replace')
        except FileNotFoundError:
            return False
        return LISTENING_MARKER in output

    @staticmethod
    def read_log_tail(session_dir: Path, lines: int = 5) -> List[str]:
        """Last few lines the capture tool wrote, for error reports."""
        log_path = session_dir / CAPTURE_LOG
        try:
            output = log_path.read_text(encoding='utf-8', errors='replace')
        except FileNotFoundError:
            return []
        return [line for line in output.splitlines() if line.strip()][-lines:]

    def owns(self, pid: int) -> bool:
        """
        Check the process behind a recorded PID is still this capture tool.

        A PID file can outlive its process and the PID be reused by an
        unrelated program. Where the command line cannot be read the PID is
        trusted.
        """
        cmdline = read_cmdline(pid)
        if cmdline is None:
            return True
        if not cmdline:
            return False
        return os.path.basename(cmdline[0]) == os.path.basename(self.binary)

    def stop(self, pid: int) -> bool:
        """
        Send SIGTERM to the capture process and wait for it to exit.

        Returns:
            True if the process was signaled, False if it was already gone
        """
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("Capture process %s already gone", pid)
            return False
        except PermissionError:
            raise SessionError(f"Not permitted to signal capture process {pid}")

        deadline = time.monotonic() + self.stop_timeout
        while pid_alive(pid):
            if time.monotonic() >= deadline:
                logger.warning("Capture process %s still running %.1fs after SIGTERM",
                               pid, self.stop_timeout)
                break
            time.sleep(STOP_POLL_INTERVAL)

        return True
