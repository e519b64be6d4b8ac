"""
Session directory layout.

All session state lives in the file system under the log root:

    <log_root>/
        current -> <system>/<session>     exists iff a capture is in progress
        last    -> <system>/<session>     most recently finalized session
        .capture_interface                interface of the active session
        .capture_system                   system of the active session
        .capture_pid                      PID of the capture process
        <system>/<YYYY-MM-DD_HH-MM-SS>[_<tag>]/

Pointers are relative symlinks so the tree can be moved or synced as a whole.
"""

import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger("capsession.session")

TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'
TIMESTAMP_LENGTH = len('YYYY-MM-DD_HH-MM-SS')
TAG_SEPARATOR = '_'

CURRENT_LINK = 'current'
LAST_LINK = 'last'
INTERFACE_MARKER = '.capture_interface'
SYSTEM_MARKER = '.capture_system'
PID_FILE = '.capture_pid'

CAPTURE_GLOB = '*.pcap'

_UNSAFE_TAG_CHARS = re.compile(r'[\s/\\]+')


def sanitize_tag(tag: Optional[str]) -> Optional[str]:
    """Make a user-supplied tag usable as part of a directory name."""
    if tag is None:
        return None
    cleaned = _UNSAFE_TAG_CHARS.sub('-', tag.strip()).strip('.-')
    return cleaned or None


def session_started(session_dir: Path) -> Optional[datetime]:
    """Parse the creation time back out of a session directory name."""
    try:
        return datetime.strptime(session_dir.name[:TIMESTAMP_LENGTH], TIMESTAMP_FORMAT)
    except ValueError:
        return None


class SessionStore:
    """
    File-system bookkeeping for capture sessions under one log root.

    Nothing here starts or stops processes; SessionStore only names, links,
    tags and removes directories and the small state files next to them.
    """

    def __init__(self, log_root: Path):
        self.log_root = Path(log_root)

    @property
    def current_link(self) -> Path:
        return self.log_root / CURRENT_LINK

    @property
    def last_link(self) -> Path:
        return self.log_root / LAST_LINK

    # ------------------------------------------------------------------
    # Pointers
    # ------------------------------------------------------------------

    def current(self) -> Optional[Path]:
        """Return the active session directory, or None if not capturing."""
        return self._follow(self.current_link)

    def last(self) -> Optional[Path]:
        """Return the most recently finalized session directory."""
        return self._follow(self.last_link)

    def set_current(self, session_dir: Path):
        self._point(self.current_link, session_dir)

    def set_last(self, session_dir: Path):
        self._point(self.last_link, session_dir)

    def clear_current(self):
        if self.current_link.is_symlink():
            self.current_link.unlink()
            logger.debug("Removed %s", self.current_link)

    def _follow(self, link: Path) -> Optional[Path]:
        if not link.is_symlink():
            return None
        return (link.parent / os.readlink(link)).resolve()

    def _point(self, link: Path, target: Path):
        """Atomically (re)point a symlink at target using a relative path."""
        link.parent.mkdir(parents=True, exist_ok=True)
        relative = os.path.relpath(Path(target).resolve(), link.parent.resolve())
        tmp = link.with_name(link.name + '.new')
        if tmp.is_symlink() or tmp.exists():
            tmp.unlink()
        tmp.symlink_to(relative)
        os.replace(tmp, link)
        logger.debug("Pointed %s -> %s", link, relative)

    # ------------------------------------------------------------------
    # Session directories
    # ------------------------------------------------------------------

    def create_session(self, system: str, now: Optional[datetime] = None) -> Path:
        """
        Create a new timestamped session directory for a system.

        Two sessions started within the same second get separators appended
        to the later one's name.
        """
        now = now or datetime.now()
        system_dir = self.log_root / system
        system_dir.mkdir(parents=True, exist_ok=True)

        session_dir = system_dir / now.strftime(TIMESTAMP_FORMAT)
        while session_dir.exists():
            session_dir = session_dir.with_name(session_dir.name + TAG_SEPARATOR)
        session_dir.mkdir()
        logger.debug("Created session directory %s", session_dir)
        return session_dir

    def tag_session(self, session_dir: Path, tag: str) -> Path:
        """
        Rename a session directory to '<name>_<tag>'.

        If that name is taken, separators are appended until it is unique.

        Returns:
            The renamed directory
        """
        safe_tag = sanitize_tag(tag)
        if not safe_tag:
            return session_dir

        target = session_dir.with_name(f"{session_dir.name}{TAG_SEPARATOR}{safe_tag}")
        while target.exists() or target.is_symlink():
            target = target.with_name(target.name + TAG_SEPARATOR)

        session_dir.rename(target)
        logger.debug("Renamed %s -> %s", session_dir, target)
        return target

    def remove_session(self, session_dir: Path):
        shutil.rmtree(session_dir)
        logger.debug("Removed session directory %s", session_dir)

    @staticmethod
    def latest_capture(session_dir: Path) -> Optional[Path]:
        """Most recent raw capture file in a session (file names sort by time)."""
        captures = sorted(p for p in session_dir.glob(CAPTURE_GLOB) if p.is_file())
        return captures[-1] if captures else None

    # ------------------------------------------------------------------
    # Marker and PID files
    # ------------------------------------------------------------------

    def write_markers(self, system: str, interface: str):
        self._write_state(SYSTEM_MARKER, system)
        self._write_state(INTERFACE_MARKER, interface)

    def read_markers(self) -> Tuple[Optional[str], Optional[str]]:
        """Return (system, interface) recorded for the active session."""
        return self._read_state(SYSTEM_MARKER), self._read_state(INTERFACE_MARKER)

    def clear_markers(self):
        self._clear_state(SYSTEM_MARKER)
        self._clear_state(INTERFACE_MARKER)

    def write_pid(self, pid: int):
        self._write_state(PID_FILE, str(pid))

    def read_pid(self) -> Optional[int]:
        value = self._read_state(PID_FILE)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning("Ignoring malformed PID file %s", self.log_root / PID_FILE)
            return None

    def clear_pid(self):
        self._clear_state(PID_FILE)

    def _write_state(self, name: str, value: str):
        self.log_root.mkdir(parents=True, exist_ok=True)
        (self.log_root / name).write_text(value + '\n', encoding='utf-8')

    def _read_state(self, name: str) -> Optional[str]:
        path = self.log_root / name
        try:
            value = path.read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            return None
        return value or None

    def _clear_state(self, name: str):
        path = self.log_root / name
        if path.exists():
            path.unlink()
