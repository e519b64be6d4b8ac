"""
Session metadata descriptor.

Every session directory carries a metadata.yaml describing who captured
what, where and with which source revision, plus a copy of the format
descriptor that downstream tools need to decode the capture.
"""

import getpass
import logging
import os
import shutil
import socket
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..common import run_command

logger = logging.getLogger("capsession.metadata")

METADATA_FILE = 'metadata.yaml'
UNKNOWN_REVISION = 'unknown'


def get_author() -> str:
    """Name of the operator running the capture."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get('USER', 'unknown')


def get_source_revision(source_dir: Path) -> str:
    """Current source-control revision, or 'unknown' outside a git checkout."""
    returncode, stdout, stderr = run_command(['git', 'rev-parse', 'HEAD'], cwd=source_dir)
    if returncode != 0:
        logger.debug("git rev-parse failed in %s: %s", source_dir, stderr.strip())
        return UNKNOWN_REVISION
    return stdout.strip() or UNKNOWN_REVISION


def get_source_diff(source_dir: Path) -> str:
    """Uncommitted changes in the working tree (empty when clean or unavailable)."""
    returncode, stdout, stderr = run_command(['git', 'diff', 'HEAD'], cwd=source_dir)
    if returncode != 0:
        logger.debug("git diff failed in %s: %s", source_dir, stderr.strip())
        return ""
    return stdout


def build_metadata(system: str, interface: str, source_dir: Path,
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    """Collect the metadata descriptor for a new session."""
    now = now or datetime.now()
    return {
        'author': get_author(),
        'host': socket.gethostname(),
        'system': system,
        'interface': interface,
        'time': now.astimezone().isoformat(timespec='seconds'),
        'revision': get_source_revision(source_dir),
        'diff': get_source_diff(source_dir),
    }


def write_metadata(session_dir: Path, metadata: Dict[str, Any]) -> Path:
    path = session_dir / METADATA_FILE
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(metadata, f, default_flow_style=False, sort_keys=False)
    return path


def read_metadata(session_dir: Path) -> Dict[str, Any]:
    """Load a session's metadata descriptor ({} if missing)."""
    path = session_dir / METADATA_FILE
    if not path.exists():
        return {}
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def copy_format_descriptor(session_dir: Path, descriptor: Optional[Path]) -> Optional[Path]:
    """
    Copy the format descriptor into the session directory.

    Returns:
        Path of the copy, or None if no descriptor is configured or present
    """
    if descriptor is None:
        return None
    descriptor = Path(descriptor)
    if not descriptor.is_file():
        return None
    target = session_dir / descriptor.name
    shutil.copy2(descriptor, target)
    return target
