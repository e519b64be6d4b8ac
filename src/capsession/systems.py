"""
System-name validation.

Session directories are grouped by system name, and an external sync
mechanism only picks up the systems it knows about. A typo such as 'Rover'
for 'rover' would silently fall outside that sync, so near-matches are
confirmed with the operator before a session is started.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .common import confirm

logger = logging.getLogger("capsession.systems")


def load_sync_list(path: Path) -> List[str]:
    """
    Read recognized system names from a sync-list file.

    One name per line; blank lines and '#' comments are ignored.
    """
    names = []
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            name = line.split('#', 1)[0].strip()
            if name:
                names.append(name)
    return names


class SystemValidator:
    """Checks system names against the locally configured sync list."""

    def __init__(self, known: Optional[Iterable[str]] = None,
                 confirm_fn: Callable[[str], bool] = confirm):
        """
        Args:
            known: Recognized system names, None if no list is available
            confirm_fn: Asks the operator a yes/no question
        """
        self.known = list(known) if known is not None else None
        self.confirm_fn = confirm_fn

    @classmethod
    def from_config(cls, config, confirm_fn: Callable[[str], bool] = confirm) -> 'SystemValidator':
        """Build from the inline 'systems' list and/or the sync-list file."""
        known = list(config.systems)
        have_list = bool(known)

        if config.systems_file is not None:
            try:
                known.extend(load_sync_list(config.systems_file))
                have_list = True
            except FileNotFoundError:
                print(f"⚠️  Sync list not found: {config.systems_file}", flush=True)
            except OSError as e:
                print(f"⚠️  Cannot read sync list {config.systems_file}: {e}", flush=True)

        return cls(known if have_list else None, confirm_fn=confirm_fn)

    def near_match(self, name: str) -> Optional[str]:
        """Recognized name equal to `name` ignoring case, if any."""
        folded = name.casefold()
        for candidate in self.known or []:
            if candidate.casefold() == folded:
                return candidate
        return None

    def check(self, name: str) -> bool:
        """
        Validate a system name.

        Returns:
            False only if the operator declined to continue with a near-match
        """
        if self.known is None:
            print("⚠️  No list of recognized systems configured; "
                  f"cannot check '{name}'", flush=True)
            return True

        if name in self.known:
            logger.debug("System '%s' is recognized", name)
            return True

        match = self.near_match(name)
        if match is not None:
            print(f"⚠️  System '{name}' differs only in case from recognized system '{match}'",
                  flush=True)
            print("   Sessions under this name will not be synced.", flush=True)
            return self.confirm_fn(f"Continue with '{name}'?")

        print(f"⚠️  System '{name}' is not in the sync list; its sessions will not be synced",
              flush=True)
        return True
