"""
Post-processing of finished capture files.

Conversion itself is the job of an external binary, invoked as

    <postprocess_binary> <capture_file> [<tag>]

either synchronously or detached in the background at reduced priority.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from ..common import run_command

logger = logging.getLogger("capsession.postprocess")

# Background runs are wrapped in `nice -n <level>`
NICE_BINARY = 'nice'


class PostProcessor:
    """Runs the external post-processing step on one capture file."""

    def __init__(self, binary: str, nice_level: int = 19):
        """
        Args:
            binary: Resolved path of the post-processing executable
            nice_level: Niceness used for background runs
        """
        self.binary = binary
        self.nice_level = nice_level

    def build_command(self, capture_file: Path, tag: Optional[str] = None) -> List[str]:
        cmd = [self.binary, str(capture_file)]
        if tag:
            cmd.append(tag)
        return cmd

    def run(self, capture_file: Path, tag: Optional[str] = None) -> bool:
        """
        Post-process synchronously, streaming the tool's output to the terminal.

        Returns:
            True if the tool exited successfully
        """
        cmd = self.build_command(capture_file, tag)
        returncode, _, stderr = run_command(cmd, capture=False)
        if returncode != 0:
            logger.debug("Post-processing failed with code %s: %s", returncode, stderr)
            return False
        return True

    def run_background(self, capture_file: Path, tag: Optional[str] = None,
                       log_path: Optional[Path] = None) -> Optional[int]:
        """
        Post-process in a detached, low-priority background process.

        Returns:
            PID of the background process, or None if it could not be launched
        """
        cmd = [NICE_BINARY, '-n', str(self.nice_level)] + self.build_command(capture_file, tag)
        log_path = log_path or capture_file.with_name('postprocess.log')
        logger.debug("Launching background post-processing: %s", ' '.join(cmd))

        try:
            with open(log_path, 'ab') as log:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as e:
            logger.error("Could not launch background post-processing: %s", e)
            return None
        return process.pid
