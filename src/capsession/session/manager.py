"""
Capture session lifecycle.

SessionManager implements the operator commands on top of the session
directory tree (SessionStore) and the external tools (CaptureRunner,
PostProcessor):

    start    create a session directory and launch the capture tool
    stop     signal the capture tool, finalize the session, post-process
    save     stop (optionally tagging the session) and start a new one
    discard  delete the active session after confirmation and start a new one
    status   describe the active and last sessions

There is no in-process state between invocations; everything is read back
from the file system and the process table.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from ..capture import CaptureRunner, PostProcessor, pid_alive
from ..capture.postprocess import NICE_BINARY
from ..common import confirm, find_binary, format_elapsed, require_binary
from ..config import HostConfig
from ..errors import SessionError
from ..systems import SystemValidator
from .layout import SessionStore, sanitize_tag, session_started
from .metadata import build_metadata, copy_format_descriptor, write_metadata

logger = logging.getLogger("capsession.session")


@dataclass
class StopResult:
    """Outcome of stopping a capture."""

    session: Optional[Path] = None  # finalized session directory, if there was one
    success: bool = True            # False if synchronous post-processing failed


@dataclass
class SessionStatus:
    """Snapshot of the session tree and capture process."""

    current: Optional[Path] = None
    system: Optional[str] = None
    interface: Optional[str] = None
    started: Optional[datetime] = None
    pid: Optional[int] = None
    running: bool = False
    last: Optional[Path] = None

    @property
    def active(self) -> bool:
        return self.current is not None

    @property
    def consistent(self) -> bool:
        """The capture process runs exactly when a current session exists."""
        return self.active == self.running

    @property
    def elapsed_seconds(self) -> Optional[float]:
        if self.started is None:
            return None
        return (datetime.now() - self.started).total_seconds()


class SessionManager:
    """Starts, stops, saves and discards capture sessions."""

    def __init__(self, config: HostConfig, store: Optional[SessionStore] = None,
                 confirm_fn: Callable[[str], bool] = confirm,
                 env: Optional[Dict[str, str]] = None):
        """
        Args:
            config: Host configuration
            store: Session tree bookkeeping (defaults to one at config.log_root)
            confirm_fn: Asks the operator a yes/no question
            env: Environment used for system/interface fallbacks (defaults to os.environ)
        """
        self.config = config
        self.store = store or SessionStore(config.log_root)
        self.confirm_fn = confirm_fn
        self.env = env

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start(self, system: Optional[str] = None, interface: Optional[str] = None,
              validate: bool = True) -> bool:
        """
        Start a new capture session.

        Args:
            system: Target system (falls back to environment, config, default)
            interface: Capture interface (same fallbacks)
            validate: Check the system name against the sync list; off when
                restarting with a system the previous session already used

        Returns:
            True if the capture tool is running and listening

        Raises:
            ConfigError: If the system name is not usable as a directory name
            MissingBinaryError: If the capture tool is not installed
        """
        system = self.config.resolve_system(system, self.env)
        interface = self.config.resolve_interface(interface, self.env)

        if self.store.current_link.is_symlink():
            print(f"⚠️  A capture session is already active: {self.store.current()}", flush=True)
            print("   Run 'stop', 'save' or 'discard' first.", flush=True)
            return False

        runner = self._capture_runner()

        if validate:
            validator = SystemValidator.from_config(self.config, confirm_fn=self.confirm_fn)
            if not validator.check(system):
                print("❌ Start cancelled", flush=True)
                return False

        session_dir = self.store.create_session(system)
        self.store.set_current(session_dir)
        self.store.write_markers(system, interface)

        write_metadata(session_dir, build_metadata(system, interface, self.config.source_dir))
        if copy_format_descriptor(session_dir, self.config.format_descriptor) is None:
            if self.config.format_descriptor is None:
                print("⚠️  No format descriptor configured; session will not include one",
                      flush=True)
            else:
                print(f"⚠️  Format descriptor not found: {self.config.format_descriptor}",
                      flush=True)

        try:
            process = runner.start(interface, session_dir)
        except OSError as e:
            self.store.clear_current()
            self.store.clear_markers()
            raise SessionError(f"Could not launch {runner.binary}: {e}")
        self.store.write_pid(process.pid)

        if not runner.wait_until_listening(process, session_dir):
            print(f"❌ Capture on '{interface}' did not report listening within "
                  f"{runner.grace_seconds:g}s", flush=True)
            for line in runner.read_log_tail(session_dir):
                print(f"   {line}", flush=True)
            print(f"   Session directory: {session_dir}", flush=True)
            return False

        print(f"✅ Capturing system '{system}' on interface '{interface}' (PID {process.pid})",
              flush=True)
        print(f"📁 {session_dir}", flush=True)
        return True

    def _capture_runner(self) -> CaptureRunner:
        binary = require_binary(self.config.capture_binary, "packet capture")

        hook = find_binary(self.config.hook_binary)
        if hook is None:
            print(f"⚠️  Post-rotation hook not found: {self.config.hook_binary}", flush=True)
            print("   Rotated capture files will not be post-processed.", flush=True)

        return CaptureRunner(
            binary,
            rotate_seconds=self.config.rotate_seconds,
            rotate_hook=hook,
            grace_seconds=self.config.start_grace_seconds,
            stop_timeout=self.config.stop_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------

    def stop(self, tag: Optional[str] = None, background: bool = False,
             postprocess: bool = True) -> StopResult:
        """
        Stop the capture and finalize the active session.

        Args:
            tag: Name appended to the session directory
            background: Post-process detached at reduced priority instead of waiting
            postprocess: Run the post-processing step at all

        Raises:
            MissingBinaryError: If post-processing is requested but not installed
        """
        processor = None
        if postprocess:
            binary = require_binary(self.config.postprocess_binary, "post-processing")
            if background:
                require_binary(NICE_BINARY, "background post-processing")
            processor = PostProcessor(binary, nice_level=self.config.nice_level)

        self._signal_capture()

        session_dir = self.store.current()
        if session_dir is None:
            print("ℹ️  No active session", flush=True)
            return StopResult()

        if not session_dir.is_dir():
            print(f"⚠️  Current session directory is missing: {session_dir}", flush=True)
            self.store.clear_current()
            self.store.clear_markers()
            return StopResult(success=False)

        tag = sanitize_tag(tag)
        if tag:
            session_dir = self.store.tag_session(session_dir, tag)

        self.store.set_last(session_dir)
        self.store.clear_current()
        self.store.clear_markers()
        print(f"⏹️  Session stopped: {session_dir}", flush=True)

        if processor is None:
            return StopResult(session_dir)

        ok = self._postprocess(processor, session_dir, tag, background)
        return StopResult(session_dir, success=ok)

    def _signal_capture(self) -> bool:
        pid = self.store.read_pid()
        if pid is None:
            print("⚠️  No capture process recorded", flush=True)
            return False

        runner = CaptureRunner(self.config.capture_binary,
                               stop_timeout=self.config.stop_timeout_seconds)
        if pid_alive(pid) and not runner.owns(pid):
            print(f"⚠️  PID {pid} now belongs to another program; not signaling it", flush=True)
            self.store.clear_pid()
            return False

        signaled = runner.stop(pid)
        self.store.clear_pid()
        if not signaled:
            print(f"⚠️  Capture process {pid} was not running", flush=True)
        return signaled

    def _postprocess(self, processor: PostProcessor, session_dir: Path,
                     tag: Optional[str], background: bool) -> bool:
        capture_file = self.store.latest_capture(session_dir)
        if capture_file is None:
            print(f"⚠️  No capture files in {session_dir}; nothing to post-process", flush=True)
            return True

        if background:
            pid = processor.run_background(capture_file, tag)
            if pid is None:
                print(f"❌ Could not start background post-processing for {capture_file}",
                      flush=True)
                return False
            print(f"⚙️  Post-processing {capture_file.name} in background (PID {pid})",
                  flush=True)
            return True

        print(f"⚙️  Post-processing {capture_file.name}...", flush=True)
        if not processor.run(capture_file, tag):
            print(f"❌ Post-processing failed for {capture_file}", flush=True)
            return False
        print("✅ Post-processing complete", flush=True)
        return True

    # ------------------------------------------------------------------
    # save / discard
    # ------------------------------------------------------------------

    def save(self, tag: Optional[str] = None) -> bool:
        """
        Finalize the active session (optionally tagged) and start a new one
        with the same system and interface.
        """
        if self.store.current() is None:
            print("⚠️  No active session to save", flush=True)
            return False

        system, interface = self._recorded_configuration()
        require_binary(self.config.capture_binary, "packet capture")

        result = self.stop(tag=tag, background=True)
        if result.session is None:
            return False
        print(f"💾 Saved {result.session.name}", flush=True)

        return self.start(system, interface, validate=system is None)

    def discard(self, assume_yes: bool = False) -> bool:
        """
        Delete the active session after confirmation and start a fresh one.

        Declining the confirmation leaves the capture running untouched and
        counts as success.
        """
        session_dir = self.store.current()
        if session_dir is None:
            print("⚠️  No active session to discard", flush=True)
            return False

        started = session_started(session_dir)
        if started is not None:
            elapsed = format_elapsed((datetime.now() - started).total_seconds())
        else:
            elapsed = "unknown duration"

        question = f"Discard session {session_dir.name} ({elapsed} of capture)?"
        if not assume_yes and not self.confirm_fn(question):
            print("Discard cancelled; capture continues.", flush=True)
            return True

        system, interface = self._recorded_configuration()
        require_binary(self.config.capture_binary, "packet capture")

        self._signal_capture()
        if session_dir.is_dir():
            self.store.remove_session(session_dir)
        self.store.clear_current()
        self.store.clear_markers()
        print(f"🗑️  Discarded {session_dir}", flush=True)

        return self.start(system, interface, validate=system is None)

    def _recorded_configuration(self):
        system, interface = self.store.read_markers()
        if system is None or interface is None:
            print("⚠️  Session markers missing; falling back to default system/interface",
                  flush=True)
        return system, interface

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    def status(self) -> SessionStatus:
        current = self.store.current()
        system, interface = self.store.read_markers()
        pid = self.store.read_pid()
        runner = CaptureRunner(self.config.capture_binary)
        return SessionStatus(
            current=current,
            system=system,
            interface=interface,
            started=session_started(current) if current is not None else None,
            pid=pid,
            running=pid is not None and pid_alive(pid) and runner.owns(pid),
            last=self.store.last(),
        )
