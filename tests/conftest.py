"""
Shared fixtures: a simulated process table and tool installation.

The capture tool, the post-processing tool and git are never run for real.
subprocess.Popen, os.kill, shutil.which and time.sleep are replaced so tests
can drive the session lifecycle entirely inside tmp_path.
"""

import os
import shutil
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from capsession.config import HostConfig
from capsession.session import SessionManager


class FakePopen:
    """Stands in for a detached tcpdump / post-processing process."""

    def __init__(self, table, cmd, stdout=None, **kwargs):
        self.cmd = cmd
        self.kwargs = kwargs
        self.pid = table.next_pid()
        self.returncode = None
        table.launched.append(self)

        if table.exit_on_start:
            self.returncode = 1
            if stdout is not None:
                stdout.write(b"tcpdump: eth1: No such device exists\n")
            return

        table.alive.add(self.pid)
        if stdout is not None and table.listening and cmd[0] != 'nice':
            stdout.write(b"tcpdump: listening on eth1, link-type EN10MB (Ethernet)\n")

    def poll(self):
        return self.returncode


class FakeProcessTable:
    """Tracks launched processes and the signals sent to them."""

    def __init__(self):
        self.alive = set()
        self.signals = []
        self.launched = []
        self.listening = True
        self.exit_on_start = False
        self.foreign = {}  # pid -> argv of processes this tool did not launch
        self._pid = 4000

    def next_pid(self):
        self._pid += 1
        return self._pid

    def popen(self, cmd, **kwargs):
        return FakePopen(self, cmd, **kwargs)

    def cmdline(self, pid):
        if pid in self.foreign:
            return self.foreign[pid]
        for process in self.launched:
            if process.pid == pid and pid in self.alive:
                return process.cmd
        return None

    def kill(self, pid, sig):
        if pid not in self.alive:
            raise ProcessLookupError(pid)
        if sig == 0:
            return
        self.signals.append((pid, sig))
        if sig in (signal.SIGTERM, signal.SIGKILL):
            self.alive.discard(pid)

    @property
    def captures(self):
        return [p for p in self.launched if p.cmd[0] != 'nice']

    @property
    def background_jobs(self):
        return [p for p in self.launched if p.cmd[0] == 'nice']


@pytest.fixture
def processes(monkeypatch):
    """Simulated process table."""
    table = FakeProcessTable()
    monkeypatch.setattr(subprocess, 'Popen', table.popen)
    monkeypatch.setattr(os, 'kill', table.kill)
    monkeypatch.setattr(time, 'sleep', lambda seconds: None)
    monkeypatch.setattr('capsession.capture.sniffer.read_cmdline', table.cmdline)
    return table


@pytest.fixture
def installed(monkeypatch):
    """Set of executable names shutil.which can find (editable by tests)."""
    available = {'tcpdump', 'pcap-postprocess', 'git', 'nice'}
    monkeypatch.setattr(
        shutil, 'which',
        lambda name, *args, **kwargs: f"/usr/bin/{name}" if name in available else None
    )
    return available


@pytest.fixture
def fake_git(monkeypatch):
    """git answers with a fixed revision and a small diff."""
    calls = []

    def run_command(cmd, cwd=None, check=False, capture=True):
        calls.append(cmd)
        if cmd[:2] == ['git', 'rev-parse']:
            return 0, "0123456789abcdef0123456789abcdef01234567\n", ""
        if cmd[:2] == ['git', 'diff']:
            return 0, "--- a/x\n+++ b/x\n@@ -1 +1 @@\n-old\n+new\n", ""
        return 127, "", f"Command not found: {cmd[0]}"

    monkeypatch.setattr('capsession.session.metadata.run_command', run_command)
    return calls


class PostprocessRuns:
    """Records synchronous post-processing runs."""

    def __init__(self):
        self.commands = []
        self.returncode = 0

    def __call__(self, cmd, cwd=None, check=False, capture=True):
        self.commands.append(cmd)
        return self.returncode, "", "" if self.returncode == 0 else "conversion failed"


@pytest.fixture
def postprocess_runs(monkeypatch):
    runs = PostprocessRuns()
    monkeypatch.setattr('capsession.capture.postprocess.run_command', runs)
    return runs


class Prompts:
    """Scripted answers for confirmation prompts."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, question):
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else False


@pytest.fixture
def prompts():
    return Prompts()


@pytest.fixture
def config(tmp_path):
    descriptor = tmp_path / "format.desc"
    descriptor.write_text("frame: u32 id, u64 timestamp\n")
    return HostConfig(
        log_root=tmp_path / "logs",
        systems=['rover', 'lander'],
        format_descriptor=descriptor,
        source_dir=tmp_path,
        start_grace_seconds=0,
        stop_timeout_seconds=0.5,
    )


@pytest.fixture
def manager(config, prompts, processes, installed, fake_git, postprocess_runs):
    return SessionManager(config, confirm_fn=prompts, env={})
