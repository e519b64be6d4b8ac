"""
Tests for capture process control and post-processing.

subprocess and os.kill are mocked; no capture tool is ever run.
"""

import os
import signal
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from capsession.capture import CaptureRunner, PostProcessor, pid_alive, read_cmdline
from capsession.errors import SessionError


@pytest.fixture
def runner():
    return CaptureRunner('/usr/sbin/tcpdump', rotate_seconds=900,
                         rotate_hook='/usr/bin/pcap-postprocess',
                         grace_seconds=0.5, stop_timeout=1.0)


class TestCaptureCommand:
    """Test building the tcpdump command line."""

    def test_build_command(self, runner, tmp_path):
        cmd = runner.build_command('eth1', tmp_path)

        assert cmd == [
            '/usr/sbin/tcpdump',
            '-i', 'eth1',
            '-U',
            '-G', '900',
            '-w', str(tmp_path / '%Y-%m-%d_%H-%M-%S.pcap'),
            '-z', '/usr/bin/pcap-postprocess',
        ]

    def test_build_command_without_hook(self, tmp_path):
        runner = CaptureRunner('tcpdump')
        assert '-z' not in runner.build_command('any', tmp_path)

    @patch('subprocess.Popen')
    def test_start_detaches(self, mock_popen, runner, tmp_path):
        """Test the tool runs in its own session with output in capture.log."""
        mock_popen.return_value = Mock(pid=1234)

        process = runner.start('eth1', tmp_path)

        assert process.pid == 1234
        kwargs = mock_popen.call_args[1]
        assert kwargs['start_new_session'] is True
        assert str(kwargs['stdout'].name) == str(tmp_path / 'capture.log')
        assert (tmp_path / 'capture.log').exists()


class TestListening:
    """Test the post-start listening check."""

    @patch('time.sleep')
    def test_listening(self, mock_sleep, runner, tmp_path):
        (tmp_path / 'capture.log').write_text(
            "tcpdump: listening on eth1, link-type EN10MB (Ethernet), snapshot length 262144 bytes\n"
        )
        process = Mock(poll=Mock(return_value=None))

        assert runner.wait_until_listening(process, tmp_path) is True
        mock_sleep.assert_called_once_with(0.5)

    @patch('time.sleep')
    def test_not_listening_yet(self, mock_sleep, runner, tmp_path):
        (tmp_path / 'capture.log').write_text("")
        process = Mock(poll=Mock(return_value=None))

        assert runner.wait_until_listening(process, tmp_path) is False

    @patch('time.sleep')
    def test_process_exited(self, mock_sleep, runner, tmp_path):
        (tmp_path / 'capture.log').write_text("tcpdump: listening on eth1\n")
        process = Mock(poll=Mock(return_value=1))

        assert runner.wait_until_listening(process, tmp_path) is False

    def test_no_log(self, runner, tmp_path):
        assert runner.is_listening(tmp_path) is False

    def test_read_log_tail(self, runner, tmp_path):
        (tmp_path / 'capture.log').write_text("one\n\ntwo\nthree\n")

        assert runner.read_log_tail(tmp_path, lines=2) == ['two', 'three']
        assert runner.read_log_tail(tmp_path / 'missing') == []


class TestStop:
    """Test signaling the capture process."""

    @patch('os.kill')
    def test_stop_running(self, mock_kill, runner):
        # SIGTERM succeeds, then the liveness probe finds the process gone
        mock_kill.side_effect = [None, ProcessLookupError()]

        assert runner.stop(1234) is True
        assert mock_kill.call_args_list[0][0] == (1234, signal.SIGTERM)
        assert mock_kill.call_args_list[1][0] == (1234, 0)

    @patch('os.kill')
    def test_stop_already_gone(self, mock_kill, runner):
        mock_kill.side_effect = ProcessLookupError()

        assert runner.stop(1234) is False
        mock_kill.assert_called_once_with(1234, signal.SIGTERM)

    @patch('os.kill')
    def test_stop_not_permitted(self, mock_kill, runner):
        mock_kill.side_effect = PermissionError()

        with pytest.raises(SessionError, match='Not permitted'):
            runner.stop(1)

    @patch('time.sleep')
    @patch('os.kill')
    def test_stop_gives_up_after_timeout(self, mock_kill, mock_sleep, tmp_path):
        """Test a process ignoring SIGTERM does not hang the command."""
        runner = CaptureRunner('tcpdump', stop_timeout=0)
        mock_kill.return_value = None

        assert runner.stop(1234) is True


class TestPidAlive:
    """Test the process liveness probe."""

    @patch('os.kill')
    def test_alive(self, mock_kill):
        assert pid_alive(1) is True

    @patch('os.kill', side_effect=ProcessLookupError())
    def test_dead(self, mock_kill):
        assert pid_alive(1) is False

    @patch('os.kill', side_effect=PermissionError())
    def test_other_user(self, mock_kill):
        assert pid_alive(1) is True


class TestPostProcessor:
    """Test invoking the post-processing tool."""

    def test_build_command(self, tmp_path):
        processor = PostProcessor('/usr/bin/pcap-postprocess')
        capture = tmp_path / 'a.pcap'

        assert processor.build_command(capture) == ['/usr/bin/pcap-postprocess', str(capture)]
        assert processor.build_command(capture, 'run1')[-1] == 'run1'

    @patch('subprocess.run')
    def test_run_success(self, mock_run, tmp_path):
        mock_run.return_value = Mock(returncode=0, stdout=None, stderr=None)
        processor = PostProcessor('/usr/bin/pcap-postprocess')

        assert processor.run(tmp_path / 'a.pcap', 'run1') is True
        cmd = mock_run.call_args[0][0]
        assert cmd == ['/usr/bin/pcap-postprocess', str(tmp_path / 'a.pcap'), 'run1']
        assert mock_run.call_args[1]['capture_output'] is False

    @patch('subprocess.run')
    def test_run_failure(self, mock_run, tmp_path):
        mock_run.return_value = Mock(returncode=3, stdout=None, stderr=None)
        processor = PostProcessor('/usr/bin/pcap-postprocess')

        assert processor.run(tmp_path / 'a.pcap') is False

    @patch('subprocess.Popen')
    def test_run_background(self, mock_popen, tmp_path):
        mock_popen.return_value = Mock(pid=777)
        processor = PostProcessor('/usr/bin/pcap-postprocess', nice_level=15)
        capture = tmp_path / 'a.pcap'

        assert processor.run_background(capture) == 777
        cmd = mock_popen.call_args[0][0]
        assert cmd == ['nice', '-n', '15', '/usr/bin/pcap-postprocess', str(capture)]
        assert mock_popen.call_args[1]['start_new_session'] is True
        assert (tmp_path / 'postprocess.log').exists()

    @patch('subprocess.Popen', side_effect=FileNotFoundError(2, 'No such file or directory', 'nice'))
    def test_run_background_launch_error(self, mock_popen, tmp_path):
        """Test a launch failure is reported as no PID instead of raising."""
        processor = PostProcessor('/usr/bin/pcap-postprocess')

        assert processor.run_background(tmp_path / 'a.pcap') is None


class TestOwnership:
    """Test recognizing the capture process behind a recorded PID."""

    @patch('capsession.capture.sniffer.read_cmdline')
    def test_same_tool(self, mock_cmdline, runner):
        mock_cmdline.return_value = ['tcpdump', '-i', 'eth1']
        assert runner.owns(1234) is True

    @patch('capsession.capture.sniffer.read_cmdline')
    def test_reused_pid(self, mock_cmdline, runner):
        mock_cmdline.return_value = ['/usr/sbin/sshd', '-D']
        assert runner.owns(1234) is False

    @patch('capsession.capture.sniffer.read_cmdline', return_value=[])
    def test_kernel_thread(self, mock_cmdline, runner):
        assert runner.owns(2) is False

    @patch('capsession.capture.sniffer.read_cmdline', return_value=None)
    def test_unreadable_trusted(self, mock_cmdline, runner):
        assert runner.owns(1234) is True

    @pytest.mark.skipif(not Path('/proc/self/cmdline').exists(), reason="needs /proc")
    def test_read_own_cmdline(self):
        assert read_cmdline(os.getpid())

    def test_read_missing_process(self, tmp_path):
        with patch.object(Path, 'read_bytes', side_effect=FileNotFoundError()):
            assert read_cmdline(1234) is None
