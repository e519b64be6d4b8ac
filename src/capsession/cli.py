#!/usr/bin/env python3
"""
capsession - packet capture session manager

Command-line interface for starting, stopping, saving and discarding raw
packet capture sessions.

Commands:
    start       Start capturing into a new session directory
    save        Finalize the current session (optionally named) and start a new one
    discard     Delete the current session after confirmation and start a new one
    stop        Stop capturing and post-process the last capture file
    status      Show the current and last sessions

Examples:
    capsession start rover eth1
    capsession save field-test-3
    capsession discard
    capsession stop --background
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .common import format_elapsed
from .config import HostConfig
from .errors import CaptureSessionError
from .session import SessionManager

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def cmd_start(manager: SessionManager, args) -> bool:
    return manager.start(args.system, args.interface)


def cmd_save(manager: SessionManager, args) -> bool:
    return manager.save(args.name)


def cmd_discard(manager: SessionManager, args) -> bool:
    return manager.discard(assume_yes=args.yes)


def cmd_stop(manager: SessionManager, args) -> bool:
    result = manager.stop(
        tag=args.tag,
        background=args.background,
        postprocess=not args.no_postprocess,
    )
    return result.success


def cmd_status(manager: SessionManager, args) -> bool:
    """Print the current and last sessions."""
    status = manager.status()

    if status.active:
        print(f"🔴 Capturing: {status.current}", flush=True)
        print(f"   System:    {status.system or 'unknown'}", flush=True)
        print(f"   Interface: {status.interface or 'unknown'}", flush=True)
        if status.elapsed_seconds is not None:
            print(f"   Elapsed:   {format_elapsed(status.elapsed_seconds)}", flush=True)
        pid_state = 'running' if status.running else 'not running'
        print(f"   PID:       {status.pid or '-'} ({pid_state})", flush=True)
    else:
        print("⚪ No active session", flush=True)

    if status.last is not None:
        print(f"   Last:      {status.last}", flush=True)

    if not status.consistent:
        if status.active:
            print("⚠️  Current session exists but the capture process is not running", flush=True)
        else:
            print(f"⚠️  Capture process {status.pid} is running without a current session",
                  flush=True)
        return False
    return True


COMMANDS = {
    'start': cmd_start,
    'save': cmd_save,
    'discard': cmd_discard,
    'stop': cmd_stop,
    'status': cmd_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='capsession',
        description="capsession - start, stop, save and discard packet capture sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start capturing for system 'rover' on eth1
  %(prog)s start rover eth1

  # Start with defaults ($CAPSESSION_SYSTEM / $CAPSESSION_INTERFACE / host config)
  %(prog)s start

  # Keep the current session under a name and keep capturing
  %(prog)s save field-test-3

  # Throw the current session away and keep capturing
  %(prog)s discard

  # Stop, post-processing the last capture file in the background
  %(prog)s stop --background

Host configuration is read from --config, $CAPSESSION_CONFIG,
~/.config/capsession/host.yaml or /etc/capsession/host.yaml.
        """
    )

    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='store_true', help='Show debug logging')
    parser.add_argument('--config', metavar='PATH', help='Host configuration file (YAML)')
    parser.add_argument('--log-root', metavar='DIR', dest='log_root',
                        help='Directory holding all sessions (overrides config)')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # --- START command ---
    start_parser = subparsers.add_parser('start', help='Start a new capture session')
    start_parser.add_argument('system', nargs='?', help='Target system name')
    start_parser.add_argument('interface', nargs='?', help='Network interface to capture on')

    # --- SAVE command ---
    save_parser = subparsers.add_parser('save', help='Finalize the current session and start a new one')
    save_parser.add_argument('name', nargs='?', help='Tag appended to the saved session directory')

    # --- DISCARD command ---
    discard_parser = subparsers.add_parser('discard', help='Delete the current session and start a new one')
    discard_parser.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation')

    # --- STOP command ---
    stop_parser = subparsers.add_parser('stop', help='Stop capturing')
    stop_parser.add_argument('--tag', metavar='NAME', help='Tag appended to the session directory')
    stop_parser.add_argument('--background', action='store_true',
                             help='Post-process in the background at low priority')
    stop_parser.add_argument('--no-postprocess', action='store_true', dest='no_postprocess',
                             help='Skip post-processing')

    # --- STATUS command ---
    subparsers.add_parser('status', help='Show the current and last sessions')

    return parser


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return EXIT_FAILURE

    setup_logging(args.verbose)

    try:
        config = HostConfig.load(args.config)
        if args.log_root:
            config.log_root = Path(args.log_root).expanduser()

        manager = SessionManager(config)
        ok = COMMANDS[args.command](manager, args)
    except CaptureSessionError as e:
        print(f"❌ {e}", flush=True)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nInterrupted", flush=True)
        return EXIT_INTERRUPTED

    return EXIT_OK if ok else EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
