#!/usr/bin/env python3
"""
capsession - packet capture session manager

This is a convenience wrapper that calls the packaged implementation
in src/capsession/cli.py, for use without installing the package.

Usage:
    python3 capture-session.py start [system] [interface]
    python3 capture-session.py save [name]
    python3 capture-session.py discard
    python3 capture-session.py stop
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from capsession.cli import main

if __name__ == '__main__':
    sys.exit(main())
