#!/usr/bin/env python3
"""Smart Trailing - Main Entry Point.

Usage:
    python main.py
    python main.py --once
"""

import sys

from smart_trailing.cli import main

if __name__ == "__main__":
    sys.exit(main())
