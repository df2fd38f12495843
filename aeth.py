#!/usr/bin/env python3
"""
Aether Programming Language
Main entry point when running from a source checkout
"""

import sys
from pathlib import Path

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from aether.cli import main

if __name__ == '__main__':
    sys.exit(main())
