#!/usr/bin/env python3
"""
Entry point for the NextBus command-line client.

Simple wrapper that launches the main application.
"""
import sys
from pathlib import Path

# Add project root and src to path
project_root = Path(__file__).parent.absolute()
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / 'src'))

from src.main import main

if __name__ == '__main__':
    sys.exit(main())
