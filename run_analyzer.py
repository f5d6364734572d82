#!/usr/bin/env python3
"""
Entry point for analyzing the downloaded texts.

Usage: python run_analyzer.py
"""

import sys
from pathlib import Path

# Add src directory to path so imports work
src_dir = Path(__file__).parent / "src"
sys.path.insert(0, str(src_dir))

from run_pipeline import cli

if __name__ == "__main__":
    sys.exit(cli(["analyze", *sys.argv[1:]]))
