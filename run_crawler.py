#!/usr/bin/env python3
"""
Entry point for downloading new texts from the catalog.

This script runs the crawler from the project root.
Usage: python run_crawler.py [--quota N] [--no-dashboard]
"""

import sys
from pathlib import Path

# Add src directory to path so imports work
src_dir = Path(__file__).parent / "src"
sys.path.insert(0, str(src_dir))

from run_pipeline import cli

if __name__ == "__main__":
    sys.exit(cli(["crawl", *sys.argv[1:]]))
