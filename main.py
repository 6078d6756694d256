#!/usr/bin/env python3
"""
Main entry point for SigExtract.
"""

import sys

from sig_extract.cli import main

if __name__ == "__main__":
    sys.exit(main())
