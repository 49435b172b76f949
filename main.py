#!/usr/bin/env python3
"""
Main entry point for Landsat LST compositing.

All functionality lives in the landsat_lst/ package; this script only
forwards to its command line interface.
"""
import sys

from landsat_lst.cli import main

if __name__ == "__main__":
    sys.exit(main())
