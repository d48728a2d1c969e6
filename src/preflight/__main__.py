#!/usr/bin/env python3
"""vfio-preflight - Module entry point."""
import sys

from preflight.cli import main

if __name__ == "__main__":
    sys.exit(main())
