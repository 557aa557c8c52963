#!/usr/bin/env python3
"""Entry point for ``python -m samprunner``."""

import sys

from samprunner.frontends.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
