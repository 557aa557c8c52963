#!/usr/bin/env python3
"""Allow ``python -m samprunner.frontends.cli``."""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
