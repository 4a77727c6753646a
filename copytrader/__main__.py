"""Allow ``python -m copytrader``."""

import sys

from copytrader.cli import main

if __name__ == "__main__":
    sys.exit(main())
