"""Entry point for ``python -m digest_watcher``."""

import sys

from digest_watcher.cli import main

if __name__ == "__main__":
    sys.exit(main())
