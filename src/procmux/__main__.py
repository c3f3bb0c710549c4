"""procmux entry point.

Supports: python -m procmux -- PROGRAM [ARGS...]
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
