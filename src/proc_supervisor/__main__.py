"""proc-supervisor entry point.

Supports: python -m proc_supervisor
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
