"""
Allow running as: python -m jobcurator
"""

import sys

from jobcurator.cli import main

if __name__ == "__main__":
    sys.exit(main())
