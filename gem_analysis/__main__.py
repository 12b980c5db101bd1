"""
Gem analysis module entry point.

Enables running the pipeline as a module:
    python -m gem_analysis run --limit 20
"""

import sys

from gem_analysis.cli import main

if __name__ == "__main__":
    sys.exit(main())
