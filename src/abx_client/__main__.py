"""
Allow running abx_client with python -m
"""

import sys

from .cli import main

if __name__ == '__main__':
    sys.exit(main())
