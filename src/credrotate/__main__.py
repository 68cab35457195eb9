"""Main entry point for credrotate.

Usage:
    python -m credrotate rotate --mode adopt-existing --filter 'CONTOSO\\svc-*'
    python -m credrotate list
"""

from .cli import main

if __name__ == "__main__":
    main()
