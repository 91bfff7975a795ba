"""
Main entry point for Ekiden.

This module allows Ekiden to be run as:
    python -m ekiden
"""

from .cli import main

if __name__ == "__main__":
    main()
