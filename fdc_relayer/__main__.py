"""
Entry point for running the relayer as a module.

Usage:
    python -m fdc_relayer
"""

from fdc_relayer.cli import main

if __name__ == "__main__":
    main()
