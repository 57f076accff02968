"""
Lancet Module Entry Point
==========================

Allows running the Lancet CLI via: python -m lancet
"""

from lancet.cli import main

if __name__ == "__main__":
    main()
