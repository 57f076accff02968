"""
Lancet Parsers
===============

Loaders that place an input image into a workspace and register it as a
loaded module.
"""

from lancet.parsers.pe_loader import PELoader
from lancet.parsers.shellcode_loader import ShellcodeLoader

__all__ = [
    "PELoader",
    "ShellcodeLoader",
]
