"""
Lancet Output
==============

Rich console rendering for workspaces and exploration runs.
"""

from lancet.output.console import LancetConsoleOutput

__all__ = [
    "LancetConsoleOutput",
]
