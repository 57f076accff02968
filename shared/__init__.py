"""
Lancet Shared Module
====================

Configuration, structured logging and console presentation shared by
every Lancet component.
"""

from shared.config import LancetConfig

__all__ = ["LancetConfig"]
