"""
Lancet Exceptions
==================

A single hierarchy rooted at :class:`LancetError`.  Construction errors
(:class:`InvalidArchError`, :class:`InvalidModeError`) are fatal to the
call that raised them; memory bookkeeping and access errors are ordinary
recoverable exceptions; :class:`DecodeError` is recorded per address by
the exploration engine; :class:`HandlerError` aborts an exploration run.
"""

from __future__ import annotations


class LancetError(Exception):
    """Base class for every error raised by Lancet."""


# ========================== Construction ===================================


class InvalidArchError(LancetError):
    """Unsupported architecture requested for a workspace."""

    def __init__(self, arch: object) -> None:
        super().__init__(f"Invalid ARCH provided: {arch!r}")
        self.arch = arch


class InvalidModeError(LancetError):
    """Unsupported mode (bit width) requested or encountered."""

    def __init__(self, mode: object) -> None:
        super().__init__(f"Invalid MODE provided: {mode!r}")
        self.mode = mode


# ========================== Addresses ======================================


class AddressError(LancetError):
    """Base class for malformed address values."""


class InvalidAddressError(AddressError):
    def __init__(self, address: int) -> None:
        super().__init__(f"Address out of 64-bit range: {address:#x}")
        self.address = address


class AddressOverflowError(AddressError):
    def __init__(self, address: int, offset: int) -> None:
        super().__init__(
            f"Address arithmetic overflows 64 bits: {address:#x} + {offset:#x}"
        )
        self.address = address
        self.offset = offset


# ========================== Region bookkeeping =============================


class InvalidLengthError(LancetError):
    def __init__(self, length: int) -> None:
        super().__init__(f"Invalid region length: {length:#x}")
        self.length = length


class OverlapError(LancetError):
    """A new region intersects one that is already mapped."""

    def __init__(self, address: int, length: int, existing: str) -> None:
        super().__init__(
            f"Region [{address:#x}, {address + length:#x}) overlaps "
            f"existing region {existing!r}"
        )
        self.address = address
        self.length = length
        self.existing = existing


class NotMappedError(LancetError):
    """No region exactly matches the range given to ``unmap``."""

    def __init__(self, address: int, length: int) -> None:
        super().__init__(
            f"No region mapped exactly at [{address:#x}, {address + length:#x})"
        )
        self.address = address
        self.length = length


# ========================== Memory access ==================================


class UnmappedAccessError(LancetError):
    """An access range is not fully contained in one mapped region."""

    _verb = "access"

    def __init__(self, address: int, length: int) -> None:
        super().__init__(
            f"Unmapped {self._verb}: [{address:#x}, {address + length:#x})"
        )
        self.address = address
        self.length = length


class UnmappedReadError(UnmappedAccessError):
    _verb = "read"


class UnmappedWriteError(UnmappedAccessError):
    _verb = "write"


# ========================== Analysis =======================================


class DecodeError(LancetError):
    """The decode engine could not produce an instruction at an address."""

    def __init__(self, address: int, reason: str = "invalid instruction") -> None:
        super().__init__(f"Failed to decode instruction at {address:#x}: {reason}")
        self.address = address
        self.reason = reason


class HandlerError(LancetError):
    """A registered trace handler failed; the exploration run was aborted.

    The handler's own exception is available as ``__cause__``.
    """

    def __init__(self, address: int, handler: object) -> None:
        name = getattr(handler, "__qualname__", None) or type(handler).__name__
        super().__init__(f"Trace handler {name} failed at {address:#x}")
        self.address = address
        self.handler = handler


# ========================== Collaborators ==================================


class EmulatorError(LancetError):
    """The execution context rejected an operation."""


class LoaderError(LancetError):
    """An input image is malformed or unsupported by the chosen loader."""
