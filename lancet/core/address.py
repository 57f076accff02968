"""
Address Types
==============

Virtual addresses (VA) are absolute 64-bit unsigned integers inside a
workspace's address space.  Relative virtual addresses (RVA) are offsets
from a loaded module's base and are never dereferenced on their own --
they are always resolved through :meth:`LoadedModule.va`.

Both are plain ``int`` at runtime; the ``NewType`` aliases document intent
at API boundaries.  All address arithmetic goes through :func:`va_add` so
that overflow past ``2**64`` is reported instead of silently wrapping.
"""

from __future__ import annotations

from typing import NewType

from lancet.core.errors import AddressOverflowError, InvalidAddressError

VA = NewType("VA", int)
RVA = NewType("RVA", int)

VA_MAX: int = (1 << 64) - 1
PAGE_SIZE: int = 0x1000


def check_va(address: int) -> VA:
    """Validate that *address* is representable as a 64-bit VA.

    Raises:
        InvalidAddressError: If *address* is negative or wider than 64 bits.
    """
    if address < 0 or address > VA_MAX:
        raise InvalidAddressError(address)
    return VA(address)


def va_add(address: int, offset: int) -> VA:
    """Return ``address + offset``, checking for 64-bit overflow.

    Raises:
        AddressOverflowError: If the sum does not fit in 64 bits.
    """
    result = address + offset
    if result < 0 or result > VA_MAX:
        raise AddressOverflowError(address, offset)
    return VA(result)


def rva_to_va(base_address: int, rva: int) -> VA:
    """Resolve *rva* against a module base address."""
    return va_add(base_address, rva)


def range_end(address: int, length: int) -> int:
    """Exclusive end of ``[address, address + length)``.

    The end may equal ``2**64`` when a range reaches the top of the
    address space; anything beyond that is an overflow.
    """
    end = address + length
    if end > VA_MAX + 1:
        raise AddressOverflowError(address, length)
    return end


def align_down(value: int, alignment: int = PAGE_SIZE) -> int:
    return value - (value % alignment)


def align_up(value: int, alignment: int = PAGE_SIZE) -> int:
    remainder = value % alignment
    if remainder == 0:
        return value
    return value + (alignment - remainder)
