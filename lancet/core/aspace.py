"""
Address Space
==============

The storage primitive every other Lancet component builds on: a
byte-addressable space made of named, non-overlapping regions.

:class:`AddressSpace` defines the capability set (map, unmap, read, write,
list/find regions).  :class:`SimpleAddressSpace` is the in-process
implementation used by a :class:`~lancet.core.workspace.Workspace`; the
emulator exposes the same capability set on top of Unicorn.

Containment rules:
    - ``map`` rejects zero-length regions and any intersection with an
      existing region.
    - ``unmap`` removes only a region matching ``(address, length)`` exactly.
    - ``read`` and ``write`` must fall entirely inside one region.  A write
      that fails leaves memory unchanged.
"""

from __future__ import annotations

import abc
from typing import Iterable, Optional

from lancet.core.address import check_va, range_end
from lancet.core.errors import (
    InvalidLengthError,
    NotMappedError,
    OverlapError,
    UnmappedReadError,
    UnmappedWriteError,
)
from lancet.core.models import MemoryRegion


def check_new_region(
    regions: Iterable[MemoryRegion], address: int, length: int
) -> None:
    """Validate that ``[address, address + length)`` may be mapped.

    Raises:
        InvalidLengthError: If *length* is not positive.
        InvalidAddressError: If *address* is not a valid VA.
        AddressOverflowError: If the range runs past the top of the space.
        OverlapError: If the range intersects one of *regions*.
    """
    if length <= 0:
        raise InvalidLengthError(length)
    check_va(address)
    range_end(address, length)
    for region in regions:
        if region.intersects(address, length):
            raise OverlapError(address, length, region.name)


class AddressSpace(abc.ABC):
    """Abstract byte-addressable memory made of named regions."""

    @abc.abstractmethod
    def map(self, address: int, length: int, name: str = "") -> MemoryRegion:
        """Register a new zero-filled region and return its descriptor."""

    @abc.abstractmethod
    def unmap(self, address: int, length: int) -> None:
        """Remove the region exactly matching ``(address, length)``."""

    @abc.abstractmethod
    def read(self, address: int, length: int) -> bytes:
        """Return *length* bytes starting at *address*."""

    @abc.abstractmethod
    def write(self, address: int, data: bytes) -> None:
        """Store *data* starting at *address*."""

    @abc.abstractmethod
    def list_regions(self) -> list[MemoryRegion]:
        """All mapped regions, in registration order."""

    def find_region(self, address: int, length: int = 1) -> Optional[MemoryRegion]:
        """Return the region fully containing the range, or ``None``."""
        for region in self.list_regions():
            if region.contains(address, length):
                return region
        return None


class SimpleAddressSpace(AddressSpace):
    """Address space backed by one ``bytearray`` per region.

    Usage::

        space = SimpleAddressSpace()
        space.map(0x1000, 0x1000, "text")
        space.write(0x1000, b"\\x55\\x89\\xe5\\xc3")
        assert space.read(0x1000, 4) == b"\\x55\\x89\\xe5\\xc3"
    """

    def __init__(self) -> None:
        # Registration order is preserved by the list
        self._regions: list[tuple[MemoryRegion, bytearray]] = []

    # ------------------------------------------------------------------ #
    #  Region bookkeeping
    # ------------------------------------------------------------------ #

    def map(self, address: int, length: int, name: str = "") -> MemoryRegion:
        check_new_region(self.list_regions(), address, length)
        region = MemoryRegion(name=name, address=address, length=length)
        self._regions.append((region, bytearray(length)))
        return region

    def unmap(self, address: int, length: int) -> None:
        for idx, (region, _) in enumerate(self._regions):
            if region.address == address and region.length == length:
                del self._regions[idx]
                return
        raise NotMappedError(address, length)

    def list_regions(self) -> list[MemoryRegion]:
        return [region for region, _ in self._regions]

    # ------------------------------------------------------------------ #
    #  Access
    # ------------------------------------------------------------------ #

    def _locate(
        self, address: int, length: int
    ) -> Optional[tuple[MemoryRegion, bytearray]]:
        for region, backing in self._regions:
            if region.contains(address, length):
                return region, backing
        return None

    def read(self, address: int, length: int) -> bytes:
        if length < 0:
            raise InvalidLengthError(length)
        found = self._locate(address, max(length, 1))
        if found is None:
            raise UnmappedReadError(address, length)
        region, backing = found
        offset = address - region.address
        return bytes(backing[offset:offset + length])

    def write(self, address: int, data: bytes) -> None:
        length = len(data)
        found = self._locate(address, max(length, 1))
        if found is None:
            raise UnmappedWriteError(address, length)
        region, backing = found
        offset = address - region.address
        backing[offset:offset + length] = data
