"""
Lancet Workspace
=================

The aggregate root of an analysis session.  A :class:`Workspace` owns:

    - one :class:`~lancet.core.aspace.AddressSpace` (the bytes),
    - the list of :class:`MemoryRegion` records mirroring what was mapped,
    - the list of :class:`LoadedModule` records, in load order,
    - the architecture / mode pair, fixed at construction,
    - the decode engine handle, released by :meth:`Workspace.close`.

Memory operations forward to the address space and keep the region list
in step.  The workspace itself knows nothing about instruction semantics:
:meth:`Workspace.decode_one` only reads a window of at most
:data:`MAX_INSN_SIZE` bytes and hands it to the decoder.

Usage::

    with Workspace("x86", "32") as ws:
        ws.map(0x1000, 0x1000, "text")
        ws.write(0x1000, b"\\x55\\x89\\xe5\\xc3")
        insn = ws.decode_one(0x1000)
"""

from __future__ import annotations

import struct
from typing import Optional, TYPE_CHECKING

from lancet.core.address import VA, check_va
from lancet.core.aspace import AddressSpace, SimpleAddressSpace
from lancet.core.decoder import CapstoneDecoder, Decoder
from lancet.core.errors import (
    DecodeError,
    InvalidArchError,
    InvalidModeError,
    LancetError,
)
from lancet.core.models import Arch, Instruction, LoadedModule, MemoryRegion, Mode
from shared.config import LancetConfig
from shared.logger import LancetLogger

if TYPE_CHECKING:
    from lancet.core.emulator import Emulator


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Longest legal x86 instruction is 15 bytes; read one extra
MAX_INSN_SIZE: int = 0x10

_POINTER_FORMATS: dict[Mode, str] = {
    Mode.MODE_32: "<I",
    Mode.MODE_64: "<Q",
}


class Workspace:
    """A modelled virtual address space plus module and region registries.

    Args:
        arch: Architecture tag (``"x86"``).
        mode: Bit width (``"32"`` or ``"64"``).
        decoder: Decode engine to use.  Defaults to a :class:`CapstoneDecoder`
            for *arch* / *mode*.  The workspace takes ownership either way.
        address_space: Backing storage.  Defaults to a fresh
            :class:`SimpleAddressSpace`.
        config: Loaded configuration (display and emulator defaults).
        logger: Logger to use; a ``workspace`` logger is created otherwise.

    Raises:
        InvalidArchError: Unsupported architecture.
        InvalidModeError: Unsupported mode.
    """

    def __init__(
        self,
        arch: Arch | str = Arch.X86,
        mode: Mode | str = Mode.MODE_32,
        *,
        decoder: Optional[Decoder] = None,
        address_space: Optional[AddressSpace] = None,
        config: Optional[LancetConfig] = None,
        logger: Optional[LancetLogger] = None,
    ) -> None:
        try:
            try:
                self._arch = Arch(arch)
            except ValueError:
                raise InvalidArchError(arch) from None
            try:
                self._mode = Mode(mode)
            except ValueError:
                raise InvalidModeError(mode) from None
        except BaseException:
            if decoder is not None:
                decoder.close()
            raise

        self._decoder: Optional[Decoder] = decoder or CapstoneDecoder(self._arch, self._mode)
        try:
            self._config = config or LancetConfig()
            self._logger = logger or LancetLogger.from_config("workspace", self._config)
            self._aspace = address_space or SimpleAddressSpace()
            self._regions: list[MemoryRegion] = list(self._aspace.list_regions())
            self._modules: list[LoadedModule] = []
        except BaseException:
            self._decoder.close()
            self._decoder = None
            raise

        self._logger.debug(
            "Workspace created: arch=%s mode=%s", self._arch.value, self._mode.value
        )

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def arch(self) -> Arch:
        return self._arch

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def config(self) -> LancetConfig:
        return self._config

    @property
    def logger(self) -> LancetLogger:
        return self._logger

    @property
    def address_space(self) -> AddressSpace:
        return self._aspace

    @property
    def memory_regions(self) -> list[MemoryRegion]:
        """Tracked regions in map order (a copy)."""
        return list(self._regions)

    @property
    def loaded_modules(self) -> list[LoadedModule]:
        """Loaded modules in load order (a copy)."""
        return list(self._modules)

    @property
    def closed(self) -> bool:
        return self._decoder is None

    # ------------------------------------------------------------------ #
    #  Memory forwarding
    # ------------------------------------------------------------------ #

    def map(self, address: int, length: int, name: str = "") -> MemoryRegion:
        region = self._aspace.map(address, length, name)
        self._regions.append(region)
        self._logger.debug("Mapped %s", region)
        return region

    def unmap(self, address: int, length: int) -> None:
        self._aspace.unmap(address, length)
        self._regions = [
            r for r in self._regions
            if not (r.address == address and r.length == length)
        ]
        self._logger.debug("Unmapped [%#x, %#x)", address, address + length)

    def read(self, address: int, length: int) -> bytes:
        return self._aspace.read(address, length)

    def write(self, address: int, data: bytes) -> None:
        self._aspace.write(address, data)

    def find_region(self, address: int, length: int = 1) -> Optional[MemoryRegion]:
        return self._aspace.find_region(address, length)

    def probe(self, address: int, length: int = 1) -> bool:
        """Is ``[address, address + length)`` readable?"""
        try:
            self._aspace.read(address, length)
        except LancetError:
            return False
        return True

    # ------------------------------------------------------------------ #
    #  Typed reads
    # ------------------------------------------------------------------ #

    def _read_struct(self, address: int, fmt: str) -> int:
        data = self._aspace.read(address, struct.calcsize(fmt))
        return struct.unpack(fmt, data)[0]

    def read_u8(self, address: int) -> int:
        return self._read_struct(address, "<B")

    def read_u16(self, address: int) -> int:
        return self._read_struct(address, "<H")

    def read_u32(self, address: int) -> int:
        return self._read_struct(address, "<I")

    def read_u64(self, address: int) -> int:
        return self._read_struct(address, "<Q")

    def read_pointer(self, address: int) -> VA:
        """Read a mode-width little-endian pointer at an absolute VA.

        Raises:
            InvalidModeError: If the workspace mode has no pointer width.
            UnmappedReadError: If the pointer is not fully mapped.
        """
        fmt = _POINTER_FORMATS.get(self._mode)
        if fmt is None:
            raise InvalidModeError(self._mode)
        return VA(self._read_struct(address, fmt))

    # ------------------------------------------------------------------ #
    #  Module registry and relative access
    # ------------------------------------------------------------------ #

    def add_loaded_module(self, module: LoadedModule) -> None:
        """Register *module*.  Mapping its memory is the loader's job."""
        self._modules.append(module)
        self._logger.debug(
            "Loaded module %s at %#x (entry %#x)",
            module.name, module.base_address, module.entry_point,
        )

    def get_module(self, name: str) -> Optional[LoadedModule]:
        for module in self._modules:
            if module.name == name:
                return module
        return None

    def read_relative(self, module: LoadedModule, rva: int, length: int) -> bytes:
        return self._aspace.read(module.va(rva), length)

    def write_relative(self, module: LoadedModule, rva: int, data: bytes) -> None:
        self._aspace.write(module.va(rva), data)

    def read_pointer_relative(self, module: LoadedModule, rva: int) -> VA:
        """Read a pointer stored at ``module.base_address + rva``."""
        return self.read_pointer(module.va(rva))

    # ------------------------------------------------------------------ #
    #  Decoding
    # ------------------------------------------------------------------ #

    def decode_one(self, address: int) -> Instruction:
        """Decode exactly one instruction anchored at *address*.

        The read window is clamped to the containing region, so an
        instruction straddling the end of a region fails to decode.

        Raises:
            DecodeError: If the address is unmapped, the decoder produced
                nothing, or the decoder has been released.
        """
        if self._decoder is None:
            raise DecodeError(address, "workspace is closed")
        check_va(address)

        region = self._aspace.find_region(address)
        if region is None:
            raise DecodeError(address, "address is not mapped")
        window = min(MAX_INSN_SIZE, region.end - address)
        try:
            data = self._aspace.read(address, window)
        except LancetError as exc:
            raise DecodeError(address, str(exc)) from exc

        insns = self._decoder.decode(data, address, 1)
        if not insns or insns[0].address != address:
            raise DecodeError(address)
        return insns[0]

    def instruction_length(self, address: int) -> int:
        return self.decode_one(address).size

    def disassemble_instruction(self, address: int) -> str:
        """Return ``"0x<va>: <mnemonic> <operands>"`` for one instruction."""
        return str(self.decode_one(address))

    # ------------------------------------------------------------------ #
    #  Diagnostics
    # ------------------------------------------------------------------ #

    def dump_memory_regions(self) -> None:
        """Log every tracked region at INFO level."""
        self._logger.info("Memory regions (%d):", len(self._regions))
        for region in self._regions:
            self._logger.info(
                "  %-16s %#018x - %#018x (%#x bytes)",
                region.name or "<unnamed>", region.address, region.end, region.length,
            )

    # ------------------------------------------------------------------ #
    #  Emulator
    # ------------------------------------------------------------------ #

    def get_emulator(self) -> Emulator:
        """Bootstrap a fresh emulator from the current memory contents."""
        from lancet.core.emulator import bootstrap_emulator

        return bootstrap_emulator(self, self._config.emulator)

    # ------------------------------------------------------------------ #
    #  Lifetime
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Release the decode engine.  Safe to call more than once."""
        if self._decoder is None:
            return
        self._decoder.close()
        self._decoder = None
        self._logger.debug("Workspace closed")

    def __enter__(self) -> Workspace:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Workspace(arch={self._arch.value!r}, mode={self._mode.value!r}, "
            f"regions={len(self._regions)}, modules={len(self._modules)})"
        )
