"""
Emulator Bootstrap
===================

Mirrors a workspace's memory into a fresh Unicorn execution context and
establishes an initial stack, producing an :class:`Emulator` ready for
forward emulation.

:class:`Emulator` exposes the same capability set as
:class:`~lancet.core.aspace.AddressSpace` plus stack-pointer and
program-counter access.  Unicorn only maps whole 4 KiB pages, so each
region is widened to page bounds inside the engine (pages that already
back another region are reused) while the emulator keeps the exact
``{name, address, length}`` records for bookkeeping and access checks.

The emulator's memory is a copy taken at bootstrap time; it holds no
reference to the originating workspace.

References:
    - Unicorn Engine: https://www.unicorn-engine.org/
    - flare-emu (Mandiant), Unicorn-based emulation helpers.
"""

from __future__ import annotations

from typing import Iterator, Optional, TYPE_CHECKING

from unicorn import UC_ARCH_X86, UC_MODE_32, UC_MODE_64, UC_PROT_ALL, Uc, UcError
from unicorn.x86_const import (
    UC_X86_REG_EIP,
    UC_X86_REG_ESP,
    UC_X86_REG_RIP,
    UC_X86_REG_RSP,
)

from lancet.core.address import PAGE_SIZE, align_down, align_up
from lancet.core.aspace import AddressSpace, check_new_region
from lancet.core.errors import (
    EmulatorError,
    InvalidModeError,
    LancetError,
    NotMappedError,
    UnmappedReadError,
    UnmappedWriteError,
)
from lancet.core.models import MemoryRegion, Mode
from shared.config import EmulatorConfig
from shared.logger import LancetLogger

if TYPE_CHECKING:
    from lancet.core.workspace import Workspace


# ---------------------------------------------------------------------------
# Per-mode Unicorn parameters
# ---------------------------------------------------------------------------

_UC_MODES: dict[Mode, int] = {
    Mode.MODE_32: UC_MODE_32,
    Mode.MODE_64: UC_MODE_64,
}

_SP_REGISTERS: dict[Mode, int] = {
    Mode.MODE_32: UC_X86_REG_ESP,
    Mode.MODE_64: UC_X86_REG_RSP,
}

_PC_REGISTERS: dict[Mode, int] = {
    Mode.MODE_32: UC_X86_REG_EIP,
    Mode.MODE_64: UC_X86_REG_RIP,
}


def _pages(address: int, length: int) -> set[int]:
    start = align_down(address)
    end = align_up(address + length)
    return set(range(start, end, PAGE_SIZE))


def _runs(pages: set[int]) -> Iterator[tuple[int, int]]:
    """Group page addresses into contiguous ``(start, length)`` runs."""
    run_start: Optional[int] = None
    prev = 0
    for page in sorted(pages):
        if run_start is None:
            run_start = page
        elif page != prev + PAGE_SIZE:
            yield run_start, prev + PAGE_SIZE - run_start
            run_start = page
        prev = page
    if run_start is not None:
        yield run_start, prev + PAGE_SIZE - run_start


class Emulator(AddressSpace):
    """An x86 execution context backed by Unicorn.

    Args:
        mode: ``"32"`` or ``"64"``.
        logger: Logger to use; an ``emulator`` logger is created otherwise.

    Raises:
        InvalidModeError: For an unknown bit width.
        EmulatorError: If Unicorn cannot be initialised.
    """

    def __init__(self, mode: Mode | str = Mode.MODE_32, *, logger: Optional[LancetLogger] = None) -> None:
        try:
            self._mode = Mode(mode)
        except ValueError:
            raise InvalidModeError(mode) from None

        self._logger = logger or LancetLogger("emulator")
        try:
            self._uc: Optional[Uc] = Uc(UC_ARCH_X86, _UC_MODES[self._mode])
        except UcError as exc:
            raise EmulatorError(f"Unicorn initialisation failed: {exc}") from exc

        self._regions: list[MemoryRegion] = []
        self._pages: set[int] = set()

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def closed(self) -> bool:
        return self._uc is None

    def _engine(self) -> Uc:
        if self._uc is None:
            raise EmulatorError("Emulator has been closed")
        return self._uc

    # ------------------------------------------------------------------ #
    #  AddressSpace capability set
    # ------------------------------------------------------------------ #

    def map(self, address: int, length: int, name: str = "") -> MemoryRegion:
        uc = self._engine()
        check_new_region(self._regions, address, length)

        wanted = _pages(address, length)
        missing = wanted - self._pages
        try:
            for run_start, run_length in _runs(missing):
                uc.mem_map(run_start, run_length, UC_PROT_ALL)
                self._pages.update(range(run_start, run_start + run_length, PAGE_SIZE))
        except UcError as exc:
            raise EmulatorError(
                f"Failed to map {name!r} at {address:#x} ({length:#x} bytes): {exc}"
            ) from exc

        region = MemoryRegion(name=name, address=address, length=length)
        self._regions.append(region)
        self._logger.debug("Emulator mapped %s", region)
        return region

    def unmap(self, address: int, length: int) -> None:
        uc = self._engine()
        for idx, region in enumerate(self._regions):
            if region.address == address and region.length == length:
                break
        else:
            raise NotMappedError(address, length)

        del self._regions[idx]
        still_used: set[int] = set()
        for other in self._regions:
            still_used |= _pages(other.address, other.length)
        released = _pages(address, length) - still_used
        try:
            for run_start, run_length in _runs(released):
                uc.mem_unmap(run_start, run_length)
        except UcError as exc:
            raise EmulatorError(f"Failed to unmap {address:#x}: {exc}") from exc
        self._pages -= released

    def read(self, address: int, length: int) -> bytes:
        uc = self._engine()
        if self.find_region(address, max(length, 1)) is None:
            raise UnmappedReadError(address, length)
        try:
            return bytes(uc.mem_read(address, length))
        except UcError as exc:
            raise EmulatorError(f"Read at {address:#x} failed: {exc}") from exc

    def write(self, address: int, data: bytes) -> None:
        uc = self._engine()
        if self.find_region(address, max(len(data), 1)) is None:
            raise UnmappedWriteError(address, len(data))
        try:
            uc.mem_write(address, bytes(data))
        except UcError as exc:
            raise EmulatorError(f"Write at {address:#x} failed: {exc}") from exc

    def list_regions(self) -> list[MemoryRegion]:
        return list(self._regions)

    # ------------------------------------------------------------------ #
    #  Registers
    # ------------------------------------------------------------------ #

    def _reg_write(self, register: int, value: int) -> None:
        try:
            self._engine().reg_write(register, value)
        except UcError as exc:
            raise EmulatorError(f"Register write failed: {exc}") from exc

    def _reg_read(self, register: int) -> int:
        try:
            return self._engine().reg_read(register)
        except UcError as exc:
            raise EmulatorError(f"Register read failed: {exc}") from exc

    def set_stack_pointer(self, address: int) -> None:
        self._reg_write(_SP_REGISTERS[self._mode], address)

    def get_stack_pointer(self) -> int:
        return self._reg_read(_SP_REGISTERS[self._mode])

    def set_program_counter(self, address: int) -> None:
        self._reg_write(_PC_REGISTERS[self._mode], address)

    def get_program_counter(self) -> int:
        return self._reg_read(_PC_REGISTERS[self._mode])

    # ------------------------------------------------------------------ #
    #  Lifetime
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Drop the Unicorn instance.  Safe to call more than once."""
        if self._uc is None:
            return
        self._uc = None
        self._regions.clear()
        self._pages.clear()

    def __enter__(self) -> Emulator:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ========================== Bootstrap ======================================


def bootstrap_emulator(
    workspace: Workspace,
    config: Optional[EmulatorConfig] = None,
    *,
    logger: Optional[LancetLogger] = None,
) -> Emulator:
    """Build an :class:`Emulator` mirroring *workspace*'s memory.

    Every tracked region is mapped under the same name, address and length
    and its bytes copied over.  A ``stack`` region of
    ``config.stack_size`` bytes is then mapped so that half of it lies
    below ``config.stack_address``, and the stack pointer is set to
    ``config.stack_address``.

    Args:
        workspace: Source of regions and bytes.
        config: Stack layout.  Defaults to :class:`EmulatorConfig`.
        logger: Logger to use; an ``emulator`` logger is created otherwise.

    Returns:
        A fully initialised emulator owned by the caller.

    Raises:
        LancetError: Whatever step failed.  The partially built emulator
            is closed before the error propagates.
    """
    config = config or EmulatorConfig()
    log = logger or LancetLogger.from_config("emulator", workspace.config)

    emu = Emulator(workspace.mode, logger=log)
    try:
        with log.operation("bootstrap_emulator"):
            for region in workspace.memory_regions:
                emu.map(region.address, region.length, region.name)
                emu.write(region.address, workspace.read(region.address, region.length))

            stack_base = config.stack_address - config.stack_size // 2
            emu.map(stack_base, config.stack_size, "stack")
            emu.set_stack_pointer(config.stack_address)
            log.debug(
                "Stack mapped at %#x (%#x bytes), SP=%#x",
                stack_base, config.stack_size, config.stack_address,
            )
    except LancetError as exc:
        log.error("Emulator bootstrap failed: %s", exc)
        emu.close()
        raise
    except BaseException:
        emu.close()
        raise
    return emu
