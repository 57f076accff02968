"""
Lancet Core Module
===================

Address types, the error hierarchy, data models, the address space, the
decoder, the workspace aggregate and the emulator bootstrap.
"""

from lancet.core.address import RVA, VA
from lancet.core.aspace import AddressSpace, SimpleAddressSpace
from lancet.core.decoder import CapstoneDecoder, Decoder
from lancet.core.emulator import Emulator, bootstrap_emulator
from lancet.core.errors import (
    DecodeError,
    EmulatorError,
    HandlerError,
    InvalidArchError,
    InvalidLengthError,
    InvalidModeError,
    LancetError,
    LoaderError,
    NotMappedError,
    OverlapError,
    UnmappedReadError,
    UnmappedWriteError,
)
from lancet.core.models import (
    Arch,
    ExplorationResult,
    Instruction,
    InstructionGroup,
    JumpKind,
    JumpTarget,
    LoadedModule,
    MemoryRegion,
    Mode,
)
from lancet.core.workspace import Workspace

__all__ = [
    "VA",
    "RVA",
    "AddressSpace",
    "SimpleAddressSpace",
    "Decoder",
    "CapstoneDecoder",
    "Emulator",
    "bootstrap_emulator",
    "LancetError",
    "InvalidArchError",
    "InvalidModeError",
    "InvalidLengthError",
    "OverlapError",
    "NotMappedError",
    "UnmappedReadError",
    "UnmappedWriteError",
    "DecodeError",
    "HandlerError",
    "EmulatorError",
    "LoaderError",
    "Arch",
    "Mode",
    "MemoryRegion",
    "LoadedModule",
    "Instruction",
    "InstructionGroup",
    "JumpKind",
    "JumpTarget",
    "ExplorationResult",
    "Workspace",
]
