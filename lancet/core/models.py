"""
Lancet Data Models
===================

Value objects shared by the address space, the workspace, the exploration
engine and the emulator bootstrap.

Bookkeeping records (:class:`MemoryRegion`, :class:`LoadedModule`) and run
results (:class:`ExplorationResult`) are Pydantic models so they validate
on construction and serialise straight to JSON for the CLI.  Per-step
objects created in the exploration hot loop (:class:`Instruction`,
:class:`JumpTarget`) are slotted dataclasses.

References:
    - Pydantic v2 documentation. https://docs.pydantic.dev/latest/
    - Intel 64 and IA-32 Architectures Software Developer's Manual, Vol. 2.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from lancet.core.address import VA, VA_MAX, range_end, rva_to_va, va_add


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Arch(str, enum.Enum):
    """Instruction-set architectures a workspace can be built for."""
    X86 = "x86"

    @classmethod
    def _missing_(cls, value: object) -> Arch | None:
        if isinstance(value, str):
            for member in cls:
                if member.value == value.lower():
                    return member
        return None


class Mode(str, enum.Enum):
    """Bit width of the active architecture."""
    MODE_32 = "32"
    MODE_64 = "64"

    @classmethod
    def _missing_(cls, value: object) -> Mode | None:
        # Accept bare bit widths such as 32 or 64
        if isinstance(value, int) and not isinstance(value, bool):
            for member in cls:
                if member.value == str(value):
                    return member
        return None

    @property
    def pointer_size(self) -> int:
        return 4 if self is Mode.MODE_32 else 8


class InstructionGroup(str, enum.Enum):
    """Semantic instruction groups reported by the decode engine."""
    JUMP = "jump"
    CALL = "call"
    RET = "ret"
    INT = "int"
    IRET = "iret"
    BRANCH_RELATIVE = "branch_relative"


class JumpKind(str, enum.Enum):
    """Kind of a control-flow edge discovered during exploration."""
    JUMP = "jump"
    CALL = "call"
    CONDITIONAL = "conditional-branch"


# ---------------------------------------------------------------------------
# Memory bookkeeping
# ---------------------------------------------------------------------------

class MemoryRegion(BaseModel):
    """A named, contiguous range ``[address, address + length)``.

    Attributes:
        name: Label used for bookkeeping and diagnostics.
        address: First VA of the region.
        length: Size of the region in bytes (never zero).
    """
    model_config = ConfigDict(frozen=True)

    name: str = ""
    address: int = Field(ge=0, le=VA_MAX)
    length: int = Field(gt=0)

    @property
    def end(self) -> int:
        """Exclusive end address."""
        return range_end(self.address, self.length)

    def contains(self, address: int, length: int = 1) -> bool:
        """Is ``[address, address + length)`` fully inside this region?"""
        return self.address <= address and address + length <= self.end

    def intersects(self, address: int, length: int) -> bool:
        return address < self.end and self.address < address + length

    def __str__(self) -> str:
        return f"{self.name or '<unnamed>'} [{self.address:#x}, {self.end:#x})"


class LoadedModule(BaseModel):
    """A module placed into a workspace by a loader.

    Read-only once created.  The module does not own memory: its sections
    are regions the loader mapped separately.

    Attributes:
        name: Module name (usually the input file name).
        base_address: VA the module was loaded at.
        entry_point: VA of the module's entry point.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    base_address: int = Field(ge=0, le=VA_MAX)
    entry_point: int = Field(ge=0, le=VA_MAX)

    def va(self, rva: int) -> VA:
        """Resolve an RVA relative to this module into a VA."""
        return rva_to_va(self.base_address, rva)


# ---------------------------------------------------------------------------
# Decoded instructions and discovered edges
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Instruction:
    """One instruction produced by the decode engine.

    Attributes:
        address: VA the instruction was decoded at.
        size: Encoded length in bytes.
        mnemonic: Instruction mnemonic (``"push"``, ``"jne"``, ...).
        op_str: Operand text.
        raw: The instruction's bytes.
        groups: Semantic groups the instruction belongs to.
        targets: Directly-encoded branch/call target VAs, if any.
        conditional: ``True`` for conditional branches (``jcc``, ``loop``, ...).
    """
    address: int
    size: int
    mnemonic: str
    op_str: str = ""
    raw: bytes = b""
    groups: frozenset[InstructionGroup] = field(default_factory=frozenset)
    targets: tuple[int, ...] = ()
    conditional: bool = False

    def has_group(self, group: InstructionGroup) -> bool:
        return group in self.groups

    @property
    def is_call(self) -> bool:
        return InstructionGroup.CALL in self.groups

    @property
    def is_jump(self) -> bool:
        return InstructionGroup.JUMP in self.groups

    @property
    def is_return(self) -> bool:
        return bool(self.groups & {InstructionGroup.RET, InstructionGroup.IRET})

    @property
    def is_unconditional_jump(self) -> bool:
        return self.is_jump and not self.conditional

    @property
    def is_conditional_branch(self) -> bool:
        return self.is_jump and self.conditional

    @property
    def falls_through(self) -> bool:
        """Does execution continue at the next sequential instruction?

        Calls are assumed to return.
        """
        return not (self.is_unconditional_jump or self.is_return)

    @property
    def next_address(self) -> VA:
        return va_add(self.address, self.size)

    def __str__(self) -> str:
        return f"0x{self.address:x}: {self.mnemonic} {self.op_str}".strip()


@dataclass(frozen=True, slots=True)
class JumpTarget:
    """A control-flow edge discovered during one exploration run."""
    va: int
    kind: JumpKind


# ---------------------------------------------------------------------------
# Exploration results
# ---------------------------------------------------------------------------

class FlowEdge(BaseModel):
    """A directly-encoded branch edge ``source -> target``."""
    source: int
    target: int
    kind: JumpKind


class DecodeFailure(BaseModel):
    """An address the engine reached but could not decode."""
    address: int
    reason: str = ""


class ExplorationResult(BaseModel):
    """Outcome of one :meth:`LinearDisassembler.explore_function` run.

    Attributes:
        start: The address exploration started from.
        instructions: Instruction-start addresses in visitation order.
        edges: Branch edges reported to jump observers, in report order.
        decode_failures: Reached addresses that were dead ends.
        truncated: ``True`` if the run stopped at ``max_instructions``.
    """
    start: int
    instructions: list[int] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)
    decode_failures: list[DecodeFailure] = Field(default_factory=list)
    truncated: bool = False

    @property
    def instruction_count(self) -> int:
        return len(self.instructions)

    @property
    def call_targets(self) -> list[int]:
        """Distinct direct call targets, sorted."""
        return sorted({e.target for e in self.edges if e.kind == JumpKind.CALL})
