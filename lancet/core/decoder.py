"""
Instruction Decoder
====================

The decode primitive used by the workspace: given a byte window and the
address it lives at, produce zero or more :class:`Instruction` objects.

:class:`CapstoneDecoder` drives the Capstone engine in detail mode and
maps its instruction groups onto :class:`InstructionGroup`.  Direct branch
and call targets come from immediate operands; register- and
memory-indirect targets are not resolved.  Conditional branches are
recognised by mnemonic, ignoring prefixes such as ``bnd``.

References:
    - Capstone disassembly engine: https://www.capstone-engine.org/
    - Intel 64 and IA-32 Architectures Software Developer's Manual,
      Vol. 2A, "Jcc -- Jump if Condition Is Met".
"""

from __future__ import annotations

import abc

import capstone
from capstone import x86 as cs_x86

from lancet.core.errors import DecodeError, InvalidArchError, InvalidModeError
from lancet.core.models import Arch, Instruction, InstructionGroup, Mode


# ---------------------------------------------------------------------------
# Instruction classification constants
# ---------------------------------------------------------------------------

_X86_CONDITIONAL_JUMPS: set[str] = {
    "je", "jne", "jz", "jnz", "jg", "jge", "jl", "jle",
    "ja", "jae", "jb", "jbe", "jo", "jno", "js", "jns",
    "jp", "jnp", "jpe", "jpo",
    "jcxz", "jecxz", "jrcxz",
    "loop", "loope", "loopne", "loopz", "loopnz",
}

# Far transfers encode segment:offset pairs; their immediates are not VAs
_X86_FAR_TRANSFERS: set[str] = {"ljmp", "lcall"}

_GROUP_MAP: dict[int, InstructionGroup] = {
    capstone.CS_GRP_JUMP: InstructionGroup.JUMP,
    capstone.CS_GRP_CALL: InstructionGroup.CALL,
    capstone.CS_GRP_RET: InstructionGroup.RET,
    capstone.CS_GRP_INT: InstructionGroup.INT,
    capstone.CS_GRP_IRET: InstructionGroup.IRET,
    capstone.CS_GRP_BRANCH_RELATIVE: InstructionGroup.BRANCH_RELATIVE,
}

_CS_MODES: dict[Mode, int] = {
    Mode.MODE_32: capstone.CS_MODE_32,
    Mode.MODE_64: capstone.CS_MODE_64,
}


class Decoder(abc.ABC):
    """Abstract decode engine owned by a workspace."""

    @abc.abstractmethod
    def decode(self, data: bytes, address: int, count: int = 1) -> list[Instruction]:
        """Decode up to *count* instructions from *data* placed at *address*.

        Returns an empty list if nothing could be decoded at *address*.
        """

    def close(self) -> None:
        """Release engine resources.  Safe to call more than once."""


class CapstoneDecoder(Decoder):
    """x86 / x86-64 decoder backed by Capstone.

    Args:
        arch: Architecture tag (only ``x86``).
        mode: ``32`` or ``64``.

    Raises:
        InvalidArchError: For any architecture other than x86.
        InvalidModeError: For an unknown bit width.
    """

    def __init__(self, arch: Arch | str = Arch.X86, mode: Mode | str = Mode.MODE_32) -> None:
        try:
            self._arch = Arch(arch)
        except ValueError:
            raise InvalidArchError(arch) from None
        try:
            self._mode = Mode(mode)
        except ValueError:
            raise InvalidModeError(mode) from None

        self._mask = (1 << (8 * self._mode.pointer_size)) - 1
        self._cs: capstone.Cs | None = capstone.Cs(
            capstone.CS_ARCH_X86, _CS_MODES[self._mode]
        )
        self._cs.detail = True

    @property
    def closed(self) -> bool:
        return self._cs is None

    def decode(self, data: bytes, address: int, count: int = 1) -> list[Instruction]:
        if self._cs is None:
            raise DecodeError(address, "decoder has been released")

        result: list[Instruction] = []
        try:
            for insn in self._cs.disasm(bytes(data), address, count):
                result.append(self._convert(insn))
        except capstone.CsError as exc:
            raise DecodeError(address, str(exc)) from exc
        return result

    def close(self) -> None:
        self._cs = None

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    def _convert(self, insn: capstone.CsInsn) -> Instruction:
        groups = frozenset(
            _GROUP_MAP[g] for g in insn.groups if g in _GROUP_MAP
        )
        mnemonic = insn.mnemonic.lower()
        # Prefixed forms such as "bnd jne" or "notrack jmp"
        base = mnemonic.rsplit(None, 1)[-1] if mnemonic else mnemonic

        targets: list[int] = []
        is_branch = InstructionGroup.JUMP in groups or InstructionGroup.CALL in groups
        if is_branch and base not in _X86_FAR_TRANSFERS:
            for op in insn.operands:
                if op.type == cs_x86.X86_OP_IMM:
                    targets.append(op.imm & self._mask)

        return Instruction(
            address=insn.address,
            size=insn.size,
            mnemonic=mnemonic,
            op_str=insn.op_str,
            raw=bytes(insn.bytes),
            groups=groups,
            targets=tuple(targets),
            conditional=base in _X86_CONDITIONAL_JUMPS,
        )
