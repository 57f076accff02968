"""
Linear Disassembly Exploration Engine
======================================

Discovers the instructions reachable from a function entry point by
following straight-line flow and directly-encoded branch targets.  Code is
never executed: each address is decoded once through
:meth:`Workspace.decode_one` and classified by its instruction groups.

Per decoded instruction at ``va``:

    - instruction observers fire with ``(va, insn)``;
    - a call reports a ``call`` edge for each direct target, but the callee
      is not explored; execution is assumed to return, so the fall-through
      is queued;
    - a conditional branch reports ``conditional-branch`` edges and queues
      both the target and the fall-through;
    - an unconditional jump reports ``jump`` edges and queues its targets
      only.  An indirect jump ends the path;
    - a return ends the path;
    - anything else falls through.

An explicit work queue plus a visited set keyed by instruction-start
address guarantees termination on back-edges and allows overlapping
decodes from different start offsets.  A decode failure marks a dead end
and the run goes on, except at the start address where it is raised.  An
exception raised by any observer aborts the run as :class:`HandlerError`.

References:
    - Schwarz, B., Debray, S., & Andrews, G. (2002). Disassembly of
      Executable Code Revisited. WCRE 2002.
    - Cifuentes, C., & Gough, K. J. (1995). Decompilation of Binary
      Programs. Software: Practice and Experience, 25(7).
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Optional

from lancet.core.address import check_va
from lancet.core.errors import AddressOverflowError, DecodeError, HandlerError
from lancet.core.models import (
    DecodeFailure,
    ExplorationResult,
    FlowEdge,
    Instruction,
    JumpKind,
    JumpTarget,
)
from lancet.core.workspace import Workspace
from shared.config import ExplorerConfig
from shared.logger import LancetLogger


InstructionHandler = Callable[[int, Instruction], None]
JumpHandler = Callable[[int, Instruction, JumpTarget], None]

_STRATEGIES: set[str] = {"dfs", "bfs"}


class TraceHandler:
    """Observer with one method per event kind.

    Subclasses override either or both methods and are registered with
    :meth:`LinearDisassembler.register_trace_handler`.  Raising from
    either method aborts the exploration run.
    """

    def on_instruction(self, va: int, insn: Instruction) -> None:
        """Called once for every newly decoded instruction."""

    def on_jump(self, va: int, insn: Instruction, jump: JumpTarget) -> None:
        """Called once for every direct edge leaving the instruction at *va*."""


class LinearDisassembler:
    """Branch-following linear disassembler over a :class:`Workspace`.

    Args:
        workspace: The workspace to read and decode from.  Never mutated.
        config: Traversal settings.  Defaults to :class:`ExplorerConfig`.
        logger: Logger to use; an ``explorer`` logger is created otherwise.

    Raises:
        ValueError: If ``config.strategy`` is not ``dfs`` or ``bfs``.
    """

    def __init__(
        self,
        workspace: Workspace,
        config: Optional[ExplorerConfig] = None,
        logger: Optional[LancetLogger] = None,
    ) -> None:
        self._ws = workspace
        self._config = config or workspace.config.explorer
        if self._config.strategy not in _STRATEGIES:
            raise ValueError(
                f"Unknown exploration strategy {self._config.strategy!r}; "
                f"expected one of {sorted(_STRATEGIES)}"
            )
        self._logger = logger or LancetLogger.from_config("explorer", workspace.config)
        self._insn_handlers: list[InstructionHandler] = []
        self._jump_handlers: list[JumpHandler] = []

    # ------------------------------------------------------------------ #
    #  Handler registration
    # ------------------------------------------------------------------ #

    def register_instruction_trace_handler(self, handler: InstructionHandler) -> None:
        self._insn_handlers.append(handler)

    def register_jump_trace_handler(self, handler: JumpHandler) -> None:
        self._jump_handlers.append(handler)

    def register_trace_handler(self, handler: TraceHandler) -> None:
        """Register both methods of a :class:`TraceHandler` object."""
        self._insn_handlers.append(handler.on_instruction)
        self._jump_handlers.append(handler.on_jump)

    # ------------------------------------------------------------------ #
    #  Exploration
    # ------------------------------------------------------------------ #

    def explore_function(self, start: int) -> ExplorationResult:
        """Explore the code reachable from *start*.

        Args:
            start: Function entry point (VA).

        Returns:
            The visited instruction addresses, reported edges and the
            per-address decode failures of this run.

        Raises:
            DecodeError: If the instruction at *start* cannot be decoded.
            HandlerError: If a registered handler raised.
        """
        check_va(start)
        result = ExplorationResult(start=start)
        limit = self._config.max_instructions
        depth_first = self._config.strategy == "dfs"

        queue: deque[int] = deque([start])
        visited: set[int] = set()
        failed: set[int] = set()

        with self._logger.operation("explore_function"):
            self._logger.info("Exploring function at %#x", start, start=start)

            while queue:
                va = queue.pop() if depth_first else queue.popleft()
                if va in visited or va in failed:
                    continue
                if limit > 0 and len(visited) >= limit:
                    result.truncated = True
                    self._logger.warning(
                        "Instruction limit %d reached; stopping exploration", limit
                    )
                    break

                try:
                    insn = self._ws.decode_one(va)
                except DecodeError as exc:
                    if not visited:
                        self._logger.error("Cannot decode start address %#x", va, address=va)
                        raise
                    failed.add(va)
                    result.decode_failures.append(
                        DecodeFailure(address=va, reason=exc.reason)
                    )
                    self._logger.warning("Decode failed at %#x: %s", va, exc.reason, address=va)
                    continue

                visited.add(va)
                result.instructions.append(va)
                for handler in self._insn_handlers:
                    self._dispatch(handler, va, insn)

                for successor in self._successors(va, insn, result):
                    if successor not in visited and successor not in failed:
                        queue.append(successor)

            self._logger.info(
                "Explored %#x: %d instructions, %d edges, %d decode failures",
                start,
                len(result.instructions),
                len(result.edges),
                len(result.decode_failures),
            )
        return result

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    def _successors(
        self, va: int, insn: Instruction, result: ExplorationResult
    ) -> list[int]:
        """Report *insn*'s edges and return the addresses to queue."""
        successors: list[int] = []

        if insn.is_call:
            kind: Optional[JumpKind] = JumpKind.CALL
        elif insn.is_conditional_branch:
            kind = JumpKind.CONDITIONAL
        elif insn.is_jump:
            kind = JumpKind.JUMP
        else:
            kind = None

        if kind is not None:
            for target in insn.targets:
                jump = JumpTarget(va=target, kind=kind)
                result.edges.append(FlowEdge(source=va, target=target, kind=kind))
                for handler in self._jump_handlers:
                    self._dispatch(handler, va, insn, jump)
                # Callees are recorded, not explored
                if kind is not JumpKind.CALL:
                    successors.append(target)

        if insn.falls_through:
            try:
                successors.append(insn.next_address)
            except AddressOverflowError as exc:
                result.decode_failures.append(
                    DecodeFailure(address=va, reason=str(exc))
                )
                self._logger.warning("Fall-through from %#x overflows", va, address=va)

        return successors

    @staticmethod
    def _dispatch(handler: Callable[..., None], va: int, *args: object) -> None:
        try:
            handler(va, *args)
        except Exception as exc:
            raise HandlerError(va, handler) from exc


# ========================== Formatting =====================================


def format_address_disassembly(
    workspace: Workspace,
    address: int,
    num_opcode_bytes: Optional[int] = None,
) -> str:
    """Render one instruction as ``address  opcode-bytes  mnemonic operands``.

    The opcode column is padded to *num_opcode_bytes* bytes.  Longer
    instructions show the first ``num_opcode_bytes - 1`` bytes followed by
    ``...``.

    Raises:
        DecodeError: If no instruction can be decoded at *address*.
    """
    insn = workspace.decode_one(address)
    width = num_opcode_bytes or workspace.config.workspace.num_opcode_bytes

    raw = insn.raw
    if len(raw) > width:
        opcodes = " ".join(f"{b:02x}" for b in raw[: max(width - 1, 0)])
        opcodes = f"{opcodes} ..." if opcodes else "..."
    else:
        opcodes = " ".join(f"{b:02x}" for b in raw)

    addr_width = 2 * workspace.mode.pointer_size
    text = f"0x{address:0{addr_width}x}  {opcodes:<{3 * width}} {insn.mnemonic}"
    if insn.op_str:
        text = f"{text} {insn.op_str}"
    return text

