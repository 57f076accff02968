"""
Flow Graph Recorder
====================

A :class:`TraceHandler` that turns one exploration run into a directed
graph.  Nodes are instruction-start addresses carrying the decoded
mnemonic and operands; edges carry a ``kind`` attribute:

    - ``fallthrough``: sequential flow to the next instruction;
    - ``jump`` / ``conditional-branch``: direct branch edges;
    - ``call``: direct call edges (the callee node is added but not
      explored, so it has no ``mnemonic`` attribute).

References:
    - NetworkX documentation. https://networkx.org/documentation/stable/
    - Allen, F. E. (1970). Control Flow Analysis. ACM SIGPLAN Notices, 5(7).
"""

from __future__ import annotations

import networkx as nx

from lancet.analyzers.linear_disassembly import TraceHandler
from lancet.core.errors import AddressOverflowError
from lancet.core.models import Instruction, JumpKind, JumpTarget

FALLTHROUGH = "fallthrough"


class FlowGraphRecorder(TraceHandler):
    """Record visited instructions and their edges into a ``networkx.DiGraph``."""

    def __init__(self) -> None:
        self._graph = nx.DiGraph()

    @property
    def graph(self) -> nx.DiGraph:
        return self._graph

    def on_instruction(self, va: int, insn: Instruction) -> None:
        self._graph.add_node(
            va, mnemonic=insn.mnemonic, op_str=insn.op_str, size=insn.size
        )
        if insn.falls_through:
            try:
                self._graph.add_edge(va, insn.next_address, kind=FALLTHROUGH)
            except AddressOverflowError:
                pass

    def on_jump(self, va: int, insn: Instruction, jump: JumpTarget) -> None:
        self._graph.add_edge(va, jump.va, kind=jump.kind.value)

    def call_targets(self) -> list[int]:
        """Distinct direct call targets, sorted."""
        return sorted(
            {v for _, v, kind in self._graph.edges(data="kind") if kind == JumpKind.CALL.value}
        )

    def instruction_nodes(self) -> list[int]:
        """Nodes that were decoded during the run, sorted by address."""
        return sorted(n for n, data in self._graph.nodes(data=True) if "mnemonic" in data)

    def reachable_from(self, va: int, *, follow_calls: bool = False) -> set[int]:
        """Addresses reachable from *va* along recorded edges."""
        if va not in self._graph:
            return set()
        if follow_calls:
            view = self._graph
        else:
            view = nx.subgraph_view(
                self._graph,
                filter_edge=lambda u, v: self._graph.edges[u, v]["kind"] != JumpKind.CALL.value,
            )
        return set(nx.descendants(view, va)) | {va}
