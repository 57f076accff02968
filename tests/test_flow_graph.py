"""Tests for FlowGraphRecorder."""

import networkx as nx
import pytest

from lancet.analyzers.flow_graph import FALLTHROUGH, FlowGraphRecorder
from lancet.analyzers.linear_disassembly import LinearDisassembler

# push ebp; test eax, eax; je 0x100a; call 0x2000; pop ebp; ret
_CODE = bytes.fromhex("5585c07405e8f60f00005dc3")


@pytest.fixture
def recorder(x86_workspace, quiet_logger):
    ws = x86_workspace(_CODE)
    engine = LinearDisassembler(ws, logger=quiet_logger)
    rec = FlowGraphRecorder()
    engine.register_trace_handler(rec)
    engine.explore_function(0x1000)
    return rec


class TestFlowGraphRecorder:
    """Graph shape after one exploration run."""

    def test_graph_type(self, recorder):
        """The recorder exposes a networkx DiGraph."""
        assert isinstance(recorder.graph, nx.DiGraph)

    def test_instruction_nodes(self, recorder):
        """Every decoded instruction becomes a node with its mnemonic."""
        assert recorder.instruction_nodes() == [0x1000, 0x1001, 0x1003, 0x1005, 0x100A, 0x100B]
        assert recorder.graph.nodes[0x1003]["mnemonic"] == "je"

    def test_edge_kinds(self, recorder):
        """Fall-through, conditional and call edges carry their kind."""
        edges = recorder.graph.edges
        assert edges[0x1000, 0x1001]["kind"] == FALLTHROUGH
        assert edges[0x1003, 0x1005]["kind"] == FALLTHROUGH
        assert edges[0x1003, 0x100A]["kind"] == "conditional-branch"
        assert edges[0x1005, 0x2000]["kind"] == "call"
        assert edges[0x1005, 0x100A]["kind"] == FALLTHROUGH

    def test_ret_has_no_successor(self, recorder):
        """A return node has no outgoing edges."""
        assert recorder.graph.out_degree(0x100B) == 0

    def test_call_targets(self, recorder):
        """Call targets are collected but not decoded."""
        assert recorder.call_targets() == [0x2000]
        assert "mnemonic" not in recorder.graph.nodes[0x2000]

    def test_reachability(self, recorder):
        """Call edges are skipped unless asked for."""
        assert 0x2000 not in recorder.reachable_from(0x1000)
        assert 0x2000 in recorder.reachable_from(0x1000, follow_calls=True)
        assert recorder.reachable_from(0x9999) == set()
