"""
Lancet Analyzers
=================

The linear disassembly exploration engine and trace handlers that
consume its events.
"""

from lancet.analyzers.linear_disassembly import (
    LinearDisassembler,
    TraceHandler,
    format_address_disassembly,
)
from lancet.analyzers.flow_graph import FlowGraphRecorder

__all__ = [
    "LinearDisassembler",
    "TraceHandler",
    "format_address_disassembly",
    "FlowGraphRecorder",
]
