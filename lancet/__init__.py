"""
Lancet -- Binary Analysis Workspace
====================================

Loads an executable image into a modelled virtual address space and
explores its code by linear disassembly, following directly-encoded
jumps and calls from a function entry point.  The same memory model can
be mirrored into a Unicorn execution context for follow-up emulation.

Modules:
    - lancet.core.workspace: Address space, region and module registries
    - lancet.core.emulator: Unicorn-backed emulator bootstrap
    - lancet.analyzers: Linear disassembly engine and trace handlers
    - lancet.parsers: PE and raw shellcode loaders
    - lancet.output: Console rendering
    - lancet.cli: Click-based command-line interface

References:
    - Capstone disassembly engine: https://www.capstone-engine.org/
    - Unicorn Engine: https://www.unicorn-engine.org/
    - Microsoft PE/COFF Specification.
"""

__version__ = "0.3.0"
__tool_name__ = "lancet"
