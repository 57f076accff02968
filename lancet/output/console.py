"""
Lancet Console Output
======================

Rich-powered terminal display for workspaces and exploration runs: the
module header, the memory map, one line per visited instruction, one line
per discovered edge and a closing summary.

Instruction text is assembled with :class:`rich.text.Text` rather than
markup, since x86 operands contain square brackets.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from shared.console import LancetConsole

from lancet.core.models import (
    ExplorationResult,
    Instruction,
    JumpKind,
    JumpTarget,
    LoadedModule,
    MemoryRegion,
)


_KIND_STYLES: dict[JumpKind, str] = {
    JumpKind.CALL: "lancet.call",
    JumpKind.JUMP: "lancet.jump",
    JumpKind.CONDITIONAL: "lancet.conditional",
}


class LancetConsoleOutput:
    """Rich terminal display for Lancet.

    Usage::

        output = LancetConsoleOutput()
        output.display_memory_map(ws.memory_regions)
        output.display_summary(result)
    """

    def __init__(self, console: LancetConsole | None = None) -> None:
        self._console: LancetConsole = console or LancetConsole()

    @property
    def console(self) -> LancetConsole:
        return self._console

    # ------------------------------------------------------------------ #
    #  Workspace views
    # ------------------------------------------------------------------ #

    def display_header(self, module: LoadedModule, arch: str, mode: str) -> None:
        lines: list[str] = [
            f"[bold]Module:[/bold]       {escape(module.name)}",
            f"[bold]Arch:[/bold]         {arch} ({mode}-bit)",
            f"[bold]Base:[/bold]         0x{module.base_address:x}",
            f"[bold]Entry Point:[/bold]  0x{module.entry_point:x}",
        ]
        panel = Panel(
            "\n".join(lines),
            title="[bold bright_cyan]Lancet Workspace[/bold bright_cyan]",
            border_style="bright_cyan",
            padding=(1, 2),
        )
        self._console.rich.print(panel)
        self._console.blank()

    def display_memory_map(self, regions: list[MemoryRegion]) -> None:
        self._console.section("Memory Map")
        rows = [
            (
                str(i),
                region.name or "<unnamed>",
                f"0x{region.address:x}",
                f"0x{region.end:x}",
                f"0x{region.length:x}",
            )
            for i, region in enumerate(regions, 1)
        ]
        self._console.table(
            "",
            ["#", "Name", "Start", "End", "Size"],
            rows,
            styles=["dim", "bold", "lancet.address", "lancet.address", ""],
        )
        self._console.blank()

    def display_modules(self, modules: list[LoadedModule]) -> None:
        self._console.section("Loaded Modules")
        rows = [
            (m.name, f"0x{m.base_address:x}", f"0x{m.entry_point:x}") for m in modules
        ]
        self._console.table(
            "",
            ["Name", "Base", "Entry"],
            rows,
            styles=["bold", "lancet.address", "lancet.address"],
        )
        self._console.blank()

    # ------------------------------------------------------------------ #
    #  Trace events
    # ------------------------------------------------------------------ #

    def display_instruction(self, line: str, insn: Instruction) -> None:
        """Print one formatted disassembly line, then ``--> call`` for calls."""
        self._console.print(Text(line, style="lancet.mnemonic"))
        if insn.is_call:
            self._console.print(Text("--> call", style="lancet.call"))

    def display_jump(self, va: int, jump: JumpTarget) -> None:
        style = _KIND_STYLES.get(jump.kind, "lancet.jump")
        self._console.print(
            Text.assemble(
                (f"0x{va:x}", "lancet.address"),
                (" --> ", style),
                (f"0x{jump.va:x}", "lancet.address"),
                (f"  ({jump.kind.value})", "lancet.dim"),
            )
        )

    # ------------------------------------------------------------------ #
    #  Summary
    # ------------------------------------------------------------------ #

    def display_summary(self, result: ExplorationResult) -> None:
        counts: dict[JumpKind, int] = {kind: 0 for kind in JumpKind}
        for edge in result.edges:
            counts[edge.kind] += 1

        lines: list[str] = [
            f"[bold]Start:[/bold]            0x{result.start:x}",
            f"[bold]Instructions:[/bold]     {result.instruction_count:,}",
            f"[bold]Jumps:[/bold]            {counts[JumpKind.JUMP]}",
            f"[bold]Conditional:[/bold]      {counts[JumpKind.CONDITIONAL]}",
            f"[bold]Calls:[/bold]            {counts[JumpKind.CALL]}",
            f"[bold]Decode Failures:[/bold]  {len(result.decode_failures)}",
        ]
        if result.truncated:
            lines.append("[lancet.warning]Exploration stopped at the instruction limit[/lancet.warning]")

        border = "lancet.warning" if result.decode_failures or result.truncated else "bright_green"
        panel = Panel(
            "\n".join(lines),
            title="[bold bright_cyan]Exploration Summary[/bold bright_cyan]",
            border_style=border,
            padding=(0, 2),
        )
        self._console.rich.print(panel)

        if result.decode_failures:
            rows = [(f"0x{f.address:x}", f.reason) for f in result.decode_failures]
            self._console.table(
                "Decode Failures", ["Address", "Reason"], rows,
                styles=["lancet.address", "lancet.dim"],
            )
