"""
Lancet CLI -- Linear Disassembler
==================================

Click-based command-line interface: load a binary into a workspace and
explore one function from its entry address, printing every visited
instruction and every discovered jump or call edge.

Usage::

    # Explore the function at 0x401000 of a PE image
    lancet --input_file sample.exe --fva 0x401000

    # Raw 64-bit shellcode mapped at 0x1000
    lancet --input_file blob.bin --fva 0x1000 --loader shellcode --mode 64 --base 0x1000

    # Machine-readable result
    lancet --input_file sample.exe --fva 0x401000 --json

Exit status is 0 on success, 1 if loading or exploration failed and 2 for
usage errors (missing flags, malformed addresses, missing input file).

References:
    - Click documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.markup import escape

from shared.config import LancetConfig
from shared.console import LancetConsole
from shared.logger import LancetLogger

from lancet.analyzers.linear_disassembly import (
    LinearDisassembler,
    format_address_disassembly,
)
from lancet.core.address import VA_MAX
from lancet.core.errors import LancetError, LoaderError
from lancet.core.models import Instruction, JumpTarget, LoadedModule
from lancet.core.workspace import Workspace
from lancet.output.console import LancetConsoleOutput
from lancet.parsers.pe_loader import PELoader
from lancet.parsers.shellcode_loader import ShellcodeLoader


# ---------------------------------------------------------------------------
# Parameter helpers
# ---------------------------------------------------------------------------

def _parse_hex_address(
    ctx: click.Context, param: click.Parameter, value: Optional[str]
) -> Optional[int]:
    """Click callback turning ``0x401000`` / ``401000`` into an int."""
    if value is None:
        return None
    try:
        address = int(value, 16)
    except ValueError:
        raise click.BadParameter(f"{value!r} is not a hexadecimal address") from None
    if not 0 <= address <= VA_MAX:
        raise click.BadParameter(f"{value!r} is outside the 64-bit address range")
    return address


def _open_workspace(
    data: bytes,
    name: str,
    *,
    loader: str,
    mode: Optional[str],
    base: Optional[int],
    config: LancetConfig,
    log_level: str,
) -> tuple[Workspace, LoadedModule]:
    """Pick a loader, build a workspace of matching mode and load *data*.

    The caller owns the returned workspace.
    """
    loader_logger = LancetLogger.from_config("loader", config, log_level=log_level)

    kind = loader
    if kind == "auto":
        kind = "pe" if PELoader.is_pe(data) else "shellcode"

    if kind == "pe":
        image_loader: PELoader | ShellcodeLoader = PELoader(data, name, logger=loader_logger)
        ws_mode = image_loader.detect_mode().value
        if mode is not None and mode != ws_mode:
            raise LoaderError(f"{name!r} is a {ws_mode}-bit image, not {mode}-bit")
    else:
        ws_mode = mode or config.workspace.mode
        image_loader = ShellcodeLoader(
            data,
            name,
            base=config.loader.shellcode_base if base is None else base,
            logger=loader_logger,
        )

    ws = Workspace(
        config.workspace.arch,
        ws_mode,
        config=config,
        logger=LancetLogger.from_config("workspace", config, log_level=log_level),
    )
    try:
        module = image_loader.load(ws)
    except BaseException:
        ws.close()
        raise
    return ws, module


# ---------------------------------------------------------------------------
# CLI command
# ---------------------------------------------------------------------------

@click.command("lancet")
@click.option(
    "--input_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Binary to load.",
)
@click.option(
    "--fva",
    required=True,
    callback=_parse_hex_address,
    help="Function entry point to explore, in hex.",
)
@click.option(
    "--loader", "-l",
    type=click.Choice(["auto", "pe", "shellcode"], case_sensitive=False),
    default=None,
    help="Input format.  Default: [loader] default_loader (auto-detect).",
)
@click.option(
    "--mode", "-m",
    type=click.Choice(["32", "64"]),
    default=None,
    help="Bit width for shellcode.  PE images carry their own.",
)
@click.option(
    "--base", "-b",
    callback=_parse_hex_address,
    default=None,
    help="Shellcode base address, in hex.",
)
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a config.toml.",
)
@click.option(
    "--show-map",
    is_flag=True,
    default=False,
    help="Print the memory map and loaded modules before exploring.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable verbose/debug output.",
)
@click.option(
    "--json", "json_output",
    is_flag=True,
    default=False,
    help="Output the exploration result as JSON to stdout.",
)
def lancet_cli(
    input_file: str,
    fva: int,
    loader: Optional[str],
    mode: Optional[str],
    base: Optional[int],
    config_path: Optional[str],
    show_map: bool,
    verbose: bool,
    json_output: bool,
) -> None:
    """Lancet -- linear disassembly of one function.

    Loads INPUT_FILE into a workspace and follows straight-line flow and
    directly-encoded branches from FVA, printing each instruction and
    each jump/call edge.

    Examples:

    \b
        lancet --input_file sample.exe --fva 0x401000
        lancet --input_file blob.bin --fva 0 --loader shellcode
    """
    console = LancetConsole()

    if config_path is not None:
        try:
            config = LancetConfig.load(config_path)
        except (OSError, ValueError) as exc:
            console.error(escape(f"Cannot read configuration {config_path}: {exc}"))
            sys.exit(1)
    else:
        try:
            config = LancetConfig.load()
        except (OSError, ValueError):
            config = LancetConfig()

    log_level = "DEBUG" if verbose or config.global_settings.debug else config.global_settings.log_level
    path = Path(input_file)

    if path.stat().st_size > config.loader.max_file_size:
        console.error(
            f"{path.name} exceeds the {config.loader.max_file_size:,}-byte input limit."
        )
        sys.exit(1)

    output = LancetConsoleOutput(console=console)

    try:
        ws, module = _open_workspace(
            path.read_bytes(),
            path.name,
            loader=(loader or config.loader.default_loader).lower(),
            mode=mode,
            base=base,
            config=config,
            log_level=log_level,
        )
        with ws:
            explorer = LinearDisassembler(
                ws,
                logger=LancetLogger.from_config("explorer", config, log_level=log_level),
            )

            if not json_output:
                output.display_header(module, ws.arch.value, ws.mode.value)
                if show_map:
                    output.display_memory_map(ws.memory_regions)
                    output.display_modules(ws.loaded_modules)
                    ws.dump_memory_regions()
                console.section(f"Function 0x{fva:x}")

                def on_instruction(va: int, insn: Instruction) -> None:
                    output.display_instruction(format_address_disassembly(ws, va), insn)

                def on_jump(va: int, insn: Instruction, jump: JumpTarget) -> None:
                    output.display_jump(va, jump)

                explorer.register_instruction_trace_handler(on_instruction)
                explorer.register_jump_trace_handler(on_jump)

            result = explorer.explore_function(fva)

            if json_output:
                report = {
                    "module": module.model_dump(mode="json"),
                    "arch": ws.arch.value,
                    "mode": ws.mode.value,
                    "regions": [r.model_dump(mode="json") for r in ws.memory_regions],
                    "result": result.model_dump(mode="json"),
                }
                click.echo(json.dumps(report, indent=2))
                return
    except KeyboardInterrupt:
        console.warning("Exploration interrupted by user.")
        sys.exit(130)
    except LancetError as exc:
        console.error(escape(f"{type(exc).__name__}: {exc}"))
        if verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    console.blank()
    output.display_summary(result)


# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Entry point for ``python -m lancet``."""
    lancet_cli()


if __name__ == "__main__":
    main()
