"""Shared fixtures for the Lancet test suite."""

from __future__ import annotations

import struct

import pytest

from lancet.core.decoder import Decoder
from lancet.core.models import Instruction, InstructionGroup
from lancet.core.workspace import Workspace
from shared.logger import LancetLogger


class ScriptedDecoder(Decoder):
    """Deterministic decoder returning pre-built instructions by address.

    An address with no scripted instruction, or whose byte window is
    shorter than the scripted size, decodes to nothing.
    """

    def __init__(self, script: dict[int, Instruction]) -> None:
        self.script = dict(script)
        self.calls: list[int] = []
        self.closed = False

    def decode(self, data: bytes, address: int, count: int = 1) -> list[Instruction]:
        self.calls.append(address)
        insn = self.script.get(address)
        if insn is None or len(data) < insn.size:
            return []
        return [insn]

    def close(self) -> None:
        self.closed = True


def make_insn(
    address: int,
    size: int,
    mnemonic: str,
    *groups: InstructionGroup,
    targets: tuple[int, ...] = (),
    conditional: bool = False,
) -> Instruction:
    return Instruction(
        address=address,
        size=size,
        mnemonic=mnemonic,
        groups=frozenset(groups),
        targets=tuple(targets),
        conditional=conditional,
    )


def build_pe(
    *,
    code: bytes = b"\x55\x89\xe5\xc3",
    machine: int = 0x14C,
    image_base: int = 0x400000,
    entry_rva: int = 0x1000,
    plus: bool = False,
) -> bytes:
    """Assemble a minimal one-section PE32 / PE32+ image.

    Layout: headers in the first 0x200 file bytes, ``.text`` raw data at
    file offset 0x200 mapped at RVA 0x1000, section alignment 0x1000.
    """
    e_lfanew = 0x40
    dos = bytearray(0x40)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 60, e_lfanew)

    opt_size = 0xF0 if plus else 0xE0
    coff = struct.pack("<HHIIIHH", machine, 1, 0, 0, 0, opt_size, 0x0102)

    opt = bytearray(opt_size)
    struct.pack_into("<H", opt, 0, 0x20B if plus else 0x10B)
    struct.pack_into("<I", opt, 16, entry_rva)
    if plus:
        struct.pack_into("<Q", opt, 24, image_base)
    else:
        struct.pack_into("<I", opt, 28, image_base)
    struct.pack_into("<II", opt, 32, 0x1000, 0x200)
    struct.pack_into("<I", opt, 56, 0x2000)
    struct.pack_into("<I", opt, 60, 0x200)

    section = bytearray(40)
    section[0:5] = b".text"
    struct.pack_into(
        "<IIIIIIHHI", section, 8,
        len(code), 0x1000, 0x200, 0x200, 0, 0, 0, 0, 0x60000020,
    )

    headers = bytes(dos) + b"PE\x00\x00" + coff + bytes(opt) + bytes(section)
    return headers.ljust(0x200, b"\x00") + code.ljust(0x200, b"\x00")


@pytest.fixture
def quiet_logger() -> LancetLogger:
    return LancetLogger("tests", log_level="DEBUG", console_output=False)


@pytest.fixture
def scripted_workspace(quiet_logger):
    """Factory: a 32-bit workspace driven by a :class:`ScriptedDecoder`.

    ``text`` is mapped at ``[0x1000, 0x2000)`` unless *regions* says otherwise.
    """
    created: list[Workspace] = []

    def factory(*insns: Instruction, mode: str = "32", regions=((0x1000, 0x1000, "text"),)):
        ws = Workspace(
            "x86",
            mode,
            decoder=ScriptedDecoder({i.address: i for i in insns}),
            logger=quiet_logger,
        )
        for address, length, name in regions:
            ws.map(address, length, name)
        created.append(ws)
        return ws

    yield factory
    for ws in created:
        ws.close()


@pytest.fixture
def x86_workspace(quiet_logger):
    """Factory: a Capstone-backed workspace with *code* written at *base*."""
    created: list[Workspace] = []

    def factory(code: bytes, *, base: int = 0x1000, mode: str = "32", length: int = 0x1000):
        ws = Workspace("x86", mode, logger=quiet_logger)
        ws.map(base, length, "text")
        ws.write(base, code)
        created.append(ws)
        return ws

    yield factory
    for ws in created:
        ws.close()


@pytest.fixture
def insn():
    return make_insn


@pytest.fixture
def pe_image():
    return build_pe
