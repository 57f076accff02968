"""Tests for the Workspace aggregate and the Capstone decoder."""

import pytest

from lancet.core.aspace import SimpleAddressSpace
from lancet.core.decoder import CapstoneDecoder
from lancet.core.errors import (
    DecodeError,
    InvalidArchError,
    InvalidModeError,
    UnmappedReadError,
)
from lancet.core.models import Arch, InstructionGroup, LoadedModule, Mode
from lancet.core.workspace import Workspace

from conftest import ScriptedDecoder


class _BrokenAddressSpace(SimpleAddressSpace):
    def list_regions(self):
        raise RuntimeError("backing store unavailable")


class TestConstruction:
    """Arch / mode validation and decoder ownership."""

    def test_invalid_arch(self, quiet_logger):
        """Only x86 is supported."""
        with pytest.raises(InvalidArchError):
            Workspace("arm", "32", logger=quiet_logger)

    def test_invalid_mode(self, quiet_logger):
        """Only 32- and 64-bit modes are supported."""
        with pytest.raises(InvalidModeError):
            Workspace("x86", "16", logger=quiet_logger)

    def test_decoder_released_when_construction_fails(self, quiet_logger):
        """A failure after the decoder exists releases it."""
        decoder = ScriptedDecoder({})
        with pytest.raises(RuntimeError):
            Workspace(
                "x86", "32",
                decoder=decoder,
                address_space=_BrokenAddressSpace(),
                logger=quiet_logger,
            )
        assert decoder.closed

    def test_injected_decoder_released_on_invalid_arch(self, quiet_logger):
        """An injected decoder is closed when validation rejects the arch."""
        decoder = ScriptedDecoder({})
        with pytest.raises(InvalidArchError):
            Workspace("arm", "32", decoder=decoder, logger=quiet_logger)
        assert decoder.closed

    def test_injected_decoder_released_on_invalid_mode(self, quiet_logger):
        """An injected decoder is closed when validation rejects the mode."""
        decoder = ScriptedDecoder({})
        with pytest.raises(InvalidModeError):
            Workspace("x86", "16", decoder=decoder, logger=quiet_logger)
        assert decoder.closed

    @pytest.mark.parametrize("mode", [Mode.MODE_32, Mode.MODE_64, "32", "64", 32, 64])
    def test_default_decoder_accepts_any_mode_spelling(self, mode, quiet_logger):
        """Enum members, strings and bare widths all build a Capstone workspace."""
        with Workspace(Arch.X86, mode, logger=quiet_logger) as ws:
            assert ws.mode is Mode(mode)
            ws.map(0x1000, 0x10, "text")
            ws.write(0x1000, b"\x90")
            assert ws.decode_one(0x1000).mnemonic == "nop"

    def test_arch_is_case_insensitive(self, quiet_logger):
        """Architecture names are matched case-insensitively."""
        with Workspace("X86", "32", logger=quiet_logger) as ws:
            assert ws.arch is Arch.X86

    def test_close_is_idempotent(self, quiet_logger):
        """close() may be called repeatedly; the context manager closes too."""
        decoder = ScriptedDecoder({})
        with Workspace("x86", "64", decoder=decoder, logger=quiet_logger) as ws:
            assert ws.mode is Mode.MODE_64
        assert decoder.closed and ws.closed
        ws.close()

    def test_decode_after_close(self, scripted_workspace, insn):
        """A closed workspace no longer decodes."""
        ws = scripted_workspace(insn(0x1000, 1, "nop"))
        ws.close()
        with pytest.raises(DecodeError):
            ws.decode_one(0x1000)


class TestMemory:
    """Forwarded memory operations and region tracking."""

    def test_map_and_unmap_tracked(self, scripted_workspace):
        """memory_regions mirrors what is mapped."""
        ws = scripted_workspace(regions=())
        ws.map(0x1000, 0x1000, "text")
        ws.map(0x3000, 0x2000, "data")
        assert [r.name for r in ws.memory_regions] == ["text", "data"]
        ws.unmap(0x1000, 0x1000)
        assert [r.name for r in ws.memory_regions] == ["data"]

    def test_typed_reads_are_little_endian(self, scripted_workspace):
        """read_u8..read_u64 decode little-endian integers."""
        ws = scripted_workspace()
        ws.write(0x1000, bytes(range(1, 9)))
        assert ws.read_u8(0x1000) == 0x01
        assert ws.read_u16(0x1000) == 0x0201
        assert ws.read_u32(0x1000) == 0x04030201
        assert ws.read_u64(0x1000) == 0x0807060504030201

    def test_probe(self, scripted_workspace):
        """probe reports readability without raising."""
        ws = scripted_workspace()
        assert ws.probe(0x1000, 0x1000)
        assert not ws.probe(0x1FFF, 2)
        assert not ws.probe(0x5000)


class TestModules:
    """Module registry and relative access."""

    def test_load_order_preserved(self, scripted_workspace):
        """Modules are kept in load order, not base order."""
        ws = scripted_workspace()
        ws.add_loaded_module(LoadedModule(name="b", base_address=0x2000, entry_point=0x2000))
        ws.add_loaded_module(LoadedModule(name="a", base_address=0x1000, entry_point=0x1000))
        assert [m.name for m in ws.loaded_modules] == ["b", "a"]
        assert ws.get_module("a").base_address == 0x1000
        assert ws.get_module("missing") is None

    def test_read_pointer_relative_32(self, scripted_workspace):
        """32-bit mode reads a 4-byte pointer."""
        ws = scripted_workspace()
        module = LoadedModule(name="m", base_address=0x1000, entry_point=0x1000)
        ws.write(0x1010, b"\x78\x56\x34\x12\xff\xff\xff\xff")
        assert ws.read_pointer_relative(module, 0x10) == 0x12345678

    def test_read_pointer_relative_64(self, scripted_workspace):
        """64-bit mode reads an 8-byte pointer."""
        ws = scripted_workspace(mode="64")
        module = LoadedModule(name="m", base_address=0x1000, entry_point=0x1000)
        ws.write(0x1010, b"\x00\x10\x00\x40\x01\x00\x00\x00")
        assert ws.read_pointer_relative(module, 0x10) == 0x140001000

    def test_read_pointer_relative_unmapped(self, scripted_workspace):
        """A pointer straddling the region end cannot be read."""
        ws = scripted_workspace()
        module = LoadedModule(name="m", base_address=0x1000, entry_point=0x1000)
        with pytest.raises(UnmappedReadError):
            ws.read_pointer_relative(module, 0xFFE)

    def test_relative_write_and_read(self, scripted_workspace):
        """read_relative / write_relative resolve through the module base."""
        ws = scripted_workspace()
        module = LoadedModule(name="m", base_address=0x1000, entry_point=0x1000)
        ws.write_relative(module, 0x20, b"abc")
        assert ws.read(0x1020, 3) == b"abc"
        assert ws.read_relative(module, 0x20, 3) == b"abc"


class TestDecodeOne:
    """Single-instruction decoding."""

    def test_unmapped_address(self, scripted_workspace):
        """Decoding unmapped memory is a DecodeError."""
        ws = scripted_workspace()
        with pytest.raises(DecodeError) as excinfo:
            ws.decode_one(0x9000)
        assert excinfo.value.address == 0x9000

    def test_decoder_yields_nothing(self, scripted_workspace):
        """An empty decode result is a DecodeError."""
        ws = scripted_workspace()
        with pytest.raises(DecodeError):
            ws.decode_one(0x1000)

    def test_window_clamped_at_region_end(self, scripted_workspace, insn):
        """An instruction running past its region does not decode."""
        ws = scripted_workspace(insn(0x1FFE, 4, "mov"))
        with pytest.raises(DecodeError):
            ws.decode_one(0x1FFE)

    def test_capstone_straight_line(self, x86_workspace):
        """push ebp; mov ebp, esp; ret decode with lengths 1, 2, 1."""
        ws = x86_workspace(b"\x55\x89\xe5\xc3")
        assert ws.decode_one(0x1000).mnemonic == "push"
        assert ws.instruction_length(0x1000) == 1
        assert ws.instruction_length(0x1001) == 2
        ret = ws.decode_one(0x1003)
        assert ret.is_return and not ret.falls_through

    def test_decode_is_deterministic(self, x86_workspace):
        """Re-decoding the same bytes gives an identical instruction."""
        ws = x86_workspace(b"\x75\x02\x90\x90\xc3")
        assert ws.decode_one(0x1000) == ws.decode_one(0x1000)

    def test_disassemble_instruction(self, x86_workspace):
        """Text rendering is address, mnemonic and operands."""
        ws = x86_workspace(b"\x55")
        assert ws.disassemble_instruction(0x1000) == "0x1000: push ebp"


class TestCapstoneDecoder:
    """Group mapping and direct target extraction."""

    @pytest.fixture
    def decoder(self):
        dec = CapstoneDecoder("x86", "32")
        yield dec
        dec.close()

    def test_conditional_branch(self, decoder):
        """jne carries its target and is conditional."""
        (jne,) = decoder.decode(b"\x75\x02", 0x1000)
        assert jne.has_group(InstructionGroup.JUMP)
        assert jne.is_conditional_branch
        assert jne.targets == (0x1004,)

    def test_direct_call(self, decoder):
        """call rel32 carries its target."""
        (call,) = decoder.decode(b"\xe8\x00\x00\x00\x00", 0x1000)
        assert call.is_call
        assert call.targets == (0x1005,)
        assert call.falls_through

    def test_indirect_jump_has_no_target(self, decoder):
        """jmp eax is unconditional with no direct target."""
        (jmp,) = decoder.decode(b"\xff\xe0", 0x1000)
        assert jmp.is_unconditional_jump
        assert jmp.targets == ()

    def test_interrupt_group(self, decoder):
        """int3 is in the int group and falls through."""
        (int3,) = decoder.decode(b"\xcc", 0x1000)
        assert int3.has_group(InstructionGroup.INT)
        assert int3.falls_through

    def test_invalid_bytes(self, decoder):
        """An undefined opcode decodes to nothing."""
        assert decoder.decode(b"\xff\xff", 0x1000) == []

    def test_bnd_prefixed_conditional_branch(self, decoder):
        """A bnd-prefixed jcc stays conditional and keeps its target."""
        (jne,) = decoder.decode(b"\xf2\x75\x01", 0x1000)
        assert jne.mnemonic == "bnd jne"
        assert jne.is_conditional_branch
        assert jne.falls_through
        assert jne.targets == (0x1004,)

    def test_enum_mode(self):
        """The decoder accepts a Mode member."""
        dec = CapstoneDecoder(Arch.X86, Mode.MODE_64)
        (call,) = dec.decode(b"\xe8\x00\x00\x00\x00", 0x140001000)
        assert call.targets == (0x140001005,)

    def test_64bit_call_target(self):
        """64-bit targets keep their full width."""
        dec = CapstoneDecoder("x86", "64")
        (call,) = dec.decode(b"\xe8\x00\x00\x00\x00", 0x140001000)
        assert call.targets == (0x140001005,)

    def test_released_decoder(self, decoder):
        """A closed decoder refuses to decode."""
        decoder.close()
        with pytest.raises(DecodeError):
            decoder.decode(b"\x90", 0x1000)
