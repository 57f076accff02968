"""Tests for the PE and shellcode loaders."""

import pytest

from lancet.analyzers.linear_disassembly import LinearDisassembler
from lancet.core.errors import LoaderError
from lancet.core.models import Mode
from lancet.core.workspace import Workspace
from lancet.parsers.pe_loader import PELoader
from lancet.parsers.shellcode_loader import ShellcodeLoader


@pytest.fixture
def workspace(quiet_logger):
    created = []

    def factory(mode="32"):
        ws = Workspace("x86", mode, logger=quiet_logger)
        created.append(ws)
        return ws

    yield factory
    for ws in created:
        ws.close()


class TestPELoader:
    """Header parsing and section mapping."""

    def test_sniff(self, pe_image):
        """is_pe recognises the MZ/PE signature pair."""
        assert PELoader.is_pe(pe_image())
        assert not PELoader.is_pe(b"\x90" * 0x100)
        assert not PELoader.is_pe(b"MZ")

    def test_pe32_layout(self, pe_image, workspace, quiet_logger):
        """Headers and .text land at ImageBase with section-aligned sizes."""
        loader = PELoader(pe_image(), "sample.exe", logger=quiet_logger)
        assert loader.detect_mode() is Mode.MODE_32

        ws = workspace("32")
        module = loader.load(ws)

        regions = [(r.name, r.address, r.length) for r in ws.memory_regions]
        assert regions == [("header", 0x400000, 0x1000), (".text", 0x401000, 0x1000)]
        assert module.entry_point == 0x401000
        assert module.va(0x1000) == 0x401000
        assert ws.loaded_modules == [module]
        assert ws.read(0x401000, 4) == b"\x55\x89\xe5\xc3"
        assert ws.read(0x400000, 2) == b"MZ"

    def test_explore_entry_point(self, pe_image, workspace, quiet_logger):
        """The mapped entry point can be explored."""
        ws = workspace("32")
        module = PELoader(pe_image(), logger=quiet_logger).load(ws)
        result = LinearDisassembler(ws, logger=quiet_logger).explore_function(module.entry_point)
        assert result.instructions == [0x401000, 0x401001, 0x401003]

    def test_pe32plus(self, pe_image, workspace, quiet_logger):
        """PE32+ images use the 64-bit ImageBase."""
        data = pe_image(machine=0x8664, image_base=0x140000000, plus=True)
        loader = PELoader(data, "sample64.exe", logger=quiet_logger)
        assert loader.detect_mode() is Mode.MODE_64
        module = loader.load(workspace("64"))
        assert module.base_address == 0x140000000
        assert module.entry_point == 0x140001000

    def test_mode_mismatch(self, pe_image, workspace, quiet_logger):
        """A 64-bit image does not load into a 32-bit workspace."""
        data = pe_image(machine=0x8664, image_base=0x140000000, plus=True)
        with pytest.raises(LoaderError):
            PELoader(data, logger=quiet_logger).load(workspace("32"))

    def test_unsupported_machine(self, pe_image, quiet_logger):
        """Non-x86 machine types are rejected."""
        with pytest.raises(LoaderError):
            PELoader(pe_image(machine=0xAA64), logger=quiet_logger)

    def test_truncated_headers(self, pe_image, quiet_logger):
        """A cut-off header table is a LoaderError, not a struct.error."""
        with pytest.raises(LoaderError):
            PELoader(pe_image()[:0x50], logger=quiet_logger)

    def test_not_a_pe(self, quiet_logger):
        """Arbitrary bytes are rejected."""
        with pytest.raises(LoaderError):
            PELoader(b"\x00" * 0x100, logger=quiet_logger)

    def test_mapping_clash(self, pe_image, workspace, quiet_logger):
        """An occupied ImageBase surfaces as LoaderError."""
        ws = workspace("32")
        ws.map(0x400000, 0x10, "occupied")
        with pytest.raises(LoaderError):
            PELoader(pe_image(), logger=quiet_logger).load(ws)

    def test_entry_point_past_top_of_address_space(self, pe_image, workspace, quiet_logger):
        """An entry point beyond 2**64 - 1 is a LoaderError and maps nothing."""
        data = pe_image(
            machine=0x8664, image_base=0xFFFFFFFFFFFF0000, entry_rva=0x10000, plus=True
        )
        ws = workspace("64")
        with pytest.raises(LoaderError):
            PELoader(data, logger=quiet_logger).load(ws)
        assert ws.memory_regions == []
        assert ws.loaded_modules == []


class TestShellcodeLoader:
    """Raw blobs."""

    def test_mapped_at_base(self, workspace, quiet_logger):
        """The blob becomes region 'raw' and the entry point is the base."""
        ws = workspace("32")
        module = ShellcodeLoader(b"\x90\xc3", "blob", base=0x1000, logger=quiet_logger).load(ws)
        assert [(r.name, r.address, r.length) for r in ws.memory_regions] == [("raw", 0x1000, 2)]
        assert module.entry_point == 0x1000
        assert ws.read(0x1000, 2) == b"\x90\xc3"

    def test_empty_blob(self, workspace, quiet_logger):
        """An empty input cannot be mapped."""
        with pytest.raises(LoaderError):
            ShellcodeLoader(b"", logger=quiet_logger).load(workspace("32"))

    def test_overlap(self, workspace, quiet_logger):
        """Mapping over an existing region fails as LoaderError."""
        ws = workspace("32")
        ws.map(0x0, 0x1000, "low")
        with pytest.raises(LoaderError):
            ShellcodeLoader(b"\x90", logger=quiet_logger).load(ws)
