"""
PE/COFF Image Loader
=====================

Struct-based loader for Portable Executable images (PE32 and PE32+).
The loader maps an image into a :class:`~lancet.core.workspace.Workspace`
the way the Windows loader lays it out in memory, without applying
relocations or resolving imports:

    - the headers are mapped at ``ImageBase`` as region ``header``;
    - each section is mapped at ``ImageBase + VirtualAddress`` with its
      size rounded up to ``SectionAlignment``, and its raw bytes copied in
      (any tail beyond ``SizeOfRawData`` stays zero-filled);
    - a :class:`LoadedModule` is registered with
      ``entry_point = ImageBase + AddressOfEntryPoint``.

Only x86 (``IMAGE_FILE_MACHINE_I386``) and x86-64
(``IMAGE_FILE_MACHINE_AMD64``) images are accepted.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
      https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
    - Pietrek, M. (1994). Peering Inside the PE: A Tour of the Win32
      Portable Executable File Format. Microsoft Systems Journal.
"""

from __future__ import annotations

import struct
from typing import Optional

from lancet.core.address import PAGE_SIZE, align_up, rva_to_va
from lancet.core.errors import LancetError, LoaderError
from lancet.core.models import LoadedModule, Mode
from lancet.core.workspace import Workspace
from shared.logger import LancetLogger


# ---------------------------------------------------------------------------
# PE Constants
# ---------------------------------------------------------------------------

MZ_MAGIC: bytes = b"MZ"
PE_MAGIC: bytes = b"PE\x00\x00"

PE32_MAGIC: int = 0x10B
PE32PLUS_MAGIC: int = 0x20B

IMAGE_FILE_MACHINE_I386: int = 0x14C
IMAGE_FILE_MACHINE_AMD64: int = 0x8664

_MACHINE_MODES: dict[int, Mode] = {
    IMAGE_FILE_MACHINE_I386: Mode.MODE_32,
    IMAGE_FILE_MACHINE_AMD64: Mode.MODE_64,
}

_COFF_HEADER_SIZE = 20
_SECTION_HEADER_SIZE = 40


# ---------------------------------------------------------------------------
# Internal parsed structures
# ---------------------------------------------------------------------------

class _SectionHeader:
    """The subset of IMAGE_SECTION_HEADER needed to map a section."""
    __slots__ = (
        "name", "virtual_size", "virtual_address",
        "size_of_raw_data", "pointer_to_raw_data", "characteristics",
    )

    def __init__(
        self,
        name: str,
        virtual_size: int,
        virtual_address: int,
        size_of_raw_data: int,
        pointer_to_raw_data: int,
        characteristics: int,
    ) -> None:
        self.name = name
        self.virtual_size = virtual_size
        self.virtual_address = virtual_address
        self.size_of_raw_data = size_of_raw_data
        self.pointer_to_raw_data = pointer_to_raw_data
        self.characteristics = characteristics

    @property
    def memory_size(self) -> int:
        return max(self.virtual_size, self.size_of_raw_data)


class PELoader:
    """Parse a PE image and map it into a workspace.

    Usage::

        loader = PELoader(data, name="sample.exe")
        with Workspace("x86", loader.detect_mode()) as ws:
            module = loader.load(ws)

    Args:
        data: The whole image file.
        name: Module name to register.
        logger: Logger to use; a ``loader`` logger is created otherwise.

    Raises:
        LoaderError: If the headers are malformed or the machine type
            is not x86 / x86-64.
    """

    def __init__(
        self,
        data: bytes,
        name: str = "pe",
        logger: Optional[LancetLogger] = None,
    ) -> None:
        self._data = bytes(data)
        self._name = name
        self._logger = logger or LancetLogger("loader")

        self.machine: int = 0
        self.image_base: int = 0
        self.entry_point_rva: int = 0
        self.section_alignment: int = PAGE_SIZE
        self.size_of_headers: int = 0
        self.sections: list[_SectionHeader] = []

        try:
            self._parse()
        except struct.error as exc:
            raise LoaderError(f"Truncated PE headers in {name!r}: {exc}") from exc

    @staticmethod
    def is_pe(data: bytes) -> bool:
        """Cheap sniff: MZ stub whose ``e_lfanew`` points at ``PE\\0\\0``."""
        if len(data) < 64 or data[:2] != MZ_MAGIC:
            return False
        e_lfanew = struct.unpack_from("<I", data, 60)[0]
        return data[e_lfanew:e_lfanew + 4] == PE_MAGIC

    def detect_mode(self) -> Mode:
        return _MACHINE_MODES[self.machine]

    # ------------------------------------------------------------------ #
    #  Header parsing
    # ------------------------------------------------------------------ #

    def _parse(self) -> None:
        data = self._data
        if not self.is_pe(data):
            raise LoaderError(f"{self._name!r} is not a PE image")

        coff_offset = struct.unpack_from("<I", data, 60)[0] + 4
        (
            self.machine,
            number_of_sections,
            _timestamp,
            _symbol_table,
            _symbol_count,
            size_of_optional_header,
            _characteristics,
        ) = struct.unpack_from("<HHIIIHH", data, coff_offset)

        if self.machine not in _MACHINE_MODES:
            raise LoaderError(
                f"Unsupported PE machine type {self.machine:#x} in {self._name!r}"
            )

        opt_offset = coff_offset + _COFF_HEADER_SIZE
        magic = struct.unpack_from("<H", data, opt_offset)[0]
        self.entry_point_rva = struct.unpack_from("<I", data, opt_offset + 16)[0]
        if magic == PE32_MAGIC:
            self.image_base = struct.unpack_from("<I", data, opt_offset + 28)[0]
        elif magic == PE32PLUS_MAGIC:
            self.image_base = struct.unpack_from("<Q", data, opt_offset + 24)[0]
        else:
            raise LoaderError(f"Unknown optional header magic {magic:#x}")

        # SectionAlignment sits at +32 in both PE32 and PE32+
        self.section_alignment = struct.unpack_from("<I", data, opt_offset + 32)[0] or PAGE_SIZE
        self.size_of_headers = struct.unpack_from("<I", data, opt_offset + 60)[0]

        table_offset = opt_offset + size_of_optional_header
        for i in range(number_of_sections):
            offset = table_offset + i * _SECTION_HEADER_SIZE
            raw_name = data[offset:offset + 8]
            fields = struct.unpack_from("<IIIIIIHHI", data, offset + 8)
            self.sections.append(
                _SectionHeader(
                    name=raw_name.split(b"\x00", 1)[0].decode("ascii", errors="replace"),
                    virtual_size=fields[0],
                    virtual_address=fields[1],
                    size_of_raw_data=fields[2],
                    pointer_to_raw_data=fields[3],
                    characteristics=fields[8],
                )
            )

    # ------------------------------------------------------------------ #
    #  Mapping
    # ------------------------------------------------------------------ #

    def load(self, workspace: Workspace) -> LoadedModule:
        """Map headers and sections into *workspace* and register the module.

        Raises:
            LoaderError: If the image's bitness does not match the workspace
                or a section cannot be mapped.
        """
        mode = self.detect_mode()
        if workspace.mode is not mode:
            raise LoaderError(
                f"{self._name!r} is a {mode.value}-bit image but the workspace "
                f"is {workspace.mode.value}-bit"
            )

        try:
            entry_point = rva_to_va(self.image_base, self.entry_point_rva)
            header_size = max(self.size_of_headers, 1)
            workspace.map(
                self.image_base, align_up(header_size, self.section_alignment), "header"
            )
            workspace.write(self.image_base, self._data[:header_size])

            for section in self.sections:
                if section.memory_size == 0:
                    self._logger.debug("Skipping empty section %s", section.name)
                    continue
                address = rva_to_va(self.image_base, section.virtual_address)
                workspace.map(
                    address,
                    align_up(section.memory_size, self.section_alignment),
                    section.name,
                )
                raw_size = min(section.size_of_raw_data, section.memory_size)
                start = section.pointer_to_raw_data
                raw = self._data[start:start + raw_size]
                if raw:
                    workspace.write(address, raw)
        except LancetError as exc:
            raise LoaderError(f"Failed to map {self._name!r}: {exc}") from exc

        module = LoadedModule(
            name=self._name,
            base_address=self.image_base,
            entry_point=entry_point,
        )
        workspace.add_loaded_module(module)
        self._logger.info(
            "Loaded PE %s at %#x with %d sections",
            self._name, self.image_base, len(self.sections),
        )
        return module
