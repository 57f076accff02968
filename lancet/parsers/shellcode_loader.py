"""
Shellcode Loader
=================

Maps a raw, headerless code blob into a workspace as a single region named
``raw`` at a chosen base address.  The entry point is the base address.
"""

from __future__ import annotations

from typing import Optional

from lancet.core.errors import LancetError, LoaderError
from lancet.core.models import LoadedModule
from lancet.core.workspace import Workspace
from shared.logger import LancetLogger

REGION_NAME = "raw"


class ShellcodeLoader:
    """Load a shellcode buffer at *base*.

    Args:
        data: The raw bytes.
        name: Module name to register.
        base: VA the buffer is mapped at.
        logger: Logger to use; a ``loader`` logger is created otherwise.
    """

    def __init__(
        self,
        data: bytes,
        name: str = "shellcode",
        base: int = 0x0,
        logger: Optional[LancetLogger] = None,
    ) -> None:
        self._data = bytes(data)
        self._name = name
        self._base = base
        self._logger = logger or LancetLogger("loader")

    def load(self, workspace: Workspace) -> LoadedModule:
        """Map the buffer and register it as a module.

        Raises:
            LoaderError: If the buffer is empty or cannot be mapped.
        """
        if not self._data:
            raise LoaderError(f"{self._name!r} is empty")
        try:
            workspace.map(self._base, len(self._data), REGION_NAME)
            workspace.write(self._base, self._data)
        except LancetError as exc:
            raise LoaderError(f"Failed to map {self._name!r}: {exc}") from exc

        module = LoadedModule(
            name=self._name, base_address=self._base, entry_point=self._base
        )
        workspace.add_loaded_module(module)
        self._logger.info(
            "Loaded %d bytes of shellcode at %#x", len(self._data), self._base
        )
        return module
