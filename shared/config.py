"""
Lancet Configuration Management
================================

Centralized configuration for the Lancet binary-analysis workspace using
Python dataclasses and TOML-based persistence.

Each section of ``config.toml`` maps onto one dataclass below.  Missing
keys fall back to the dataclass defaults and unknown keys are ignored,
so a partial configuration file is always valid.

References:
    - Wiggins, A. (2011). The Twelve-Factor App. https://12factor.net/
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[no-redef]


# ---------------------------------------------------------------------------
# Default configuration file path relative to the Lancet root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "config.toml"


# ========================== Component Configs ==============================


@dataclass(frozen=False, slots=True)
class WorkspaceConfig:
    """Configuration for the analysis workspace.

    ``arch`` and ``mode`` are only defaults: a loader that knows the
    image's machine type overrides them.
    """

    arch: str = "x86"
    mode: str = "32"
    num_opcode_bytes: int = 8


@dataclass(frozen=False, slots=True)
class ExplorerConfig:
    """Configuration for the linear disassembly exploration engine.

    ``strategy`` selects the work-queue discipline (``"dfs"`` pops the
    most recently discovered address, ``"bfs"`` the oldest).  A positive
    ``max_instructions`` bounds one exploration run; ``0`` means no bound.
    """

    strategy: str = "dfs"
    max_instructions: int = 0


@dataclass(frozen=False, slots=True)
class EmulatorConfig:
    """Initial stack layout used when bootstrapping an emulator."""

    stack_address: int = 0x69690000
    stack_size: int = 0x40000


@dataclass(frozen=False, slots=True)
class LoaderConfig:
    """Configuration for the image loaders."""

    default_loader: str = "auto"
    shellcode_base: int = 0x0
    max_file_size: int = 52_428_800  # 50 MiB


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Global settings: logging verbosity and destinations."""

    log_level: str = "INFO"
    log_file: str = ""
    log_json: bool = False
    debug: bool = False


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class LancetConfig:
    """Master configuration aggregating all component settings.

    Usage:
        >>> config = LancetConfig.load()                  # from default path
        >>> config = LancetConfig.load("custom.toml")     # from custom path
        >>> hex(config.emulator.stack_address)
        '0x69690000'
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    explorer: ExplorerConfig = field(default_factory=ExplorerConfig)
    emulator: EmulatorConfig = field(default_factory=EmulatorConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> LancetConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``config.toml`` in the
        project root.  Missing keys gracefully fall back to dataclass
        defaults -- no ``KeyError`` is raised.

        Args:
            path: Filesystem path to a TOML configuration file.
                  Defaults to ``<project_root>/config.toml``.

        Returns:
            A fully-populated :class:`LancetConfig` instance.

        Raises:
            FileNotFoundError: If the specified path does not exist
                *and* was explicitly provided by the caller.
        """
        config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            if path is not None:
                raise FileNotFoundError(
                    f"Configuration file not found: {config_path}"
                )
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            workspace=cls._build_section(WorkspaceConfig, raw.get("workspace", {})),
            explorer=cls._build_section(ExplorerConfig, raw.get("explorer", {})),
            emulator=cls._build_section(EmulatorConfig, raw.get("emulator", {})),
            loader=cls._build_section(LoaderConfig, raw.get("loader", {})),
        )

    # ------------------------------------------------------------------ #
    #  Serialisation helpers
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares.

        Unknown keys in the TOML source are silently ignored so that
        forward-compatible config files do not break older code.
        """
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)

