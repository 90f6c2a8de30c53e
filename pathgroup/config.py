"""
Configuration file loader for ``.pathgroup.yml``.

Every setting has a default so the engine works without a config file.
Keys may be written hyphenated (``max-steps``) or underscored (``max_steps``).

Example::

    solver:
      timeout-ms: 5000
    exploration:
      max-steps: 500
      strategy: dfs
    memory:
      uninitialized: symbolic
    input:
      stdin-size: 32
      printable: true
      max-io-size: 4096
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .errors import ConfigError


CONFIG_FILENAMES = (".pathgroup.yml", ".pathgroup.yaml")

STRATEGIES = ("bfs", "dfs")
UNINITIALIZED_MODES = ("zero", "symbolic")


@dataclass
class SolverConfig:
    timeout_ms: Optional[int] = None
    max_indirect_targets: int = 16
    max_symbolic_address_targets: int = 8


@dataclass
class ExplorationConfig:
    max_steps: int = 1000
    max_block_size: int = 64
    max_length: Optional[int] = None
    num_find: int = 1
    strategy: str = "bfs"
    save_unsat: bool = False
    save_unconstrained: bool = True


@dataclass
class MemoryConfig:
    uninitialized: str = "zero"
    stack_top: int = 0x7FFF0000


@dataclass
class InputConfig:
    stdin_size: int = 64
    printable: bool = False
    max_io_size: int = 4096


@dataclass
class PathGroupConfig:
    """Top-level configuration."""
    solver: SolverConfig = field(default_factory=SolverConfig)
    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    input: InputConfig = field(default_factory=InputConfig)

    @classmethod
    def load(cls, path: Union[str, Path, None] = None) -> "PathGroupConfig":
        """
        Load configuration.

        ``path`` may be a config file or a directory searched for
        ``.pathgroup.yml``/``.pathgroup.yaml``. Missing files in a directory
        fall back to defaults; a missing explicit file is an error.
        """
        if path is None:
            path = Path.cwd()
        path = Path(path)
        if path.is_dir():
            for filename in CONFIG_FILENAMES:
                candidate = path / filename
                if candidate.exists():
                    path = candidate
                    break
            else:
                return cls()
        elif not path.exists():
            raise ConfigError(f"config file not found: {path}")

        try:
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "PathGroupConfig":
        config = cls(
            solver=_section(SolverConfig, raw.get("solver")),
            exploration=_section(ExplorationConfig, raw.get("exploration")),
            memory=_section(MemoryConfig, raw.get("memory")),
            input=_section(InputConfig, raw.get("input")),
        )
        unknown = set(raw) - {"solver", "exploration", "memory", "input"}
        if unknown:
            raise ConfigError(f"unknown config section(s): {', '.join(sorted(unknown))}")
        config.validate()
        return config

    def validate(self):
        if self.exploration.strategy not in STRATEGIES:
            raise ConfigError(
                f"exploration.strategy must be one of {STRATEGIES}, got {self.exploration.strategy!r}"
            )
        if self.memory.uninitialized not in UNINITIALIZED_MODES:
            raise ConfigError(
                f"memory.uninitialized must be one of {UNINITIALIZED_MODES}, got {self.memory.uninitialized!r}"
            )
        for name, value in (
            ("exploration.max-steps", self.exploration.max_steps),
            ("exploration.max-block-size", self.exploration.max_block_size),
            ("exploration.num-find", self.exploration.num_find),
            ("solver.max-indirect-targets", self.solver.max_indirect_targets),
            ("solver.max-symbolic-address-targets", self.solver.max_symbolic_address_targets),
            ("input.max-io-size", self.input.max_io_size),
        ):
            if value < 1:
                raise ConfigError(f"{name} must be positive, got {value}")
        if self.input.stdin_size < 0:
            raise ConfigError(f"input.stdin-size must not be negative, got {self.input.stdin_size}")

    def to_dict(self) -> dict[str, Any]:
        return {
            section: {key.replace("_", "-"): value for key, value in asdict(getattr(self, section)).items()}
            for section in ("solver", "exploration", "memory", "input")
        }

    def to_yaml(self) -> str:
        """Serialise to YAML string."""
        header = "# .pathgroup.yml - pathgroup configuration\n"
        return header + yaml.safe_dump(self.to_dict(), sort_keys=False)


def _section(section_cls, raw: Optional[dict[str, Any]]):
    if raw is None:
        return section_cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"section for {section_cls.__name__} must be a mapping")
    known = {f.name: f for f in fields(section_cls)}
    values = {}
    for key, value in raw.items():
        name = str(key).replace("-", "_")
        if name not in known:
            raise ConfigError(f"unknown key '{key}' for {section_cls.__name__}")
        default = known[name].default
        values[name] = _coerce(name, value, default)
    return section_cls(**values)


def _coerce(name: str, value: Any, default: Any) -> Any:
    if value is None:
        if default is None:
            return None
        raise ConfigError(f"'{name}' must not be empty")
    try:
        if isinstance(default, bool):
            if not isinstance(value, bool):
                raise ValueError(f"expected true/false, got {value!r}")
            return value
        if isinstance(default, int) or (default is None and name.endswith(("_ms", "_length"))):
            if isinstance(value, str):
                return int(value, 0)
            if isinstance(value, bool):
                raise ValueError(f"expected an integer, got {value!r}")
            return int(value)
        if isinstance(default, str):
            return str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"bad value for '{name}': {exc}") from exc
    return value
