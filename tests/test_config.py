"""
Tests for .pathgroup.yml loading.
"""

import pytest
import yaml

from pathgroup.config import PathGroupConfig
from pathgroup.errors import ConfigError


class TestDefaults:
    """Settings without a config file."""

    def test_defaults(self):
        config = PathGroupConfig()
        assert config.exploration.max_steps == 1000
        assert config.exploration.strategy == "bfs"
        assert config.solver.timeout_ms is None
        assert config.solver.max_indirect_targets == 16
        assert config.memory.uninitialized == "zero"
        assert config.input.stdin_size == 64
        assert config.input.max_io_size == 4096

    def test_directory_without_file(self, tmp_path):
        config = PathGroupConfig.load(tmp_path)
        assert config == PathGroupConfig()


class TestLoad:
    """Reading YAML."""

    def test_load_from_directory(self, tmp_path):
        (tmp_path / ".pathgroup.yml").write_text(
            "solver:\n"
            "  timeout-ms: 5000\n"
            "exploration:\n"
            "  max-steps: 50\n"
            "  strategy: dfs\n"
            "memory:\n"
            "  uninitialized: symbolic\n"
            "  stack-top: 0x8000\n"
            "input:\n"
            "  stdin_size: 8\n"
            "  printable: true\n"
        )
        config = PathGroupConfig.load(tmp_path)
        assert config.solver.timeout_ms == 5000
        assert config.exploration.max_steps == 50
        assert config.exploration.strategy == "dfs"
        assert config.memory.uninitialized == "symbolic"
        assert config.memory.stack_top == 0x8000
        assert config.input.stdin_size == 8
        assert config.input.printable is True

    def test_yaml_extension(self, tmp_path):
        (tmp_path / ".pathgroup.yaml").write_text("exploration:\n  num-find: 3\n")
        assert PathGroupConfig.load(tmp_path).exploration.num_find == 3

    def test_explicit_file(self, tmp_path):
        path = tmp_path / "custom.yml"
        path.write_text("exploration:\n  max-length: 12\n")
        assert PathGroupConfig.load(path).exploration.max_length == 12

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            PathGroupConfig.load(tmp_path / "missing.yml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / ".pathgroup.yml"
        path.write_text("")
        assert PathGroupConfig.load(path) == PathGroupConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / ".pathgroup.yml"
        path.write_text("exploration: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            PathGroupConfig.load(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / ".pathgroup.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            PathGroupConfig.load(path)


class TestValidation:
    """Rejected values."""

    @pytest.mark.parametrize("raw, message", [
        ({"exploration": {"strategy": "random"}}, "strategy"),
        ({"memory": {"uninitialized": "garbage"}}, "uninitialized"),
        ({"exploration": {"max-steps": 0}}, "max-steps"),
        ({"solver": {"max-indirect-targets": -1}}, "max-indirect-targets"),
        ({"input": {"stdin-size": -1}}, "stdin-size"),
        ({"input": {"max-io-size": 0}}, "max-io-size"),
        ({"exploration": {"max-stepz": 5}}, "unknown key"),
        ({"network": {}}, "unknown config section"),
        ({"exploration": {"max-steps": "lots"}}, "bad value"),
        ({"input": {"printable": "yes"}}, "bad value"),
        ({"exploration": {"max-steps": None}}, "must not be empty"),
        ({"exploration": ["max-steps"]}, "mapping"),
    ])
    def test_rejected(self, raw, message):
        with pytest.raises(ConfigError, match=message):
            PathGroupConfig.from_dict(raw)

    def test_hex_strings_are_accepted(self):
        config = PathGroupConfig.from_dict({"memory": {"stack-top": "0x1000"}})
        assert config.memory.stack_top == 0x1000


class TestSerialization:
    """Writing configuration back out."""

    def test_to_dict_uses_hyphenated_keys(self):
        data = PathGroupConfig().to_dict()
        assert data["exploration"]["max-steps"] == 1000
        assert "max_steps" not in data["exploration"]

    def test_to_yaml_reloads(self, tmp_path):
        config = PathGroupConfig.from_dict({"exploration": {"strategy": "dfs", "max-length": 9}})
        text = config.to_yaml()
        assert text.startswith("# .pathgroup.yml")
        assert PathGroupConfig.from_dict(yaml.safe_load(text)) == config
