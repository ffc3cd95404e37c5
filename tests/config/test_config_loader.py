# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the config loader, the single entry point for run configuration.

We test:
  1. Valid YAML loads into a frozen, correct config object
  2. Missing required fields raise ConfigValidationError
  3. Unknown fields raise ConfigValidationError (extra="forbid")
  4. Broken YAML raises ConfigLoadError
  5. Loaded config is truly immutable
"""

import textwrap
from pathlib import Path

import pytest
from pydantic import ValidationError

from nmtrain.config.exceptions import ConfigLoadError, ConfigValidationError
from nmtrain.config.loader import load_config, parse_config


class TestLoadValidConfig:
    def test_loads_minimal_valid_config(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        assert config.global_config.project_name == "nmtrain-test"
        assert config.global_config.seed == 42
        assert config.global_config.config_version == "1.0.0"

    def test_optional_sections_default_to_none(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        assert config.model is None
        assert config.train is None

    def test_loads_full_config(self, full_config_file: Path) -> None:
        config = load_config(full_config_file)
        assert config.global_config.seed == 7
        assert config.model is not None and config.model.model_size == 8
        assert config.train is not None and config.train.nstep == 3
        assert config.train.use_adam is True
        assert config.train.device == "cpu"

    def test_parse_config_accepts_a_mapping(self) -> None:
        config = parse_config({"global": {"config_version": "1.0.0"}, "train": {"config_version": "1.0.0"}})
        assert config.train is not None
        assert config.train.lrate == pytest.approx(7e-4)


class TestLoadInvalidConfig:
    def test_missing_required_field_raises_validation_error(self, invalid_config_file: Path) -> None:
        with pytest.raises(ConfigValidationError):
            load_config(invalid_config_file)

    def test_unknown_field_raises_validation_error(self, tmp_path: Path) -> None:
        content = textwrap.dedent("""\
            global:
              config_version: "1.0.0"
            train:
              config_version: "1.0.0"
              learning_rate: 0.1
        """)
        config_file = tmp_path / "unknown_field.yaml"
        config_file.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigValidationError, match="unknown_field.yaml"):
            load_config(config_file)

    def test_wrong_type_raises_validation_error(self, tmp_path: Path) -> None:
        content = textwrap.dedent("""\
            global:
              config_version: "1.0.0"
              seed: "not_a_number"
        """)
        config_file = tmp_path / "wrong_type.yaml"
        config_file.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigValidationError):
            load_config(config_file)

    def test_broken_yaml_raises_load_error(self, broken_yaml_file: Path) -> None:
        with pytest.raises(ConfigLoadError):
            load_config(broken_yaml_file)

    def test_nonexistent_file_raises_load_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError):
            load_config(tmp_path / "does_not_exist.yaml")

    def test_directory_path_raises_load_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError):
            load_config(tmp_path)

    def test_non_mapping_yaml_raises_load_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(config_file)


class TestImmutability:
    def test_loaded_config_is_frozen(self, full_config_file: Path) -> None:
        config = load_config(full_config_file)
        assert config.train is not None
        with pytest.raises(ValidationError):
            config.train.lrate = 1.0  # type: ignore[misc]
