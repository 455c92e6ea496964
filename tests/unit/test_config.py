"""Tests for controller configuration."""

import pytest
from pydantic import ValidationError

from cluster_controller.config import ControllerConfig
from cluster_controller.exceptions import ConfigurationError


def test_defaults():
    config = ControllerConfig()

    assert config.max_concurrent_reconciles == 10
    assert config.log_level == "INFO"
    assert not config.machine_pool_enabled


def test_machine_pool_gate():
    assert ControllerConfig(feature_gates={"MachinePool": True}).machine_pool_enabled


def test_unknown_feature_gate_rejected():
    with pytest.raises(ValidationError, match="unknown feature gates"):
        ControllerConfig(feature_gates={"ClusterResourceSet": True})


def test_concurrency_must_be_positive():
    with pytest.raises(ValidationError):
        ControllerConfig(max_concurrent_reconciles=0)


def test_log_level_normalized():
    assert ControllerConfig(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        ControllerConfig(log_level="LOUD")


def test_save_and_load(tmp_path):
    path = tmp_path / "controller.yaml"
    ControllerConfig(feature_gates={"MachinePool": True}, namespace="capi-system").save(path)

    loaded = ControllerConfig.load(path)

    assert loaded.machine_pool_enabled
    assert loaded.namespace == "capi-system"


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        ControllerConfig.load(tmp_path / "missing.yaml")


def test_load_invalid_file(tmp_path):
    path = tmp_path / "controller.yaml"
    path.write_text("max_concurrent_reconciles: -1\n")

    with pytest.raises(ConfigurationError) as exc_info:
        ControllerConfig.load(path)

    assert "max_concurrent_reconciles" in exc_info.value.details


def test_load_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "controller.yaml"
    path.write_text("")

    assert ControllerConfig.load(path) == ControllerConfig()
