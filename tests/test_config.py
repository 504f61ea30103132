"""Tests for the configuration loader and its precedence rules."""

from importlib.resources import files

import pytest
import yaml

from quickqc import load_config
from quickqc.utils.errors import ConfigurationError


def test_default_yaml_loads():
    cfg = load_config()
    with files("quickqc.resources").joinpath("default_qc.yaml").open() as fh:
        expected = yaml.safe_load(fh)
    assert cfg.version == expected["version"]
    assert cfg.policy.censor_limits == [0.2, 0.3, 0.4, 0.5]
    assert cfg.policy.mean_fd_limit == 0.3
    assert cfg.policy.bad_volume_fraction == 0.2
    assert cfg.discovery.exclude_infixes == ["sbref"]
    assert (cfg.policy.translation_weight, cfg.policy.rotation_weight) == (0.9, 1.0)


def test_dataset_local_override(tmp_path):
    local = tmp_path / "code" / "config"
    local.mkdir(parents=True)
    (local / "quickqc.yaml").write_text("policy:\n  mean_fd_limit: 0.5\n")
    cfg = load_config(dataset_root=tmp_path)
    assert cfg.policy.mean_fd_limit == 0.5
    assert cfg.policy.censor_limits == [0.2, 0.3, 0.4, 0.5]


def test_explicit_path_wins(tmp_path):
    local = tmp_path / "code" / "config"
    local.mkdir(parents=True)
    (local / "quickqc.yaml").write_text("policy:\n  mean_fd_limit: 0.5\n")
    explicit = tmp_path / "other.yaml"
    explicit.write_text("toolkit:\n  retries: 3\n")
    cfg = load_config(config_path=explicit, dataset_root=tmp_path)
    assert cfg.toolkit.retries == 3
    assert cfg.policy.mean_fd_limit == 0.3


def test_missing_explicit_path(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(config_path=tmp_path / "absent.yaml")


@pytest.mark.parametrize(
    "text",
    [
        "policy:\n  translation_weight: -1\n",
        "policy:\n  plot_censor_limit: 0.25\n",
        "- just\n- a list\n",
        "policy: [unclosed\n",
    ],
)
def test_invalid_configuration(tmp_path, text):
    bad = tmp_path / "bad.yaml"
    bad.write_text(text)
    with pytest.raises(ConfigurationError):
        load_config(config_path=bad)
