import logging
from pathlib import Path

import pytest

from tokenstamp.config import PlacementConfig, load_placement_config
from tokenstamp.errors import ConfigError
from tokenstamp.logging_config import configure_logging, verbosity_to_level


def test_embedded_defaults_match_model_defaults():
    cfg = load_placement_config(include_user=False)
    assert cfg == PlacementConfig()
    assert cfg.prefetch_count == 4
    assert cfg.matching.weights.exact == 50


def test_override_file_is_deep_merged(tmp_path: Path):
    p = tmp_path / "placement.yaml"
    p.write_text("prefetch_count: 2\nmatching:\n  weights:\n    exact: 60\n", encoding="utf-8")
    cfg = load_placement_config(p)
    assert cfg.prefetch_count == 2
    assert cfg.matching.weights.exact == 60
    assert cfg.matching.weights.token == 12
    assert cfg.matching.max_suggestions == 10


def test_user_config_dir_is_honoured(tmp_path: Path, monkeypatch):
    p = tmp_path / "placement.yaml"
    p.write_text("strict_invariants: true\n", encoding="utf-8")
    monkeypatch.setattr("tokenstamp.config.loader.default_user_config_path", lambda: p)
    assert load_placement_config().strict_invariants is True
    assert load_placement_config(include_user=False).strict_invariants is False


@pytest.mark.parametrize("text", [
    "prefetch_count: [\n",
    "- just\n- a list\n",
    "prefetch_count: 0\n",
    "asset_kind: '  '\n",
])
def test_invalid_overrides_raise_config_error(tmp_path: Path, text):
    p = tmp_path / "bad.yaml"
    p.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_placement_config(p)


def test_missing_override_file(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_placement_config(tmp_path / "nope.yaml")


def test_verbosity_levels():
    assert verbosity_to_level(0) == logging.WARNING
    assert verbosity_to_level(1) == logging.INFO
    assert verbosity_to_level(3) == logging.DEBUG


def test_env_level_overrides_default():
    package_logger = logging.getLogger("tokenstamp")
    previous = package_logger.level
    try:
        assert configure_logging(logging.WARNING, env="debug") == logging.DEBUG
        assert package_logger.level == logging.DEBUG
        assert configure_logging(logging.WARNING, env="loud") == logging.WARNING
    finally:
        package_logger.setLevel(previous)
