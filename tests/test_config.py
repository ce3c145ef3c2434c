"""Unit tests for SamplingConfig validation and persistence."""

import pytest

from pocketllm import SamplingConfig
from pocketllm.config import DEFAULT_PROMPT_TEMPLATE
from pocketllm.errors import ConfigError


def test_defaults():
    """Defaults match the documented generation parameters."""
    config = SamplingConfig()
    assert config.maximum_context == 4096
    assert config.batch_size == 512
    assert config.temperature == 0.5
    assert config.top_k == 40
    assert config.top_p == 0.95
    assert config.repeat_penalty == 1.1
    assert config.stop == ("USER", "User")
    assert config.prompt_template == DEFAULT_PROMPT_TEMPLATE


def test_stop_list_becomes_tuple():
    """Stop strings are stored as a tuple."""
    assert SamplingConfig(stop=["END"]).stop == ("END",)


def test_single_stop_string_is_not_split():
    """A bare stop string stays one stop string, also when loaded from JSON."""
    assert SamplingConfig(stop="USER").stop == ("USER",)
    assert SamplingConfig.from_dict({"stop": "USER"}).stop == ("USER",)


@pytest.mark.parametrize(
    "changes, field",
    [
        ({"maximum_context": 4}, "maximum_context"),
        ({"batch_size": 0}, "batch_size"),
        ({"n_threads": 0}, "n_threads"),
        ({"repeat_penalty": 0.0}, "repeat_penalty"),
        ({"top_p": 1.5}, "top_p"),
        ({"tfs_z": -0.1}, "tfs_z"),
        ({"typical_p": 2.0}, "typical_p"),
        ({"stop": ("",)}, "stop"),
        ({"prompt_template": "no placeholder"}, "prompt_template"),
    ],
)
def test_invalid_values(changes, field):
    """Out-of-range values raise ConfigError naming the field."""
    with pytest.raises(ConfigError) as exc:
        SamplingConfig(**changes)
    assert exc.value.field == field


def test_replace_validates():
    """replace() runs validation again."""
    with pytest.raises(ConfigError):
        SamplingConfig().replace(batch_size=-1)


def test_penalty_window_property():
    """Window is capped by the context; negative means whole context."""
    assert SamplingConfig(repeat_last_n=64, maximum_context=32).penalty_window == 32
    assert SamplingConfig(repeat_last_n=-1).penalty_window == 4096


def test_save_and_load(tmp_path):
    """A saved config loads back equal."""
    config = SamplingConfig(temperature=0.8, stop=("END",), seed=7)
    path = tmp_path / "nested" / "config.json"
    config.save(path)
    assert SamplingConfig.load(path) == config


def test_from_dict_rejects_unknown_keys():
    """Unknown keys raise ConfigError."""
    with pytest.raises(ConfigError):
        SamplingConfig.from_dict({"temprature": 1.0})


def test_load_missing_file(tmp_path):
    """Loading a missing file raises ConfigError."""
    with pytest.raises(ConfigError):
        SamplingConfig.load(tmp_path / "absent.json")


def test_load_invalid_json(tmp_path):
    """Loading a non-JSON file raises ConfigError."""
    path = tmp_path / "config.json"
    path.write_text("[", encoding="utf-8")
    with pytest.raises(ConfigError):
        SamplingConfig.load(path)
