import pytest

from nmtdecode.generation.config import PRESETS, BeamSearch, DecodingConfig, Sampling
from nmtdecode.generation.errors import ConfigurationError
from tests.generation.oracles import BOS, EOS


def test_defaults():
    config = DecodingConfig(bos_token_id=BOS, eos_token_id=EOS)
    assert config.max_length == 512
    assert config.num_beams == 6
    assert config.top_k == 50
    assert not config.do_sample
    assert config.num_return_sequences == 1


@pytest.mark.parametrize(
    "overrides",
    [
        pytest.param({"min_length": -1}, id="negative_min_length"),
        pytest.param({"min_length": 5, "max_length": 5}, id="max_not_above_min"),
        pytest.param({"num_beams": 0}, id="zero_beams"),
        pytest.param({"num_return_sequences": 0}, id="zero_return_sequences"),
        pytest.param({"num_beams": 2, "num_return_sequences": 3}, id="more_returns_than_beams"),
        pytest.param({"temperature": 0.0}, id="zero_temperature"),
        pytest.param({"top_k": -1}, id="negative_top_k"),
        pytest.param({"top_p": 0.0}, id="zero_top_p"),
        pytest.param({"top_p": 1.5}, id="top_p_above_one"),
        pytest.param({"repetition_penalty": 0.5}, id="repetition_penalty_below_one"),
        pytest.param({"no_repeat_ngram_size": -2}, id="negative_ngram_size"),
        pytest.param({"eos_token_id": BOS}, id="bos_equals_eos"),
    ],
)
def test_invalid_options_rejected(overrides):
    options = {"bos_token_id": BOS, "eos_token_id": EOS} | overrides
    with pytest.raises(ConfigurationError):
        DecodingConfig(**options)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        DecodingConfig(bos_token_id=BOS, eos_token_id=EOS, num_beams=0)


def test_sampling_may_return_more_sequences_than_beams():
    config = DecodingConfig(bos_token_id=BOS, eos_token_id=EOS, do_sample=True, num_beams=1, num_return_sequences=4)
    assert config.num_return_sequences == 4


def test_strategy_variants():
    beam = DecodingConfig(bos_token_id=BOS, eos_token_id=EOS, num_beams=3, early_stopping=True)
    assert beam.strategy == BeamSearch(num_beams=3, early_stopping=True)

    sampling = beam.with_options(do_sample=True, top_k=10, top_p=0.8, num_return_sequences=2)
    assert sampling.strategy == Sampling(top_k=10, top_p=0.8, num_return_sequences=2)


def test_with_options_validates_and_leaves_original():
    config = DecodingConfig(bos_token_id=BOS, eos_token_id=EOS)
    assert config.with_options(num_beams=2).num_beams == 2
    assert config.num_beams == 6
    with pytest.raises(ConfigurationError):
        config.with_options(max_length=0)


def test_save_and_load(tmp_path):
    config = DecodingConfig(
        bos_token_id=1, eos_token_id=2, max_length=64, num_beams=4, length_penalty=0.6, no_repeat_ngram_size=3
    )
    path = tmp_path / "decoding.yaml"
    config.save(path)
    assert "no_repeat_ngram_size: 3" in path.read_text()
    assert DecodingConfig.load(path) == config


def test_load_rejects_invalid_file(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("bos_token_id: 1\neos_token_id: 2\ntop_p: 2.0\n")
    with pytest.raises(ConfigurationError):
        DecodingConfig.load(path)


@pytest.mark.parametrize("preset_name", sorted(PRESETS))
def test_presets_build_valid_configs(preset_name):
    config = DecodingConfig.from_preset(preset_name, bos_token_id=BOS, eos_token_id=EOS)
    assert config.bos_token_id == BOS
    assert config.do_sample == (preset_name == "sampling")


def test_preset_overrides():
    config = DecodingConfig.from_preset("greedy", bos_token_id=BOS, eos_token_id=EOS, max_length=20)
    assert config.num_beams == 1
    assert config.max_length == 20


def test_unknown_preset():
    with pytest.raises(ConfigurationError, match="Available presets"):
        DecodingConfig.from_preset("nonexistent", bos_token_id=BOS, eos_token_id=EOS)
