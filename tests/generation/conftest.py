"""
Pytest configuration and fixtures for generation tests.
"""

import numpy as np
import pytest
import torch

from nmtdecode.generation.config import DecodingConfig
from tests.generation.oracles import BOS, EOS, RandomTableOracle

# Set seeds for reproducible tests
torch.manual_seed(42)
np.random.seed(42)


@pytest.fixture
def random_oracle():
    return RandomTableOracle()


@pytest.fixture
def eos_biased_oracle():
    """Random scores with EOS growing likelier as prefixes get longer."""
    return RandomTableOracle(eos_bias=0.6)


@pytest.fixture
def make_config():
    def _make(**overrides) -> DecodingConfig:
        options = {
            "bos_token_id": BOS,
            "eos_token_id": EOS,
            "max_length": 12,
            "num_beams": 4,
            "top_k": 0,
        } | overrides
        return DecodingConfig(**options)

    return _make


@pytest.fixture
def greedy_reference():
    """Plain greedy decoding straight from an oracle, for comparison."""

    def _greedy(oracle, context, source_index: int, max_length: int) -> list[int]:
        tokens = [BOS]
        while len(tokens) < max_length:
            (output,) = oracle.score([tokens], context, [source_index])
            token_id = int(torch.argmax(output.log_probs).item())
            tokens.append(token_id)
            if token_id == EOS:
                break
        return [t for t in tokens[1:] if t != EOS]

    return _greedy


def pytest_configure(config):
    """Configure pytest for generation tests."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
