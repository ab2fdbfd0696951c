"""nmtdecode - Beam search and sampling for sequence-to-sequence decoders."""

from nmtdecode.generation import (
    ConfigurationError,
    DecodeResult,
    DecodingConfig,
    DecodingEngine,
    OracleFailure,
    ScoringOracle,
    TransformerOracle,
)
from nmtdecode.translate import Translator
from nmtdecode.utils.logging_config import setup_logging

setup_logging()

__all__ = [
    "ConfigurationError",
    "DecodeResult",
    "DecodingConfig",
    "DecodingEngine",
    "OracleFailure",
    "ScoringOracle",
    "TransformerOracle",
    "Translator",
]
