from nmtdecode.generation.beam import BeamManager, Candidate, Hypothesis, SampleManager
from nmtdecode.generation.config import BeamSearch, DecodingConfig, Sampling
from nmtdecode.generation.engine import DecodedSequence, DecodeResult, DecodingEngine
from nmtdecode.generation.errors import ConfigurationError, OracleFailure
from nmtdecode.generation.oracle import EncodedSource, OracleOutput, ScoringOracle, TransformerOracle
from nmtdecode.generation.selection import CandidateSelector

__all__ = [
    "BeamManager",
    "BeamSearch",
    "Candidate",
    "CandidateSelector",
    "ConfigurationError",
    "DecodeResult",
    "DecodedSequence",
    "DecodingConfig",
    "DecodingEngine",
    "EncodedSource",
    "Hypothesis",
    "OracleFailure",
    "OracleOutput",
    "SampleManager",
    "Sampling",
    "ScoringOracle",
    "TransformerOracle",
]
