from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from nmtdecode.generation.errors import ConfigurationError


@dataclass(frozen=True)
class BeamSearch:
    """Deterministic beam expansion."""

    num_beams: int
    early_stopping: bool


@dataclass(frozen=True)
class Sampling:
    """Stochastic top-k / nucleus sampling, one child per hypothesis."""

    top_k: int
    top_p: float
    num_return_sequences: int


Strategy = BeamSearch | Sampling


@dataclass(frozen=True)
class DecodingConfig:
    """Configuration for the decoding engine.

    Attributes:
        bos_token_id: Token every hypothesis starts with.
        eos_token_id: Token that finishes a hypothesis.
        pad_token_id: Token used to right-pad prefixes of unequal length.
        min_length: EOS is banned while a hypothesis holds fewer tokens than this.
        max_length: Hard ceiling on hypothesis length, BOS included.
        do_sample: Sample instead of running beam search.
        early_stopping: Stop an input as soon as `num_beams` hypotheses are finished.
        num_beams: Beam width (beam search only).
        temperature: Divisor applied to log-probabilities before anything else.
        top_k: Keep only the `top_k` best tokens when sampling; 0 disables.
        top_p: Nucleus mass kept when sampling; 1.0 disables.
        repetition_penalty: Penalty on tokens already generated; 1.0 disables.
        length_penalty: Exponent on length for finished-hypothesis ranking; 1.0 is neutral.
        no_repeat_ngram_size: Ban repeating any n-gram of this size; 0 disables.
        num_return_sequences: Sequences returned per input.
        seed: Seed of the sampling random source.
    """

    bos_token_id: int
    eos_token_id: int
    pad_token_id: int = 0
    min_length: int = 0
    max_length: int = 512
    do_sample: bool = False
    early_stopping: bool = False
    num_beams: int = 6
    temperature: float = 1.0
    top_k: int = 50
    top_p: float = 1.0
    repetition_penalty: float = 1.0
    length_penalty: float = 1.0
    no_repeat_ngram_size: int = 0
    num_return_sequences: int = 1
    seed: int = 42

    def __post_init__(self) -> None:
        if self.min_length < 0:
            raise ConfigurationError(f"{self.min_length=} must be >= 0")
        if self.max_length <= self.min_length:
            raise ConfigurationError(f"{self.max_length=} must be greater than {self.min_length=}")
        if self.num_beams < 1:
            raise ConfigurationError(f"{self.num_beams=} must be >= 1")
        if self.num_return_sequences < 1:
            raise ConfigurationError(f"{self.num_return_sequences=} must be >= 1")
        if not self.do_sample and self.num_return_sequences > self.num_beams:
            raise ConfigurationError(
                f"{self.num_return_sequences=} cannot exceed {self.num_beams=} when beam searching"
            )
        if not self.temperature > 0:
            raise ConfigurationError(f"{self.temperature=} must be > 0")
        if self.top_k < 0:
            raise ConfigurationError(f"{self.top_k=} must be >= 0")
        if not 0 < self.top_p <= 1:
            raise ConfigurationError(f"{self.top_p=} must be in (0, 1]")
        if self.repetition_penalty < 1:
            raise ConfigurationError(f"{self.repetition_penalty=} must be >= 1")
        if self.no_repeat_ngram_size < 0:
            raise ConfigurationError(f"{self.no_repeat_ngram_size=} must be >= 0")
        if self.bos_token_id == self.eos_token_id:
            raise ConfigurationError(f"{self.bos_token_id=} and {self.eos_token_id=} must differ")

    @property
    def strategy(self) -> Strategy:
        if self.do_sample:
            return Sampling(
                top_k=self.top_k,
                top_p=self.top_p,
                num_return_sequences=self.num_return_sequences,
            )
        return BeamSearch(num_beams=self.num_beams, early_stopping=self.early_stopping)

    def with_options(self, **changes: Any) -> "DecodingConfig":
        """Return a validated copy with `changes` applied."""
        return replace(self, **changes)

    def save(self, path: Path) -> None:
        """Save config to yaml file.

        Args:
            path: Path to save the config to.
        """
        with open(path, "w") as f:
            yaml.safe_dump(asdict(self), f, sort_keys=False, default_flow_style=False)

    @classmethod
    def load(cls, path: Path) -> "DecodingConfig":
        """Load config from yaml file.

        Args:
            path: Path to load the config from.

        Returns:
            Loaded and validated config.
        """
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls(**data)

    @classmethod
    def from_preset(cls, preset_name: str, bos_token_id: int, eos_token_id: int, **overrides: Any) -> "DecodingConfig":
        """Build a config from one of the named presets.

        Raises:
            ConfigurationError: If the preset is not found.
        """
        if preset_name not in PRESETS:
            raise ConfigurationError(f"Preset '{preset_name}' not found. Available presets: {', '.join(PRESETS)}")
        options = PRESETS[preset_name] | overrides
        return cls(bos_token_id=bos_token_id, eos_token_id=eos_token_id, **options)


PRESETS: dict[str, dict[str, Any]] = {
    "translation": {
        "min_length": 0,
        "max_length": 512,
        "do_sample": False,
        "early_stopping": False,
        "num_beams": 6,
        "temperature": 1.0,
        "top_k": 50,
        "top_p": 1.0,
        "repetition_penalty": 1.0,
        "length_penalty": 1.0,
        "no_repeat_ngram_size": 0,
        "num_return_sequences": 1,
    },
    "greedy": {
        "do_sample": False,
        "num_beams": 1,
        "top_k": 0,
        "num_return_sequences": 1,
    },
    "sampling": {
        "do_sample": True,
        "num_beams": 1,
        "temperature": 1.0,
        "top_k": 50,
        "top_p": 0.9,
        "num_return_sequences": 1,
    },
}
