from collections.abc import Sequence
from typing import Protocol

import torch

from nmtdecode.generation.config import DecodingConfig
from nmtdecode.generation.engine import DecodeResult, DecodingEngine
from nmtdecode.generation.oracle import TransformerOracle
from nmtdecode.utils.logging_config import logger


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, token_ids: Sequence[int]) -> str: ...


def prepare_source_tensor(
    texts: Sequence[str], tokenizer: Tokenizer, max_source_length: int, pad_idx: int
) -> torch.Tensor:
    """Tokenize `texts` into a right-padded (B, C) tensor, truncating to `max_source_length`.

    Args:
        texts: Source texts.
        tokenizer: Tokenizer used for encoding.
        max_source_length: Width C of the returned tensor.
        pad_idx: Padding token id.

    Returns:
        The source tensor of shape (B, C).
    """
    src_BC = torch.full((len(texts), max_source_length), pad_idx, dtype=torch.long)
    for b, text in enumerate(texts):
        token_ids = tokenizer.encode(text)
        if len(token_ids) > max_source_length:
            logger.warning(f"Source {b} has {len(token_ids)} tokens, truncating to {max_source_length}")
            token_ids = token_ids[:max_source_length]
        if token_ids:
            src_BC[b, : len(token_ids)] = torch.tensor(token_ids, dtype=torch.long)
    return src_BC


class Translator:
    """Text in, text out: tokenization and detokenization around a DecodingEngine."""

    def __init__(
        self,
        oracle: TransformerOracle,
        tokenizer: Tokenizer,
        config: DecodingConfig,
        max_source_length: int = 512,
    ):
        self.oracle = oracle
        self.tokenizer = tokenizer
        self.config = config
        self.max_source_length = max_source_length
        self.engine = DecodingEngine(oracle, config)

    def __repr__(self) -> str:
        return f"Translator(engine={self.engine!r}, max_source_length={self.max_source_length})"

    def _decode(self, texts: Sequence[str], progress_bar: bool) -> list[DecodeResult]:
        src_BC = prepare_source_tensor(texts, self.tokenizer, self.max_source_length, self.config.pad_token_id)
        context = self.oracle.encode(src_BC)
        results = self.engine.decode(context, batch_size=len(texts), progress_bar=progress_bar)
        for result in results:
            result.raise_for_failure()
        return results

    def translate_all(self, texts: Sequence[str], progress_bar: bool = False) -> list[list[str]]:
        """All `num_return_sequences` outputs per text, best first for beam search.

        Raises:
            OracleFailure: If the oracle failed for any of the texts.
        """
        if not texts:
            return []
        results = self._decode(texts, progress_bar)
        return [[self.tokenizer.decode(seq.tokens) for seq in result.sequences] for result in results]

    def translate(self, texts: Sequence[str], progress_bar: bool = False) -> list[str]:
        """The first returned sequence per text only; use `translate_all` for every one.

        A text whose decode produced no sequence maps to "".
        """
        return [outputs[0] if outputs else "" for outputs in self.translate_all(texts, progress_bar)]
