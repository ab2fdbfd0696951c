"""
Score adjustments applied to one hypothesis' next-token log-probabilities before selection.

Every transform takes a 1-D score vector of shape (V,) and returns a new one; the input
is never modified in place. `adjust` runs them in a fixed order: temperature, repetition
penalty, n-gram blocking, minimum length.
"""

import math
from collections.abc import Callable, Sequence

import torch

from nmtdecode.generation.beam import Hypothesis
from nmtdecode.generation.config import DecodingConfig

Tensor = torch.Tensor
NEG_INF = float("-inf")


def apply_temperature(scores_V: Tensor, temperature: float) -> Tensor:
    if temperature == 1.0:
        return scores_V
    return scores_V / temperature


def apply_repetition_penalty(scores_V: Tensor, tokens: Sequence[int], penalty: float) -> Tensor:
    """Penalize every token already present in `tokens`.

    Positive scores are divided by `penalty`, negative ones multiplied by it, so the
    token always becomes less likely without being banned.
    """
    if penalty == 1.0 or not tokens:
        return scores_V
    seen = torch.tensor(sorted(set(tokens)), dtype=torch.long, device=scores_V.device)
    picked = scores_V[seen]
    picked = torch.where(picked < 0, picked * penalty, picked / penalty)
    out_V = scores_V.clone()
    out_V[seen] = picked
    return out_V


def banned_ngram_tokens(tokens: Sequence[int], ngram_size: int) -> set[int]:
    """Tokens that would complete an n-gram of `ngram_size` already present in `tokens`."""
    if ngram_size <= 0 or len(tokens) + 1 < ngram_size:
        return set()
    prefix = tuple(tokens[len(tokens) - ngram_size + 1 :])
    banned = set()
    for start in range(len(tokens) - ngram_size + 1):
        if tuple(tokens[start : start + ngram_size - 1]) == prefix:
            banned.add(tokens[start + ngram_size - 1])
    return banned


def apply_no_repeat_ngram(scores_V: Tensor, tokens: Sequence[int], ngram_size: int) -> Tensor:
    banned = banned_ngram_tokens(tokens, ngram_size)
    if not banned:
        return scores_V
    out_V = scores_V.clone()
    out_V[torch.tensor(sorted(banned), dtype=torch.long, device=scores_V.device)] = NEG_INF
    return out_V


def apply_min_length(scores_V: Tensor, cur_len: int, min_length: int, eos_token_id: int) -> Tensor:
    if cur_len >= min_length:
        return scores_V
    out_V = scores_V.clone()
    out_V[eos_token_id] = NEG_INF
    return out_V


PenaltyStep = Callable[[Tensor, Hypothesis, DecodingConfig], Tensor]

PENALTY_PIPELINE: tuple[PenaltyStep, ...] = (
    lambda s, h, c: apply_temperature(s, c.temperature),
    lambda s, h, c: apply_repetition_penalty(s, h.tokens, c.repetition_penalty),
    lambda s, h, c: apply_no_repeat_ngram(s, h.tokens, c.no_repeat_ngram_size),
    lambda s, h, c: apply_min_length(s, len(h.tokens), c.min_length, c.eos_token_id),
)


def adjust(raw_log_probs_V: Tensor, hypothesis: Hypothesis, config: DecodingConfig) -> Tensor:
    scores_V = raw_log_probs_V
    for step in PENALTY_PIPELINE:
        scores_V = step(scores_V, hypothesis, config)
    return scores_V


def is_degenerate(scores_V: Tensor) -> bool:
    """True when no token is left with a finite score."""
    return not bool(torch.isfinite(scores_V).any())


def resolve_degenerate(scores_V: Tensor, raw_log_probs_V: Tensor, eos_token_id: int) -> Tensor:
    """Re-open EOS with its raw score so that a fully banned hypothesis can still finish."""
    if not is_degenerate(scores_V):
        return scores_V
    raw_eos = float(raw_log_probs_V[eos_token_id])
    out_V = scores_V.clone()
    out_V[eos_token_id] = raw_eos if math.isfinite(raw_eos) else 0.0
    return out_V
