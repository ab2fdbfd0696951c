import torch

from nmtdecode.generation.beam import Candidate, Hypothesis
from nmtdecode.generation.config import BeamSearch, DecodingConfig, Sampling

Tensor = torch.Tensor
NEG_INF = float("-inf")


def top_tokens(scores_V: Tensor, k: int) -> tuple[Tensor, Tensor]:
    """The `k` best scores and their token ids, lower id first among ties."""
    values_V, indices_V = torch.sort(scores_V, descending=True, stable=True)
    return values_V[:k], indices_V[:k]


def filter_top_k(scores_V: Tensor, top_k: int) -> Tensor:
    if top_k <= 0 or top_k >= scores_V.size(0):
        return scores_V
    values_K, indices_K = top_tokens(scores_V, top_k)
    out_V = torch.full_like(scores_V, NEG_INF)
    out_V[indices_K] = values_K
    return out_V


def filter_top_p(scores_V: Tensor, top_p: float) -> Tensor:
    """Keep the smallest best-first prefix of tokens whose probability mass reaches `top_p`."""
    if top_p >= 1.0:
        return scores_V
    sorted_V, indices_V = torch.sort(scores_V, descending=True, stable=True)
    probs_V = torch.softmax(sorted_V, dim=-1)
    mass_before_V = torch.cumsum(probs_V, dim=-1) - probs_V
    keep_V = mass_before_V < top_p
    keep_V[0] = True
    out_V = torch.full_like(scores_V, NEG_INF)
    out_V[indices_V[keep_V]] = sorted_V[keep_V]
    return out_V


class CandidateSelector:
    """Chooses the continuations of the live hypotheses of one input.

    Beam search pools the top `num_beams` tokens of every hypothesis and keeps the
    `num_beams` best pooled candidates by cumulative log-probability. Sampling draws a
    single token per hypothesis from the top-k / nucleus filtered distribution.
    """

    def __init__(self, config: DecodingConfig, generator: torch.Generator | None = None):
        self.strategy = config.strategy
        self.generator = generator

    def __repr__(self) -> str:
        return f"CandidateSelector(strategy={self.strategy})"

    def select(
        self, scores: list[Tensor], hypotheses: list[Hypothesis], generator: torch.Generator | None = None
    ) -> list[Candidate]:
        """
        scores: one adjusted score vector (V,) per live hypothesis
        hypotheses: the live hypotheses, in the order of `scores`
        generator: random source for sampling; defaults to the one given at construction

        Returns candidates best-first (beam search) or one per hypothesis in order (sampling).
        """
        match self.strategy:
            case BeamSearch(num_beams=num_beams):
                return self.expand_beams(scores, hypotheses, num_beams)
            case Sampling(top_k=top_k, top_p=top_p):
                return [
                    self.sample(parent, scores_V, hyp, top_k, top_p, generator)
                    for parent, (scores_V, hyp) in enumerate(zip(scores, hypotheses, strict=True))
                ]
        raise TypeError(f"Unknown decoding strategy: {self.strategy!r}")

    def expand_beams(self, scores: list[Tensor], hypotheses: list[Hypothesis], num_beams: int) -> list[Candidate]:
        pooled = []
        for parent, (scores_V, hyp) in enumerate(zip(scores, hypotheses, strict=True)):
            log_probs_V = torch.log_softmax(scores_V, dim=-1)
            values_S, tokens_S = top_tokens(log_probs_V, num_beams)
            for log_prob, token_id in zip(values_S.tolist(), tokens_S.tolist(), strict=True):
                if log_prob == NEG_INF:
                    break
                pooled.append(Candidate(parent, token_id, log_prob, hyp.cumulative_log_prob + log_prob))

        # stable: ties keep parent order, then token id order
        pooled.sort(key=lambda c: c.score, reverse=True)
        return pooled[:num_beams]

    def sample(
        self,
        parent: int,
        scores_V: Tensor,
        hyp: Hypothesis,
        top_k: int,
        top_p: float,
        generator: torch.Generator | None = None,
    ) -> Candidate:
        if generator is None:
            generator = self.generator
        log_probs_V = torch.log_softmax(scores_V, dim=-1)
        filtered_V = filter_top_p(filter_top_k(log_probs_V, top_k), top_p)
        probs_V = torch.softmax(filtered_V, dim=-1)
        token_id = int(torch.multinomial(probs_V, 1, generator=generator).item())
        log_prob = float(log_probs_V[token_id])
        return Candidate(parent, token_id, log_prob, hyp.cumulative_log_prob + log_prob)
