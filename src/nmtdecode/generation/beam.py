from dataclasses import dataclass, field
from typing import Any

from nmtdecode.generation.config import DecodingConfig


@dataclass
class Hypothesis:
    """One candidate output sequence, BOS first."""

    tokens: list[int]
    cumulative_log_prob: float
    source_index: int
    finished: bool = False
    cache: Any = field(default=None, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.tokens)

    def score(self, length_penalty: float) -> float:
        return self.cumulative_log_prob / (len(self.tokens) ** length_penalty)

    def extend(self, token_id: int, log_prob: float, eos_token_id: int, max_length: int) -> "Hypothesis":
        tokens = self.tokens + [token_id]
        return Hypothesis(
            tokens=tokens,
            cumulative_log_prob=self.cumulative_log_prob + log_prob,
            source_index=self.source_index,
            finished=token_id == eos_token_id or len(tokens) >= max_length,
        )


@dataclass(frozen=True)
class Candidate:
    """A proposed continuation: `parent` indexes the live list of the current generation."""

    parent: int
    token_id: int
    log_prob: float
    score: float


class BeamManager:
    """Owns the live hypotheses and the finished pool of one input during beam search.

    Every call to `advance` builds a new generation from the candidates chosen for the
    previous one, so no hypothesis is ever modified after it has been created. Live and
    finished hypotheses together never exceed `num_beams`.

    Without early stopping, finished hypotheses keep competing with live ones for the
    `num_beams` slots and may be displaced by a live hypothesis with a better
    length-penalized score. With early stopping, finished hypotheses are locked in and
    the input is done as soon as `num_beams` of them exist.
    """

    def __init__(self, source_index: int, config: DecodingConfig):
        self.source_index = source_index
        self.num_beams = config.num_beams
        self.early_stopping = config.early_stopping
        self.length_penalty = config.length_penalty
        self.eos_token_id = config.eos_token_id
        self.max_length = config.max_length

        self.generation = 0
        self.live: list[Hypothesis] = [Hypothesis([config.bos_token_id], 0.0, source_index)]
        self.finished: list[Hypothesis] = []
        self.done = False

    def __repr__(self) -> str:
        return (
            f"BeamManager(source_index={self.source_index}, generation={self.generation}, "
            f"live={len(self.live)}, finished={len(self.finished)})"
        )

    def _rank(self, hypotheses: list[Hypothesis]) -> list[Hypothesis]:
        return sorted(hypotheses, key=lambda h: h.score(self.length_penalty), reverse=True)

    def _admit(self, hypotheses: list[Hypothesis]) -> None:
        self.finished = self._rank(self.finished + hypotheses)[: self.num_beams]

    def advance(self, candidates: list[Candidate], caches: list[Any] | None = None) -> None:
        """Build the next generation from `candidates`, given best-first."""
        if self.done:
            return

        children = []
        for cand in candidates:
            child = self.live[cand.parent].extend(cand.token_id, cand.log_prob, self.eos_token_id, self.max_length)
            if caches is not None and not child.finished:
                child.cache = caches[cand.parent]
            children.append(child)

        new_live = [h for h in children if not h.finished]
        newly_finished = [h for h in children if h.finished]

        if self.early_stopping:
            self._admit(newly_finished)
            new_live = new_live[: self.num_beams - len(self.finished)]
        else:
            kept = {id(h) for h in self._rank(self.finished + newly_finished + new_live)[: self.num_beams]}
            self.finished = self._rank([h for h in self.finished + newly_finished if id(h) in kept])
            new_live = [h for h in new_live if id(h) in kept]

        self.live = new_live
        self.generation += 1

        if not self.live:
            self.done = True
        elif self.early_stopping and len(self.finished) >= self.num_beams:
            self.live = []
            self.done = True

    def results(self, num_return_sequences: int) -> list[Hypothesis]:
        """Best-first finished hypotheses; live ones fill in if the pool is short."""
        ranked = self._rank(self.finished)
        if len(ranked) < num_return_sequences:
            ranked += self._rank(self.live)
        return ranked[:num_return_sequences]


class SampleManager:
    """Tracks `num_return_sequences` independent hypotheses of one input while sampling.

    Hypotheses never compete: each live one receives exactly one child per step and the
    slot order is the order of creation.
    """

    def __init__(self, source_index: int, config: DecodingConfig):
        self.source_index = source_index
        self.eos_token_id = config.eos_token_id
        self.max_length = config.max_length

        self.generation = 0
        self.hypotheses = [
            Hypothesis([config.bos_token_id], 0.0, source_index) for _ in range(config.num_return_sequences)
        ]
        self.done = False

    def __repr__(self) -> str:
        return f"SampleManager(source_index={self.source_index}, generation={self.generation}, live={len(self.live)})"

    @property
    def live(self) -> list[Hypothesis]:
        return [h for h in self.hypotheses if not h.finished]

    @property
    def finished(self) -> list[Hypothesis]:
        return [h for h in self.hypotheses if h.finished]

    def advance(self, candidates: list[Candidate], caches: list[Any] | None = None) -> None:
        if self.done:
            return

        live_slots = [i for i, h in enumerate(self.hypotheses) if not h.finished]
        if len(candidates) != len(live_slots):
            raise ValueError(f"Expected one candidate per live hypothesis ({len(live_slots)}), got {len(candidates)}")

        hypotheses = list(self.hypotheses)
        for cand in candidates:
            slot = live_slots[cand.parent]
            child = hypotheses[slot].extend(cand.token_id, cand.log_prob, self.eos_token_id, self.max_length)
            if caches is not None and not child.finished:
                child.cache = caches[cand.parent]
            hypotheses[slot] = child

        self.hypotheses = hypotheses
        self.generation += 1
        self.done = all(h.finished for h in self.hypotheses)

    def results(self, num_return_sequences: int) -> list[Hypothesis]:
        return self.hypotheses[:num_return_sequences]


Manager = BeamManager | SampleManager
