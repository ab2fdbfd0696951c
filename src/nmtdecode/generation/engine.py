from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import torch
from tqdm import tqdm

from nmtdecode.generation.beam import BeamManager, Hypothesis, Manager, SampleManager
from nmtdecode.generation.config import BeamSearch, DecodingConfig, Sampling
from nmtdecode.generation.errors import ConfigurationError, OracleFailure
from nmtdecode.generation.oracle import OracleOutput, ScoringOracle
from nmtdecode.generation.penalties import adjust, is_degenerate, resolve_degenerate
from nmtdecode.generation.selection import CandidateSelector
from nmtdecode.utils.logging_config import logger

Tensor = torch.Tensor


class InputStatus(Enum):
    ACTIVE = "active"
    DONE = "done"
    FAILED = "failed"


class RunStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass(frozen=True)
class DecodedSequence:
    tokens: list[int]
    score: float


@dataclass
class DecodeResult:
    source_index: int
    sequences: list[DecodedSequence]
    error: OracleFailure | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass
class BatchState:
    index: int
    manager: Manager
    status: InputStatus = InputStatus.ACTIVE
    error: OracleFailure | None = field(default=None, repr=False)
    generator: torch.Generator | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self.status is InputStatus.ACTIVE

    def fail(self, error: OracleFailure) -> None:
        self.status = InputStatus.FAILED
        self.error = error


def strip_special_tokens(tokens: list[int], bos_token_id: int, eos_token_id: int) -> list[int]:
    """Drop the leading BOS and a trailing EOS."""
    if tokens and tokens[0] == bos_token_id:
        tokens = tokens[1:]
    if tokens and tokens[-1] == eos_token_id:
        tokens = tokens[:-1]
    return tokens


class DecodingEngine:
    """Drives beam search or sampling over a batch of independent inputs.

    Each step sends the live hypotheses of every active input to the oracle in one call,
    then adjusts, selects and advances each input on its own. The loop never runs more
    than `max_length` steps. When sampling, every input draws from its own random source,
    seeded from `config.seed` and the input position at the start of every `decode` call,
    so an input's samples do not depend on the other inputs of its batch.
    """

    def __init__(self, oracle: ScoringOracle, config: DecodingConfig):
        self.oracle = oracle
        self.config = config
        V = oracle.vocab_size
        for name in ("bos_token_id", "eos_token_id", "pad_token_id"):
            token_id = getattr(config, name)
            if not 0 <= token_id < V:
                raise ConfigurationError(f"{name}={token_id} is outside the oracle vocabulary of size {V}")
        self.selector = CandidateSelector(config)
        self.status = RunStatus.IDLE

    def __repr__(self) -> str:
        return f"DecodingEngine(strategy={self.config.strategy}, max_length={self.config.max_length})"

    def _new_manager(self, source_index: int) -> Manager:
        match self.config.strategy:
            case BeamSearch():
                return BeamManager(source_index, self.config)
            case Sampling():
                return SampleManager(source_index, self.config)
        raise TypeError(f"Unknown decoding strategy: {self.config.strategy!r}")

    def _new_generator(self, source_index: int) -> torch.Generator | None:
        if not self.config.do_sample:
            return None
        return torch.Generator().manual_seed((self.config.seed * 1_000_003 + source_index) % 2**63)

    def decode(self, context: Any, batch_size: int | None = None, progress_bar: bool = True) -> list[DecodeResult]:
        """
        context: encoded sources, opaque to the engine and handed to the oracle as-is
        batch_size: number of inputs in `context`; defaults to len(context)

        Returns one DecodeResult per input, in input order.
        """
        B = len(context) if batch_size is None else batch_size
        L = self.config.max_length
        self.status = RunStatus.RUNNING
        states = [
            BatchState(index=b, manager=self._new_manager(b), generator=self._new_generator(b)) for b in range(B)
        ]

        logger.info(f"Decoding {B} inputs with {self.config.strategy}, max_length={L}")
        pbar: Iterable[int] = tqdm(range(L), desc="Decoding", dynamic_ncols=True) if progress_bar else range(L)
        for step in pbar:
            active = [state for state in states if state.active]
            if not active:
                break

            outputs = self._score(active, context)
            for state in active:
                if state.index in outputs:
                    self._advance(state, outputs[state.index])

            finished_count = sum(not state.active for state in states)
            logger.debug(f"Step {step}: {finished_count}/{B} inputs finished")
            if progress_bar:
                pbar.set_postfix({"Finished inputs": f"{finished_count}/{B}"})

        self.status = RunStatus.COMPLETE
        n_failed = sum(state.status is InputStatus.FAILED for state in states)
        if n_failed:
            logger.warning(f"Decoding complete, {n_failed}/{B} inputs failed")
        else:
            logger.info("Decoding complete")
        return [self._result(state) for state in states]

    def generate(self, context: Any, batch_size: int | None = None, progress_bar: bool = False) -> list[list[list[int]]]:
        """Token sequences per input; raises the first OracleFailure encountered."""
        results = self.decode(context, batch_size, progress_bar)
        for result in results:
            result.raise_for_failure()
        return [[seq.tokens for seq in result.sequences] for result in results]

    def _call_oracle(self, hypotheses: list[Hypothesis], context: Any) -> list[OracleOutput]:
        outputs = self.oracle.score(
            [h.tokens for h in hypotheses],
            context,
            [h.source_index for h in hypotheses],
            [h.cache for h in hypotheses],
        )
        if len(outputs) != len(hypotheses):
            raise OracleFailure(f"Oracle returned {len(outputs)} vectors for {len(hypotheses)} prefixes")
        return outputs

    def _score(self, active: list[BatchState], context: Any) -> dict[int, list[OracleOutput]]:
        """Score every live hypothesis of `active` in one call, keyed by input index.

        If the batched call raises, each input is scored on its own so that only the
        inputs whose own call fails are marked FAILED.
        """
        hypotheses = [h for state in active for h in state.manager.live]
        try:
            outputs = self._call_oracle(hypotheses, context)
        except Exception as e:
            logger.warning(f"Batched oracle call failed ({e}); isolating {len(active)} inputs")
            return self._score_isolated(active, context)

        routed = {}
        offset = 0
        for state in active:
            n = len(state.manager.live)
            routed[state.index] = outputs[offset : offset + n]
            offset += n
        return routed

    def _score_isolated(self, active: list[BatchState], context: Any) -> dict[int, list[OracleOutput]]:
        routed = {}
        for state in active:
            try:
                routed[state.index] = self._call_oracle(state.manager.live, context)
            except OracleFailure as e:
                logger.warning(f"Oracle failed for input {state.index}: {e}")
                e.source_indices = [state.index]
                state.fail(e)
            except Exception as e:
                logger.warning(f"Oracle failed for input {state.index}: {e}")
                failure = OracleFailure(f"Oracle failed: {e}", [state.index])
                failure.__cause__ = e
                state.fail(failure)
        return routed

    def _validate(self, log_probs: Any, source_index: int) -> Tensor:
        log_probs_V = torch.as_tensor(log_probs).detach().to(device="cpu", dtype=torch.float64)
        V = self.oracle.vocab_size
        if log_probs_V.dim() != 1 or log_probs_V.size(0) != V:
            raise OracleFailure(
                f"Expected a log-probability vector of size {V}, got shape {tuple(log_probs_V.shape)}", [source_index]
            )
        if torch.isnan(log_probs_V).all():
            raise OracleFailure("Oracle returned an all-NaN log-probability vector", [source_index])
        if torch.isposinf(log_probs_V).any():
            raise OracleFailure("Oracle returned a +inf log-probability", [source_index])
        return torch.nan_to_num(log_probs_V, nan=float("-inf"), neginf=float("-inf"))

    def _advance(self, state: BatchState, outputs: list[OracleOutput]) -> None:
        manager = state.manager
        live = manager.live
        scores = []
        for hyp, output in zip(live, outputs, strict=True):
            try:
                raw_V = self._validate(output.log_probs, state.index)
            except OracleFailure as e:
                logger.warning(f"Input {state.index}: {e}")
                state.fail(e)
                return
            scores_V = adjust(raw_V, hyp, self.config)
            if is_degenerate(scores_V):
                logger.warning(f"Input {state.index}: every token banned at length {len(hyp)}, forcing EOS")
                scores_V = resolve_degenerate(scores_V, raw_V, self.config.eos_token_id)
            scores.append(scores_V)

        candidates = self.selector.select(scores, live, state.generator)
        manager.advance(candidates, [output.cache for output in outputs])
        if manager.done:
            state.status = InputStatus.DONE

    def _result(self, state: BatchState) -> DecodeResult:
        if state.status is InputStatus.FAILED:
            return DecodeResult(source_index=state.index, sequences=[], error=state.error)

        bos, eos = self.config.bos_token_id, self.config.eos_token_id
        sequences = [
            DecodedSequence(
                tokens=strip_special_tokens(h.tokens, bos, eos),
                score=h.score(self.config.length_penalty),
            )
            for h in state.manager.results(self.config.num_return_sequences)
        ]
        return DecodeResult(source_index=state.index, sequences=sequences)
