import math

import pytest
import torch

from nmtdecode.generation.beam import Hypothesis
from nmtdecode.generation.penalties import (
    adjust,
    apply_min_length,
    apply_no_repeat_ngram,
    apply_repetition_penalty,
    apply_temperature,
    banned_ngram_tokens,
    is_degenerate,
    resolve_degenerate,
)
from tests.generation.oracles import BOS, EOS

NEG_INF = float("-inf")


def test_temperature_divides_scores():
    scores = torch.tensor([-1.0, -2.0, -4.0])
    assert torch.equal(apply_temperature(scores, 2.0), torch.tensor([-0.5, -1.0, -2.0]))


def test_temperature_one_is_identity():
    scores = torch.tensor([-1.0, -2.0])
    assert apply_temperature(scores, 1.0) is scores


def test_repetition_penalty_multiplies_negative_and_divides_positive():
    scores = torch.tensor([2.0, -2.0, 4.0, -1.0])
    out = apply_repetition_penalty(scores, [0, 1, 1], 2.0)
    assert out.tolist() == [1.0, -4.0, 4.0, -1.0]
    # input untouched
    assert scores.tolist() == [2.0, -2.0, 4.0, -1.0]


def test_repetition_penalty_disabled():
    scores = torch.tensor([-1.0, -2.0])
    assert apply_repetition_penalty(scores, [0, 1], 1.0) is scores


@pytest.mark.parametrize(
    "tokens, ngram_size, expected",
    [
        pytest.param([1, 2, 3, 1, 2], 3, {3}, id="trigram"),
        pytest.param([1, 2, 1, 3, 1], 2, {2, 3}, id="bigram_two_continuations"),
        pytest.param([5, 6, 5], 1, {5, 6}, id="unigram_bans_everything_seen"),
        pytest.param([1, 2], 3, set(), id="too_short_to_repeat"),
        pytest.param([1, 2, 3], 0, set(), id="disabled"),
        pytest.param([1, 2, 3, 4], 2, set(), id="no_matching_prefix"),
    ],
)
def test_banned_ngram_tokens(tokens, ngram_size, expected):
    assert banned_ngram_tokens(tokens, ngram_size) == expected


def test_no_repeat_ngram_sets_banned_to_neg_inf():
    scores = torch.zeros(5)
    out = apply_no_repeat_ngram(scores, [1, 2, 1], 2)
    assert out[2].item() == NEG_INF
    assert torch.isfinite(out[[0, 1, 3, 4]]).all()


def test_min_length_bans_eos_only_while_short():
    scores = torch.zeros(10)
    assert apply_min_length(scores, 2, 3, EOS)[EOS].item() == NEG_INF
    assert apply_min_length(scores, 3, 3, EOS)[EOS].item() == 0.0


def test_adjust_applies_temperature_before_repetition(make_config):
    config = make_config(temperature=2.0, repetition_penalty=3.0)
    hyp = Hypothesis([BOS, 1], 0.0, 0)
    raw = torch.tensor([-2.0, -2.0, -2.0] + [-4.0] * 9)
    out = adjust(raw, hyp, config)
    # (-2 / 2) * 3 for seen tokens, -2 / 2 for unseen ones
    assert out[0].item() == pytest.approx(-3.0)
    assert out[1].item() == pytest.approx(-3.0)
    assert out[2].item() == pytest.approx(-1.0)


def test_adjust_is_pure(make_config):
    config = make_config(temperature=0.5, repetition_penalty=1.5, no_repeat_ngram_size=2, min_length=5)
    hyp = Hypothesis([BOS, 3, 4, 3], -1.0, 0)
    raw = torch.log_softmax(torch.arange(12, dtype=torch.float64), dim=-1)
    before = raw.clone()
    adjust(raw, hyp, config)
    assert torch.equal(raw, before)
    assert hyp.tokens == [BOS, 3, 4, 3]


def test_adjust_combines_ngram_block_and_min_length(make_config):
    config = make_config(no_repeat_ngram_size=2, min_length=5)
    hyp = Hypothesis([BOS, 3, 4, 3], 0.0, 0)
    out = adjust(torch.zeros(12, dtype=torch.float64), hyp, config)
    assert out[4].item() == NEG_INF
    assert out[EOS].item() == NEG_INF
    assert not is_degenerate(out)


def test_resolve_degenerate_reopens_eos_with_raw_score():
    raw = torch.tensor([-1.0, -2.0, -0.5])
    banned = torch.full((3,), NEG_INF)
    out = resolve_degenerate(banned, raw, eos_token_id=1)
    assert out.tolist() == [NEG_INF, -2.0, NEG_INF]


def test_resolve_degenerate_uses_zero_when_raw_eos_is_not_finite():
    raw = torch.tensor([-1.0, NEG_INF])
    out = resolve_degenerate(torch.full((2,), NEG_INF), raw, eos_token_id=1)
    assert out[1].item() == 0.0
    assert math.isinf(out[0].item())


def test_resolve_degenerate_leaves_viable_scores_alone():
    scores = torch.tensor([NEG_INF, -1.0])
    assert resolve_degenerate(scores, scores, eos_token_id=0) is scores
