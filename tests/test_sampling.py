"""Unit tests for sampling stages and the sampling pipeline."""

import numpy as np
import pytest

from pocketllm import SamplingConfig, SamplingPipeline
from pocketllm.sampling import (
    Candidates,
    apply_frequency_and_presence_penalties,
    apply_repetition_penalty,
    penalty_window,
    tail_free,
    apply_temperature,
    top_k,
    top_p,
    typical,
)


@pytest.fixture
def skewed():
    """Candidates with probabilities [.5, .25, .15, .07, .03]."""
    return Candidates.from_logits(np.log([0.5, 0.25, 0.15, 0.07, 0.03]))


# Penalties
# ---------------------------------------------------------------------------


def test_penalty_window_is_bounded():
    """Only the last repeat_last_n tokens are penalized."""
    assert penalty_window([1, 2, 3, 4, 5], 2, 100) == [4, 5]
    assert penalty_window([1, 2], 64, 100) == [1, 2]
    assert penalty_window([1, 2, 3], 0, 100) == []


def test_penalty_window_negative_means_context():
    """A negative repeat_last_n uses the whole context."""
    assert penalty_window([1, 2, 3, 4, 5], -1, 3) == [3, 4, 5]


def test_repetition_penalty():
    """Positive logits are divided, negative ones multiplied."""
    c = Candidates.from_logits([2.0, -2.0, 1.0])
    apply_repetition_penalty(c, [0, 1], 2.0)
    assert c.logits.tolist() == [1.0, -4.0, 1.0]


def test_frequency_and_presence_penalties():
    """Logits drop by count * frequency + presence."""
    c = Candidates.from_logits(np.zeros(4))
    apply_frequency_and_presence_penalties(c, [1, 1, 2], 0.5, 1.0)
    assert c.logits.tolist() == [0.0, -2.0, -1.5, 0.0]


# Filters
# ---------------------------------------------------------------------------


def test_top_k_non_positive_keeps_all():
    """k <= 0 keeps every candidate, sorted."""
    c = Candidates.from_logits([1.0, 3.0, 2.0])
    top_k(c, 0)
    assert c.ids.tolist() == [1, 2, 0]


def test_top_k_keeps_highest():
    """k = 2 keeps the two best logits."""
    c = Candidates.from_logits([1.0, 3.0, 2.0])
    top_k(c, 2)
    assert c.ids.tolist() == [1, 2]


def test_top_p_keeps_nucleus():
    """The shortest prefix reaching p survives."""
    c = Candidates.from_logits(np.log([0.5, 0.3, 0.2]))
    top_p(c, 0.7)
    assert c.ids.tolist() == [0, 1]


@pytest.mark.parametrize("z, kept", [(0.5, [0]), (0.9, [0, 1])])
def test_tail_free_cutoff(skewed, z, kept):
    """The cut falls where the normalized second derivative accumulates past z."""
    tail_free(skewed, z)
    assert skewed.ids.tolist() == kept


def test_typical_keeps_tokens_closest_to_entropy(skewed):
    """Candidates are ordered by |-log p - H| and kept until their mass exceeds p."""
    typical(skewed, 0.5)
    assert skewed.ids.tolist() == [1, 0]


def test_apply_temperature():
    """Logits are divided by the temperature."""
    c = Candidates.from_logits([2.0, 4.0])
    apply_temperature(c, 2.0)
    assert c.logits.tolist() == [1.0, 2.0]


@pytest.mark.parametrize("stage", [tail_free, typical, top_p])
def test_filters_never_empty(stage):
    """Aggressive thresholds still leave one candidate."""
    c = Candidates.from_logits([3.0, 2.0, 1.0, 0.0])
    stage(c, 0.0)
    assert len(c) >= 1


@pytest.mark.parametrize("stage", [tail_free, typical, top_p])
def test_disabled_filters_keep_everything(stage):
    """A threshold of 1.0 disables the filter."""
    c = Candidates.from_logits([3.0, 2.0, 1.0, 0.0])
    stage(c, 1.0)
    assert len(c) == 4


def test_candidates_iterate_as_token_candidates():
    """Iteration yields frozen TokenCandidate records."""
    c = Candidates.from_logits([0.0, 1.0])
    c.softmax()
    first = next(iter(c))
    assert first.id == 1
    assert first.p == pytest.approx(np.e / (1 + np.e))


# Pipeline
# ---------------------------------------------------------------------------


def test_greedy_when_temperature_zero():
    """Temperature 0 picks the highest logit."""
    sampler = SamplingPipeline(SamplingConfig(temperature=0.0))
    assert sampler([0.1, 0.7, 0.2], []) == 1


def test_seeded_draws_are_deterministic():
    """Two pipelines with the same seed draw the same tokens."""
    logits = np.random.default_rng(0).normal(size=50)
    config = SamplingConfig(seed=42, temperature=1.0, top_k=0, top_p=1.0)
    a = SamplingPipeline(config)
    b = SamplingPipeline(config)
    assert [a.sample(logits, []) for _ in range(20)] == [b.sample(logits, []) for _ in range(20)]


def test_sample_stays_in_vocabulary():
    """Drawn tokens are valid ids."""
    sampler = SamplingPipeline(SamplingConfig(seed=1, temperature=1.5))
    logits = np.random.default_rng(3).normal(size=30)
    for _ in range(50):
        assert 0 <= sampler.sample(logits, [1, 2, 3]) < 30


def test_newline_exempt_from_penalty():
    """The newline logit is restored unless penalize_newline is set."""
    logits = [4.9, 5.0, 4.9]
    history = [1, 1, 1]
    config = SamplingConfig(temperature=0.0, repeat_penalty=2.0)

    exempt = SamplingPipeline(config, newline_token=1)
    assert exempt.sample(logits, history) == 1

    penalized = SamplingPipeline(config.replace(penalize_newline=True), newline_token=1)
    assert penalized.sample(logits, history) == 0


def test_penalties_run_before_top_k():
    """Top-k sees penalized logits, so the penalized favourite can be cut."""
    config = SamplingConfig(seed=0, temperature=1.0, top_k=1, repeat_penalty=2.0)
    sampler = SamplingPipeline(config)
    # unpenalized, token 0 would be the only top-1 candidate
    assert sampler.sample([1.0, 0.9, 0.1], [0]) == 1


def test_repeated_token_loses_to_fresh_one():
    """Repetition penalty moves the pick away from recent tokens."""
    sampler = SamplingPipeline(SamplingConfig(temperature=0.0, repeat_penalty=2.0))
    assert sampler.sample([1.0, 0.9], [0]) == 1
