"""
Token sampling: turns one step of logits into the next token id.

The pipeline runs a fixed chain of stages over a live candidate set. Each
stage consumes the set left by the previous one, so the order matters:

    repetition penalty -> frequency/presence penalty -> newline exemption
    -> top-k -> tail-free -> typical -> top-p -> temperature -> draw

Every filter keeps at least ``min_keep`` candidates so the draw always has
something to pick from.
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from .config import SamplingConfig
from .types import Token

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenCandidate:
    """One entry of the candidate set."""

    id: Token
    logit: float
    p: float


class Candidates:
    """
    Mutable candidate set for a single sampling step.

    Holds parallel arrays of token ids, logits and probabilities. ``sorted``
    is true while the arrays are ordered by descending logit.
    """

    def __init__(self, ids: np.ndarray, logits: np.ndarray) -> None:
        self.ids = ids
        self.logits = logits
        self.probs = np.zeros(len(ids), dtype=np.float64)
        self.sorted = False

    @classmethod
    def from_logits(cls, logits: Sequence[float] | np.ndarray) -> "Candidates":
        """Build the full candidate set (one entry per vocabulary id) from raw logits."""
        values = np.array(logits, dtype=np.float64)
        return cls(np.arange(len(values), dtype=np.int64), values)

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self) -> Iterator[TokenCandidate]:
        for tok, logit, p in zip(self.ids, self.logits, self.probs, strict=True):
            yield TokenCandidate(int(tok), float(logit), float(p))

    def select(self, order: np.ndarray) -> None:
        """Keep and reorder candidates by index array ``order``."""
        self.ids = self.ids[order]
        self.logits = self.logits[order]
        self.probs = self.probs[order]

    def truncate(self, size: int) -> None:
        """Keep the first ``size`` candidates."""
        self.ids = self.ids[:size]
        self.logits = self.logits[:size]
        self.probs = self.probs[:size]

    def sort(self) -> None:
        """Order candidates by descending logit; ties keep the lower id first."""
        if not self.sorted:
            self.select(np.argsort(-self.logits, kind="stable"))
            self.sorted = True

    def softmax(self) -> None:
        """Sort candidates and recompute their probabilities from the logits."""
        self.sort()
        exp = np.exp(self.logits - self.logits[0])
        self.probs = exp / exp.sum()


# Penalty stages
# ---------------------------------------------------------------------------


def penalty_window(
    history: Sequence[Token], repeat_last_n: int, maximum_context: int
) -> list[Token]:
    """
    Return the tail of ``history`` the penalties look at.

    Its length is ``min(len(history), repeat_last_n, maximum_context)``, with a
    negative ``repeat_last_n`` standing for the whole context.
    """
    limit = maximum_context if repeat_last_n < 0 else repeat_last_n
    n = min(len(history), limit, maximum_context)
    if n <= 0:
        return []
    return list(history)[-n:]


def apply_repetition_penalty(
    candidates: Candidates, window: Sequence[Token], penalty: float
) -> None:
    """Divide positive logits by ``penalty`` and multiply the others, for tokens in ``window``."""
    if not window or penalty == 1.0:
        return
    hit = np.isin(candidates.ids, np.asarray(window, dtype=np.int64))
    logits = candidates.logits[hit]
    candidates.logits[hit] = np.where(logits > 0, logits / penalty, logits * penalty)
    candidates.sorted = False


def apply_frequency_and_presence_penalties(
    candidates: Candidates,
    window: Sequence[Token],
    frequency_penalty: float,
    presence_penalty: float,
) -> None:
    """Subtract ``count * frequency_penalty + (count > 0) * presence_penalty`` from every logit."""
    if not window or (frequency_penalty == 0.0 and presence_penalty == 0.0):
        return
    window_ids = np.asarray(window, dtype=np.int64)
    size = max(int(candidates.ids.max()), int(window_ids.max())) + 1
    counts = np.bincount(window_ids, minlength=size)[candidates.ids]
    candidates.logits -= counts * frequency_penalty + (counts > 0) * presence_penalty
    candidates.sorted = False


# Filter stages
# ---------------------------------------------------------------------------


def top_k(candidates: Candidates, k: int, min_keep: int = 1) -> None:
    """Keep the ``k`` highest logits; ``k <= 0`` keeps all of them."""
    if k <= 0:
        k = len(candidates)
    k = min(max(k, min_keep), len(candidates))
    candidates.sort()
    candidates.truncate(k)


def tail_free(candidates: Candidates, z: float, min_keep: int = 1) -> None:
    """
    Tail free sampling: https://www.trentonbricken.com/Tail-Free-Sampling/

    Cuts the sorted distribution where the normalized absolute second
    derivative of the probabilities accumulates past ``z``.
    """
    if z >= 1.0 or len(candidates) <= 2:
        return

    candidates.softmax()
    first = candidates.probs[:-1] - candidates.probs[1:]
    second = np.abs(first[:-1] - first[1:])

    total = second.sum()
    if total > 1e-6:
        second = second / total
    else:
        second = np.full(len(second), 1.0 / len(second))

    last_idx = len(candidates)
    cum = np.cumsum(second)
    for i in np.nonzero(cum > z)[0]:
        if i >= min_keep:
            last_idx = int(i)
            break

    candidates.truncate(last_idx)


def typical(candidates: Candidates, p: float, min_keep: int = 1) -> None:
    """
    Locally typical sampling: https://arxiv.org/abs/2202.00666

    Keeps the candidates whose information content is closest to the entropy
    of the distribution until their probability mass exceeds ``p``.
    """
    if p >= 1.0:
        return

    candidates.softmax()
    probs = candidates.probs
    with np.errstate(divide="ignore"):
        log_probs = np.log(probs)
    finite = np.isfinite(log_probs)
    entropy = -float(np.sum(probs[finite] * log_probs[finite]))
    shifted = np.where(finite, np.abs(-log_probs - entropy), np.inf)

    order = np.argsort(shifted, kind="stable")
    cum = np.cumsum(probs[order])

    last_idx = len(order)
    for i in np.nonzero(cum > p)[0]:
        if i >= min_keep - 1:
            last_idx = int(i) + 1
            break

    candidates.select(order[:last_idx])
    candidates.sorted = False


def top_p(candidates: Candidates, p: float, min_keep: int = 1) -> None:
    """Nucleus sampling: keep the shortest sorted prefix whose probability reaches ``p``."""
    if p >= 1.0:
        return

    candidates.softmax()
    cum = np.cumsum(candidates.probs)

    last_idx = len(candidates)
    for i in np.nonzero(cum >= p)[0]:
        if i + 1 >= min_keep:
            last_idx = int(i) + 1
            break

    candidates.truncate(last_idx)


def apply_temperature(candidates: Candidates, temperature: float) -> None:
    """Rescale logits by ``1 / temperature``."""
    candidates.logits = candidates.logits / temperature


def draw(candidates: Candidates, rng: np.random.Generator) -> Token:
    """Normalize the surviving logits and draw one token."""
    candidates.softmax()
    idx = rng.choice(len(candidates), p=candidates.probs)
    return int(candidates.ids[idx])


def greedy(candidates: Candidates) -> Token:
    """Return the candidate with the highest logit."""
    candidates.sort()
    return int(candidates.ids[0])


# Pipeline
# ---------------------------------------------------------------------------


class SamplingPipeline:
    """
    Runs the full stage chain for one session.

    :param config: Sampling parameters.
    :param rng: Random source; identical generator state gives identical draws.
    :param newline_token: Token exempt from penalties unless
        ``config.penalize_newline`` is set.
    """

    def __init__(
        self,
        config: SamplingConfig,
        rng: np.random.Generator | None = None,
        newline_token: Token | None = None,
    ) -> None:
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self.newline_token = newline_token

    def __call__(self, logits: Sequence[float] | np.ndarray, history: Sequence[Token]) -> Token:
        return self.sample(logits, history)

    def sample(self, logits: Sequence[float] | np.ndarray, history: Sequence[Token]) -> Token:
        """
        Pick the next token from one step of logits.

        :param logits: One score per vocabulary id.
        :param history: Recently emitted tokens, oldest first.
        :return: Sampled token id.
        """
        cfg = self.config
        candidates = Candidates.from_logits(logits)
        n_vocab = len(candidates)

        nl = self.newline_token
        has_nl = nl is not None and 0 <= nl < n_vocab
        if has_nl:
            nl_logit = candidates.logits[nl]

        window = penalty_window(history, cfg.repeat_last_n, cfg.maximum_context)
        apply_repetition_penalty(candidates, window, cfg.repeat_penalty)
        apply_frequency_and_presence_penalties(
            candidates, window, cfg.frequency_penalty, cfg.presence_penalty
        )

        # penalties keep the id order, so the newline still sits at its own index
        if has_nl and not cfg.penalize_newline:
            candidates.logits[nl] = nl_logit

        top_k(candidates, cfg.top_k if cfg.top_k > 0 else n_vocab)
        tail_free(candidates, cfg.tfs_z)
        typical(candidates, cfg.typical_p)
        top_p(candidates, cfg.top_p)

        if cfg.temperature <= 0:
            token = greedy(candidates)
        else:
            apply_temperature(candidates, cfg.temperature)
            token = draw(candidates, self.rng)

        log.debug(f"sampled token {token} from {len(candidates)} candidates")
        return token
