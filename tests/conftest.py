"""Shared fixtures: a tiny byte-level vocabulary, a scripted engine and a stub embedder."""

import json

import numpy as np
import pytest

from pocketllm import InferenceEngine, SamplingConfig, Tokenizer, TokenizerConfig
from pocketllm._bytes import byte_encoder
from pocketllm.errors import EvaluationError

MERGES = [
    "h e",
    "l l",
    "he ll",
    "hell o",
    "Ġ w",
    "o r",
    "Ġw or",
    "Ġwor l",
    "Ġworl d",
]


def build_vocab() -> dict[str, int]:
    """
    Sentinel at id 0, every byte glyph at ``byte + 1``, then one id per merge
    result in merge order ("hello" -> 260, "Ġworld" -> 265).
    """
    vocab = {"<|endoftext|>": 0}
    for b, glyph in byte_encoder().items():
        vocab[glyph] = b + 1
    for i, rule in enumerate(MERGES):
        vocab[rule.replace(" ", "")] = 257 + i
    return vocab


class ScriptedEngine(InferenceEngine):
    """
    Engine double behaving like a bigram model.

    After each call the logits favour ``transitions[last token fed]``
    (EOS when the token has no transition). Calls are recorded.
    """

    def __init__(self, transitions=None, vocab_size=266, state_size=4, eos=0):
        self.transitions = dict(transitions or {})
        self._vocab_size = vocab_size
        self._state_size = state_size
        self.eos = eos
        self.calls: list[list[int]] = []
        self.fail = False
        self.closed = False

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    @property
    def state_size(self) -> int:
        return self._state_size

    def initial_state(self, out=None):
        if out is None:
            out = np.empty(self._state_size, dtype=np.float32)
        out[:] = 0.0
        return out

    def evaluate(self, tokens, state_in, state_out=None, logits_out=None):
        if self.fail:
            raise EvaluationError("scripted failure")
        self.calls.append(list(tokens))
        if state_out is None:
            state_out = np.empty(self._state_size, dtype=np.float32)
        if logits_out is None:
            logits_out = np.empty(self._vocab_size, dtype=np.float32)
        # state counts the tokens fed so far
        state_out[:] = state_in + len(tokens)
        logits_out[:] = 0.0
        logits_out[self.transitions.get(tokens[-1], self.eos)] = 10.0
        return logits_out, state_out

    def close(self) -> None:
        self.closed = True


class StubEmbedder:
    """Embedder returning fixed vectors per text (``None`` for unknown texts)."""

    def __init__(self, vectors):
        self.vectors = dict(vectors)

    def vector(self, text):
        return self.vectors.get(text)


# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tokenizer_files(tmp_path):
    """Write the tiny vocabulary and merges under their bundled names."""
    config = TokenizerConfig.from_directory(tmp_path)
    config.vocab.write_text(json.dumps(build_vocab()), encoding="utf-8")
    config.merges.write_text("#version: 0.2\n" + "\n".join(MERGES) + "\n", encoding="utf-8")
    return config


@pytest.fixture
def tokenizer(tokenizer_files):
    """Return a Tokenizer over the tiny vocabulary."""
    return Tokenizer.from_config(tokenizer_files)


@pytest.fixture
def greedy_config():
    """Deterministic config without repetition penalty."""
    return SamplingConfig(temperature=0.0, repeat_penalty=1.0)


@pytest.fixture
def make_engine():
    """Return the ScriptedEngine class for tests to build their own script."""
    return ScriptedEngine


@pytest.fixture
def make_embedder():
    """Return the StubEmbedder class."""
    return StubEmbedder
