"""
Generation session: owns the context state of one model conversation.

A session tokenizes a prompt, prefills it in batches, then decodes one token
per step until the model emits EOS, a stop string shows up, or the context
window runs out.
"""

import logging
from collections import deque
from collections.abc import Iterator, Sequence
from enum import Enum
from typing import Final

import numpy as np

from ._bytes import render_piece
from ._decorators import measure_time
from .config import SamplingConfig
from .engine import InferenceEngine
from .errors import (
    ContextLimitError,
    EmptyInputError,
    EvaluationError,
    InputTooLongError,
    PocketLLMError,
)
from .prompt import format_prompt
from .sampling import SamplingPipeline
from .tokenizer import Tokenizer
from .types import Token

log = logging.getLogger(__name__)

# tokens per engine call
CHUNK_SIZE: Final[int] = 64
# decoding stops this many positions before the end of the context
CONTEXT_MARGIN: Final[int] = 4


class SessionState(str, Enum):
    """Lifecycle of a generation call."""

    IDLE = "idle"
    TOKENIZING = "tokenizing"
    PREFILLING = "prefilling"
    SAMPLING = "sampling"
    DECODING = "decoding"
    COMPLETED = "completed"
    CONTEXT_LIMITED = "context_limited"
    FAILED = "failed"


class GenerationSession:
    """
    Sequential prompt -> answer driver over an :class:`InferenceEngine`.

    The session allocates its logits and state buffers once and threads the
    recurrent state through every engine call. It is not thread-safe; a
    caller sharing the engine must serialize sessions.

    :param engine: Model evaluation backend.
    :param tokenizer: Codec matching the model vocabulary.
    :param config: Sampling, context and prompt parameters.
    :param rng: Random source for sampling; seeded from ``config.seed`` if omitted.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        tokenizer: Tokenizer,
        config: SamplingConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.engine = engine
        self.tokenizer = tokenizer
        self.config = config or SamplingConfig()
        self.sampler = SamplingPipeline(
            self.config, rng=rng, newline_token=tokenizer.newline_id
        )

        # sizes are fixed for the engine's lifetime
        self.vocab_size: int = engine.vocab_size
        self.state_size: int = engine.state_size
        if tokenizer.vocab_size() != self.vocab_size:
            log.warning(
                f"tokenizer has {tokenizer.vocab_size()} entries but the model "
                f"produces {self.vocab_size} logits"
            )

        self._logits: np.ndarray | None = np.zeros(self.vocab_size, dtype=np.float32)
        self._state_in: np.ndarray | None = engine.initial_state(
            np.empty(self.state_size, dtype=np.float32)
        )
        self._state_out: np.ndarray | None = np.empty(self.state_size, dtype=np.float32)

        # prompt and response batches, in order
        self.past: list[list[Token]] = []
        self.n_past: int = 0
        self.state = SessionState.IDLE

        self.evaluate([tokenizer.bos_id, tokenizer.eos_id])

    # Engine calls
    # ---------------------------------------------------------------------------

    @property
    def logits(self) -> np.ndarray:
        """Logits produced by the most recent engine call."""
        if self._logits is None:
            raise EvaluationError("session is closed")
        return self._logits

    def evaluate(self, tokens: Sequence[Token]) -> None:
        """Feed ``tokens`` to the engine in chunks of ``CHUNK_SIZE``, threading the state."""
        if self._logits is None or self._state_in is None or self._state_out is None:
            raise EvaluationError("session is closed")

        for start in range(0, len(tokens), CHUNK_SIZE):
            chunk = list(tokens[start : start + CHUNK_SIZE])
            self.engine.evaluate(
                chunk, self._state_in, state_out=self._state_out, logits_out=self._logits
            )
            self._state_in, self._state_out = self._state_out, self._state_in

    def evaluate_batches(self, tokens: Sequence[Token]) -> None:
        """
        Prefill ``tokens`` in batches of ``config.batch_size``.

        Before a batch that would reach the end of the context the position
        counter is reset and an EOS boundary is evaluated first.
        """
        max_ctx = self.config.maximum_context
        for start in range(0, len(tokens), self.config.batch_size):
            batch = tokens[start : start + self.config.batch_size]
            if self.n_past + len(batch) >= max_ctx:
                log.info(
                    f"rotating context at position {self.n_past} "
                    f"(batch of {len(batch)}, maximum {max_ctx})"
                )
                self.n_past = 0
                self.evaluate([self.tokenizer.eos_id])
            self.evaluate(batch)
            self.n_past += len(batch)

    # Prompt handling
    # ---------------------------------------------------------------------------

    def tokenize(self, question: str) -> list[Token]:
        """
        Format ``question`` with the prompt template and encode it.

        :raises EmptyInputError: If the prompt encodes to no tokens.
        :raises InputTooLongError: If the prompt does not fit in the context.
        """
        prompt = format_prompt(self.config.prompt_template, question)
        tokens = self.tokenizer.encode(prompt)

        if not tokens:
            raise EmptyInputError("prompt encodes to zero tokens")

        if len(tokens) >= self.config.maximum_context:
            raise InputTooLongError(
                "prompt does not fit in the context window",
                n_tokens=len(tokens),
                maximum_context=self.config.maximum_context,
            )

        self.past.append(tokens)
        return tokens

    def _hits_stop(self, piece: str, text: str) -> bool:
        """Return True if ``piece`` is a stop string or completes one at the end of ``text``."""
        combined = text + piece
        return any(piece == stop or combined.endswith(stop) for stop in self.config.stop)

    # Generation
    # ---------------------------------------------------------------------------

    def stream(self, question: str) -> Iterator[str]:
        """
        Generate an answer piece by piece.

        Pieces are yielded raw, before cleanup. Abandoning the iterator stops
        generation between two steps; the response is then not recorded in
        :attr:`past`.

        :raises TokenizationError: If the prompt is empty or too long.
        :raises ContextLimitError: If the context fills up while decoding.
        :raises EvaluationError: If the engine fails.
        """
        try:
            self.state = SessionState.TOKENIZING
            prompt_tokens = self.tokenize(question)
            log.debug(f"prompt encoded to {len(prompt_tokens)} tokens")

            self.state = SessionState.PREFILLING
            self.evaluate_batches(prompt_tokens)

            eos = self.tokenizer.eos_id
            max_ctx = self.config.maximum_context
            history: deque[Token] = deque(maxlen=self.config.penalty_window)
            output_tokens: list[Token] = []
            text = ""

            while True:
                self.state = SessionState.SAMPLING
                token = self.sampler.sample(self.logits, history)
                output_tokens.append(token)
                history.append(token)

                piece = self.tokenizer.decode([token])
                log.debug(f"token {token} -> {render_piece(piece)!r}")

                if token == eos:
                    break
                if self._hits_stop(piece, text):
                    log.debug(f"stop string reached after {len(output_tokens)} tokens")
                    break

                text += piece
                yield piece

                self.state = SessionState.DECODING
                if self.n_past > max_ctx - CONTEXT_MARGIN:
                    self.n_past //= 2
                    self.evaluate([eos])
                    self.state = SessionState.CONTEXT_LIMITED
                    log.warning(
                        f"context limit reached, position halved to {self.n_past}"
                    )
                    raise ContextLimitError(
                        "context window exhausted while decoding",
                        n_past=self.n_past,
                        maximum_context=max_ctx,
                    )

                self.evaluate([token])
                self.n_past += 1

            self.past.append(output_tokens)
            self.state = SessionState.COMPLETED
        except ContextLimitError:
            raise
        except PocketLLMError:
            self.state = SessionState.FAILED
            raise

    @measure_time("generation")
    def generate(self, question: str) -> str:
        """Generate a complete, cleaned answer for ``question``."""
        return clean_output(list(self.stream(question)))

    # Lifecycle
    # ---------------------------------------------------------------------------

    def close(self) -> None:
        """Release the logits and state buffers."""
        self._logits = None
        self._state_in = None
        self._state_out = None

    def __enter__(self) -> "GenerationSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def clean_output(pieces: list[str]) -> str:
    """
    Join generated pieces into the answer text.

    Drops one leading space from the first piece (byte-level BPE folds the
    space into the first token) and any trailing empty or newline-only pieces.
    """
    if not pieces:
        return ""

    out = list(pieces)
    if out[0].startswith(" "):
        out[0] = out[0][1:]

    while out and not out[-1].strip("\n"):
        out.pop()

    return "".join(out)
