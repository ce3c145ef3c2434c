"""
Question answering models.

:class:`Model` is the capability the facade depends on. :class:`RWKV` answers
with a real engine-backed generation session; :class:`TestingModel` returns a
fixed reply so retrieval and prompting can be exercised without weights.
"""

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import NamedTuple

from typing_extensions import override

import numpy as np

from .config import SamplingConfig
from .engine import InferenceEngine, RWKVEngine
from .session import GenerationSession
from .tokenizer import Tokenizer, TokenizerConfig

log = logging.getLogger(__name__)


class Prediction(NamedTuple):
    """Generated answer and the time it took, in seconds."""

    text: str
    seconds: float


class Model(ABC):
    """Anything that can answer a prompt."""

    @abstractmethod
    def predict(self, prompt: str) -> Prediction:
        """Answer ``prompt``."""
        ...

    def close(self) -> None:
        """Release model resources."""


class RWKV(Model):
    """
    RWKV model answering through a :class:`GenerationSession`.

    :param engine: Loaded evaluation backend.
    :param tokenizer: Codec matching the model vocabulary.
    :param parameters: Generation parameters.
    :param rng: Optional random source for sampling.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        tokenizer: Tokenizer,
        parameters: SamplingConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.engine = engine
        self.parameters = parameters or SamplingConfig()
        self.session = GenerationSession(engine, tokenizer, self.parameters, rng=rng)

    @classmethod
    def from_file(
        cls,
        model_path: str | Path,
        parameters: SamplingConfig | None = None,
        tokenizer_config: TokenizerConfig | None = None,
        library_path: str | None = None,
    ) -> "RWKV":
        """
        Load weights with rwkv.cpp and the 20B tokenizer files.

        The tokenizer files default to the ones next to the model file.

        :raises InitFailureError: If the engine cannot be initialized.
        :raises ModelLoadError: If the tokenizer files are missing or malformed.
        """
        parameters = parameters or SamplingConfig()
        tokenizer_config = tokenizer_config or TokenizerConfig.from_directory(
            Path(model_path).parent
        )
        # load the tokenizer first so a bad asset fails before the weights are mapped
        tokenizer = Tokenizer.from_config(tokenizer_config)
        engine = RWKVEngine(
            model_path, n_threads=parameters.n_threads, library_path=library_path
        )
        try:
            return cls(engine, tokenizer, parameters)
        except Exception:
            # the session evaluates [BOS, EOS] on creation
            engine.close()
            raise

    @override
    def predict(self, prompt: str) -> Prediction:
        start = time.perf_counter()
        text = self.session.generate(prompt)
        return Prediction(text, time.perf_counter() - start)

    @override
    def close(self) -> None:
        self.session.close()
        self.engine.close()


class TestingModel(Model):
    """Model double that always returns the same prediction."""

    # keep pytest from collecting this class
    __test__ = False

    def __init__(self, prediction: Prediction = Prediction("Test reply", 0.0)) -> None:
        self.prediction = prediction

    @override
    def predict(self, prompt: str) -> Prediction:
        log.debug(f"testing model asked {prompt!r}")
        return self.prediction
