"""High-level question answering over a document store and a model."""

import logging
import threading
from enum import Enum
from pathlib import Path

from .config import SamplingConfig
from .errors import ConfigError, ModelNotLoadedError
from .model import RWKV, Model, Prediction, TestingModel
from .prompt import PromptBuilder
from .retrieval import VectorStore
from .tokenizer import TokenizerConfig

log = logging.getLogger(__name__)


class ModelType(str, Enum):
    """Available model implementations."""

    RWKV = "rwkv"
    TESTING = "testing"

    @classmethod
    def get(cls, name: str) -> "ModelType":
        """Get model type by name (case-insensitive)."""
        try:
            return cls[name.upper()]
        except KeyError:
            raise ConfigError(
                f"unknown model type: {name!r} "
                f"(available: {', '.join(t.value for t in cls)})",
                field="type",
            )


class PocketLLM:
    """
    Retrieval-augmented question answering.

    Questions are enriched with similar stored documents before they reach the
    model. One instance owns one model and one store; pass the same instance
    around instead of creating several over the same engine.

    :param store: Document store, a fresh :class:`VectorStore` by default.
    :param prompt_builder: Prompt assembly, :class:`PromptBuilder` by default.
    """

    def __init__(
        self,
        store: VectorStore | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self.store = store or VectorStore()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.model: Model | None = None
        # the engine handle is not reentrant
        self._model_lock = threading.Lock()

    def load(
        self,
        model: str | Path,
        parameters: SamplingConfig | None = None,
        type: ModelType | str = ModelType.RWKV,
        tokenizer_config: TokenizerConfig | None = None,
    ) -> None:
        """
        Load (or replace) the model.

        :param model: Path to the model weights; ignored by the testing model.
        :param parameters: Generation parameters.
        :param type: Which implementation to build.
        :param tokenizer_config: Tokenizer files, next to the weights by default.
        """
        model_type = type if isinstance(type, ModelType) else ModelType.get(type)
        match model_type:
            case ModelType.RWKV:
                loaded: Model = RWKV.from_file(
                    model, parameters=parameters, tokenizer_config=tokenizer_config
                )
            case ModelType.TESTING:
                loaded = TestingModel()

        with self._model_lock:
            previous, self.model = self.model, loaded
        if previous is not None:
            previous.close()
        log.info(f"{model_type.value} model loaded")

    def add(self, document: str) -> None:
        """Embed and store a document."""
        self.store.add_document(document)

    def delete(self, document: str) -> None:
        """Delete a stored document by its exact text."""
        self.store.delete(document)

    def prompt(self, question: str, similarity_threshold: float = 0.5) -> str:
        """Build the model prompt for ``question`` from the matching documents."""
        results = self.store.search(question, similarity_threshold=similarity_threshold)
        log.debug(f"{len(results)} documents retrieved for the question")
        return self.prompt_builder.build(question, (r.text for r in results))

    def ask(self, question: str, similarity_threshold: float = 0.5) -> Prediction:
        """
        Answer ``question`` with retrieved context.

        :raises ModelNotLoadedError: If :meth:`load` has not been called.
        """
        with self._model_lock:
            model = self.model
        if model is None:
            raise ModelNotLoadedError("load a model before asking questions")
        prompt = self.prompt(question, similarity_threshold=similarity_threshold)
        with self._model_lock:
            return model.predict(prompt)

    def clean(self) -> None:
        """Remove every stored document."""
        self.store.clear()

    def close(self) -> None:
        """Release the model."""
        with self._model_lock:
            model, self.model = self.model, None
        if model is not None:
            model.close()
