"""pocketllm: on-device retrieval-augmented text generation."""

from .config import SamplingConfig
from .engine import InferenceEngine, RWKVEngine
from .errors import (
    ConfigError,
    ContextLimitError,
    DocumentNotFoundError,
    EmbeddingError,
    EmptyInputError,
    EngineError,
    EvaluationError,
    GenerationError,
    InitFailureError,
    InputTooLongError,
    ModelLoadError,
    ModelNotLoadedError,
    PocketLLMError,
    RetrievalError,
    TokenizationError,
)
from .facade import ModelType, PocketLLM
from .model import RWKV, Model, Prediction, TestingModel
from .pattern import TokenPattern, list_patterns
from .prompt import PromptBuilder
from .retrieval import (
    Embedder,
    HashingEmbedder,
    SearchResult,
    VectorStore,
    cosine_similarity,
)
from .sampling import SamplingPipeline, TokenCandidate
from .session import GenerationSession, SessionState
from .tokenizer import Tokenizer, TokenizerConfig

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pocketllm")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = [
    "SamplingConfig",
    "InferenceEngine",
    "RWKVEngine",
    "PocketLLMError",
    "TokenizationError",
    "EmptyInputError",
    "InputTooLongError",
    "EngineError",
    "InitFailureError",
    "EvaluationError",
    "GenerationError",
    "ContextLimitError",
    "RetrievalError",
    "EmbeddingError",
    "DocumentNotFoundError",
    "ModelLoadError",
    "ConfigError",
    "ModelNotLoadedError",
    "ModelType",
    "PocketLLM",
    "Model",
    "RWKV",
    "TestingModel",
    "Prediction",
    "TokenPattern",
    "list_patterns",
    "PromptBuilder",
    "Embedder",
    "HashingEmbedder",
    "SearchResult",
    "VectorStore",
    "cosine_similarity",
    "SamplingPipeline",
    "TokenCandidate",
    "GenerationSession",
    "SessionState",
    "Tokenizer",
    "TokenizerConfig",
]
