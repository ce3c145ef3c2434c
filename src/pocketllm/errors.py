"""Custom exception hierarchy for pocketllm errors."""


class PocketLLMError(Exception):
    """Base exception for all pocketllm errors."""


class TokenizationError(PocketLLMError):
    """Raised when a prompt cannot be turned into model input."""


class EmptyInputError(TokenizationError):
    """Raised when a prompt encodes to zero tokens."""


class InputTooLongError(TokenizationError):
    """Raised when a prompt does not fit in the context window."""

    def __init__(
        self,
        message: str,
        *,
        n_tokens: int | None = None,
        maximum_context: int | None = None,
    ) -> None:
        """Initialize with optional token counts that get appended to the message."""
        extra = " "
        if n_tokens is not None:
            extra += f"(tokens: {n_tokens}) "
        if maximum_context is not None:
            extra += f"(maximum context: {maximum_context}) "
        super().__init__(message + extra)
        self.n_tokens = n_tokens
        self.maximum_context = maximum_context


class EngineError(PocketLLMError):
    """Base exception for inference engine failures."""


class InitFailureError(EngineError):
    """Raised when the engine library or model weights cannot be loaded."""

    def __init__(
        self,
        message: str,
        *,
        model_path: str | None = None,
        library_path: str | None = None,
    ) -> None:
        extra = " "
        if model_path:
            extra += f"(model: {model_path}) "
        if library_path:
            extra += f"(library: {library_path}) "
        super().__init__(message + extra)
        self.model_path = model_path
        self.library_path = library_path


class EvaluationError(EngineError):
    """Raised when the engine fails to evaluate a token chunk."""


class GenerationError(PocketLLMError):
    """Base exception for decode loop failures."""


class ContextLimitError(GenerationError):
    """
    Raised when decoding runs into the end of the context window.

    The session has already halved its position counter and evaluated an
    end-of-sequence boundary, so generation can be retried right away.
    """

    def __init__(
        self,
        message: str,
        *,
        n_past: int | None = None,
        maximum_context: int | None = None,
    ) -> None:
        extra = " "
        if n_past is not None:
            extra += f"(position: {n_past}) "
        if maximum_context is not None:
            extra += f"(maximum context: {maximum_context}) "
        super().__init__(message + extra)
        self.n_past = n_past
        self.maximum_context = maximum_context


class RetrievalError(PocketLLMError):
    """Base exception for document store failures."""


class EmbeddingError(RetrievalError):
    """Raised when no embedding vector can be computed for a text."""

    def __init__(self, message: str, *, text: str | None = None) -> None:
        extra = " "
        if text is not None:
            extra += f"(text: {text!r}) "
        super().__init__(message + extra)
        self.text = text


class DocumentNotFoundError(RetrievalError):
    """Raised when deleting a document that is not in the store."""

    def __init__(self, message: str, *, document: str | None = None) -> None:
        extra = " "
        if document is not None:
            extra += f"(document: {document!r}) "
        super().__init__(message + extra)
        self.document = document


class ModelLoadError(PocketLLMError):
    """Raised when loading vocabulary or merge files fails."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        line: int | None = None,
    ) -> None:
        extra = " "
        if path:
            extra += f"(path: {path}) "
        if line is not None:
            extra += f"(line: {line}) "
        super().__init__(message + extra)
        self.path = path
        self.line = line


class ConfigError(PocketLLMError):
    """Raised when a configuration value is invalid."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        extra = " "
        if field:
            extra += f"(field: {field}) "
        super().__init__(message + extra)
        self.field = field


class ModelNotLoadedError(PocketLLMError):
    """Raised when asking a question before a model has been loaded."""
