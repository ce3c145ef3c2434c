"""
Inference engine adapters.

The session only needs an opaque "evaluate tokens -> logits, state" call.
:class:`InferenceEngine` describes that capability and :class:`RWKVEngine`
provides it by binding the rwkv.cpp shared library through ``ctypes``.
"""

import ctypes
import ctypes.util
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import Final

from typing_extensions import override

import numpy as np

from .errors import EvaluationError, InitFailureError
from .types import Token

log = logging.getLogger(__name__)

LIBRARY_ENV_VAR: Final[str] = "POCKETLLM_RWKV_LIBRARY"
LIBRARY_NAME: Final[str] = "rwkv"

_F32_P = ctypes.POINTER(ctypes.c_float)
_U32_P = ctypes.POINTER(ctypes.c_uint32)


def _check_buffer(name: str, buf: np.ndarray, size: int) -> None:
    """Raise unless ``buf`` is a contiguous float32 vector of ``size`` entries."""
    if buf.dtype != np.float32 or buf.shape != (size,) or not buf.flags.c_contiguous:
        raise EvaluationError(
            f"{name} buffer must be a contiguous float32 vector of {size} entries, "
            f"got dtype={buf.dtype} shape={buf.shape}"
        )


class InferenceEngine(ABC):
    """
    Opaque model evaluation capability.

    Sizes are fixed for the lifetime of the engine. Implementations are not
    reentrant: at most one :meth:`evaluate` may run at a time per engine.
    """

    @property
    @abstractmethod
    def vocab_size(self) -> int:
        """Number of logits produced per evaluation."""
        ...

    @property
    @abstractmethod
    def state_size(self) -> int:
        """Number of floats in the recurrent state."""
        ...

    @abstractmethod
    def initial_state(self, out: np.ndarray | None = None) -> np.ndarray:
        """Return (or write into ``out``) the state of an empty context."""
        ...

    @abstractmethod
    def evaluate(
        self,
        tokens: Sequence[Token],
        state_in: np.ndarray,
        state_out: np.ndarray | None = None,
        logits_out: np.ndarray | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Feed ``tokens`` through the model starting from ``state_in``.

        Output buffers are allocated when not given. ``state_out`` may be the
        same array as ``state_in``.

        :return: ``(logits, state_out)`` after the last token.
        :raises EvaluationError: If the engine fails or a buffer has the wrong size.
        """
        ...

    def close(self) -> None:
        """Release engine resources."""

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def resolve_library() -> str:
    """
    Locate the rwkv.cpp shared library.

    Resolution order:
      1) $POCKETLLM_RWKV_LIBRARY (path to the .so / .dylib / .dll)
      2) the system loader search path (``ctypes.util.find_library``)

    :raises InitFailureError: If neither yields a library.
    """
    env_lib = os.getenv(LIBRARY_ENV_VAR)
    if env_lib:
        if Path(env_lib).is_file():
            return env_lib
        raise InitFailureError(
            f"${LIBRARY_ENV_VAR} does not point to a file", library_path=env_lib
        )

    found = ctypes.util.find_library(LIBRARY_NAME)
    if found:
        return found

    raise InitFailureError(
        f"could not locate the rwkv.cpp library; build rwkv.cpp and set ${LIBRARY_ENV_VAR}"
    )


def _bind(lib: ctypes.CDLL) -> None:
    """Declare the C signatures used by :class:`RWKVEngine`."""
    lib.rwkv_init_from_file.argtypes = [ctypes.c_char_p, ctypes.c_uint32]
    lib.rwkv_init_from_file.restype = ctypes.c_void_p

    lib.rwkv_get_logits_len.argtypes = [ctypes.c_void_p]
    lib.rwkv_get_logits_len.restype = ctypes.c_size_t

    lib.rwkv_get_state_len.argtypes = [ctypes.c_void_p]
    lib.rwkv_get_state_len.restype = ctypes.c_size_t

    lib.rwkv_init_state.argtypes = [ctypes.c_void_p, _F32_P]
    lib.rwkv_init_state.restype = None

    lib.rwkv_eval_sequence.argtypes = [
        ctypes.c_void_p,
        _U32_P,
        ctypes.c_size_t,
        _F32_P,
        _F32_P,
        _F32_P,
    ]
    lib.rwkv_eval_sequence.restype = ctypes.c_bool

    lib.rwkv_free.argtypes = [ctypes.c_void_p]
    lib.rwkv_free.restype = None


class RWKVEngine(InferenceEngine):
    """
    RWKV model evaluated by rwkv.cpp.

    :param model_path: Path to the ggml model file.
    :param n_threads: CPU threads used by the library.
    :param library_path: Shared library to load; resolved with
        :func:`resolve_library` when omitted.
    :raises InitFailureError: If the library or the model cannot be loaded.
    """

    def __init__(
        self,
        model_path: str | Path,
        n_threads: int = 12,
        library_path: str | None = None,
    ) -> None:
        self.model_path = str(model_path)
        lib_path = library_path or resolve_library()

        try:
            self._lib = ctypes.CDLL(lib_path)
            _bind(self._lib)
        except (OSError, AttributeError) as e:
            raise InitFailureError(
                f"failed to load rwkv.cpp library: {e}", library_path=lib_path
            ) from e

        if not Path(self.model_path).is_file():
            raise InitFailureError("model file does not exist", model_path=self.model_path)

        log.info(f"loading RWKV model from {self.model_path} ({n_threads} threads)")
        ctx = self._lib.rwkv_init_from_file(self.model_path.encode("utf-8"), n_threads)
        if not ctx:
            raise InitFailureError(
                "failed to initialize context", model_path=self.model_path
            )
        self._ctx: int | None = ctx
        self._lock = threading.Lock()

        self._vocab_size = int(self._lib.rwkv_get_logits_len(ctx))
        self._state_size = int(self._lib.rwkv_get_state_len(ctx))
        log.info(
            f"model loaded: vocab size {self._vocab_size}, state size {self._state_size}"
        )

    @property
    @override
    def vocab_size(self) -> int:
        return self._vocab_size

    @property
    @override
    def state_size(self) -> int:
        return self._state_size

    def _context(self) -> int:
        if self._ctx is None:
            raise EvaluationError("engine is closed")
        return self._ctx

    @override
    def initial_state(self, out: np.ndarray | None = None) -> np.ndarray:
        if out is None:
            out = np.empty(self._state_size, dtype=np.float32)
        _check_buffer("state", out, self._state_size)
        with self._lock:
            self._lib.rwkv_init_state(self._context(), out.ctypes.data_as(_F32_P))
        return out

    @override
    def evaluate(
        self,
        tokens: Sequence[Token],
        state_in: np.ndarray,
        state_out: np.ndarray | None = None,
        logits_out: np.ndarray | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        if not tokens:
            raise EvaluationError("cannot evaluate an empty token sequence")
        if state_out is None:
            state_out = np.empty(self._state_size, dtype=np.float32)
        if logits_out is None:
            logits_out = np.empty(self._vocab_size, dtype=np.float32)
        _check_buffer("state_in", state_in, self._state_size)
        _check_buffer("state_out", state_out, self._state_size)
        _check_buffer("logits", logits_out, self._vocab_size)

        seq = np.asarray(tokens, dtype=np.uint32)
        with self._lock:
            ok = self._lib.rwkv_eval_sequence(
                self._context(),
                seq.ctypes.data_as(_U32_P),
                len(seq),
                state_in.ctypes.data_as(_F32_P),
                state_out.ctypes.data_as(_F32_P),
                logits_out.ctypes.data_as(_F32_P),
            )
        if not ok:
            raise EvaluationError(f"rwkv_eval_sequence failed for {len(seq)} tokens")
        return logits_out, state_out

    @override
    def close(self) -> None:
        if self._ctx is not None:
            with self._lock:
                self._lib.rwkv_free(self._ctx)
                self._ctx = None
            log.info("RWKV context released")

    def __del__(self) -> None:
        # __init__ may have failed before the context existed
        if getattr(self, "_ctx", None) is not None:
            self.close()
