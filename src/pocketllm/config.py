"""
Generation parameters shared by the session, the sampler and the engine.
"""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Self

from .errors import ConfigError

log = logging.getLogger(__name__)

PROMPT_PLACEHOLDER: Final[str] = "{{prompt}}"
DEFAULT_PROMPT_TEMPLATE: Final[str] = f"USER: {PROMPT_PLACEHOLDER}\n\nAssistant:"


@dataclass(frozen=True)
class SamplingConfig:
    """
    Immutable per-session configuration.

    Context and batching:
        ``maximum_context`` bounds the engine position counter, ``batch_size``
        is the prefill batch length.
    Sampling:
        ``temperature``, ``top_k`` (``<= 0`` keeps the whole vocabulary),
        ``top_p``, ``tfs_z`` and ``typical_p`` (``1.0`` disables either),
        ``repeat_penalty`` over the last ``repeat_last_n`` tokens (``< 0``
        means the whole context), ``frequency_penalty``, ``presence_penalty``
        and ``penalize_newline``.
    Termination:
        ``stop`` strings end generation when a decoded piece matches one.
    Engine and prompt:
        ``seed`` (``None`` draws a fresh one), ``n_threads`` and
        ``prompt_template`` whose ``{{prompt}}`` placeholder receives the
        raw question.
    """

    maximum_context: int = 4096
    batch_size: int = 512
    temperature: float = 0.5
    top_k: int = 40
    top_p: float = 0.95
    tfs_z: float = 1.0
    typical_p: float = 1.0
    repeat_penalty: float = 1.1
    repeat_last_n: int = 64
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    penalize_newline: bool = False
    stop: tuple[str, ...] = field(default=("USER", "User"))
    seed: int | None = None
    n_threads: int = 12
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE

    def __post_init__(self) -> None:
        # accept one stop string or any iterable of them, store as tuple
        stop = (self.stop,) if isinstance(self.stop, str) else tuple(self.stop)
        object.__setattr__(self, "stop", stop)

        if self.maximum_context <= 4:
            raise ConfigError(
                "maximum_context must be greater than 4", field="maximum_context"
            )
        if self.batch_size <= 0:
            raise ConfigError("batch_size must be positive", field="batch_size")
        if self.n_threads <= 0:
            raise ConfigError("n_threads must be positive", field="n_threads")
        if self.repeat_penalty <= 0:
            raise ConfigError(
                "repeat_penalty must be positive", field="repeat_penalty"
            )
        for name in ("top_p", "tfs_z", "typical_p"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1]", field=name)
        if any(not s for s in self.stop):
            raise ConfigError("stop strings must not be empty", field="stop")
        if PROMPT_PLACEHOLDER not in self.prompt_template:
            raise ConfigError(
                f"prompt_template must contain {PROMPT_PLACEHOLDER}",
                field="prompt_template",
            )

    def replace(self, **changes: Any) -> Self:
        """Return a copy with the given fields changed (validated again)."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["stop"] = list(self.stop)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Build a config from a plain mapping, defaults filling missing keys.

        :raises ConfigError: If the mapping holds unknown keys or bad values.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"invalid config values: {e}") from e

    def save(self, path: str | Path) -> None:
        """Write the config as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="\n") as f:
            json.dump(self.to_dict(), f, indent=2)
        log.info(f"config saved to {path}")

    @classmethod
    def load(cls, path: str | Path) -> Self:
        """
        Read a config written by :meth:`save`.

        :raises ConfigError: If the file is missing, not JSON, or invalid.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"config file does not exist: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"config is not valid JSON: {e.msg}") from e
        if not isinstance(data, dict):
            raise ConfigError("config must be a JSON object")
        log.info(f"config loaded from {path}")
        return cls.from_dict(data)

    @property
    def penalty_window(self) -> int:
        """Upper bound of the repetition window length."""
        if self.repeat_last_n < 0:
            return self.maximum_context
        return min(self.repeat_last_n, self.maximum_context)
