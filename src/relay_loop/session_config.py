from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


@dataclass(frozen=True)
class SessionConfig:
    max_turns: int = 30
    max_tokens_per_turn: int = 4096
    model: str = DEFAULT_MODEL
    temperature: float = 1.0
    timeout_seconds: int = 120
    retry_times: int = 3
    retry_sleep_ms: int = 1000
    context_window_limit: int = 200_000
    context_reserve_tokens: int = 8_192

    @property
    def context_budget(self) -> int:
        return self.context_window_limit - self.context_reserve_tokens

    def with_overrides(self, **overrides: Any) -> SessionConfig:
        """Return a rebuilt config; ``None`` values keep the current setting."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SessionConfig:
        data = data or {}
        defaults = cls()
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = data.get(f.name)
            default = getattr(defaults, f.name)
            if raw is None:
                values[f.name] = default
            else:
                values[f.name] = type(default)(raw)
        return cls(**values)
