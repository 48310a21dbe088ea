"""Request models - outgoing request descriptors and their tracking state"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

# Fields bound to a specific connection pool; cleared before a resubmission
# when they point at the host's default transport.
AFFINITY_FIELDS = ("adapter",)


def _sorted_items(value: Any, lower_keys: bool = False) -> Any:
    if value is None:
        return ()
    if hasattr(value, "items"):
        items = [(str(k).lower() if lower_keys else k, v) for k, v in value.items()]
        return tuple(sorted(items, key=lambda kv: str(kv[0])))
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return value


@dataclass
class RequestDescriptor:
    """Everything needed to (re)issue one HTTP request"""

    method: str
    url: str
    params: Any = None
    headers: Dict[str, Any] = field(default_factory=dict)
    data: Any = None
    json: Any = None
    timeout: Any = None
    adapter: Any = None  # Pinned transport adapter (connection affinity)
    options: Dict[str, Any] = field(default_factory=dict)  # Other requests kwargs, not part of identity
    correlation_id: Optional[int] = None
    retry_count: int = 0

    def __post_init__(self):
        self.method = self.method.upper()

    def identity(self) -> Tuple[Any, ...]:
        """Normalized identity used when no correlation id is available"""
        return (
            self.url,
            self.method,
            self.data,
            self.json,
            _sorted_items(self.params),
            _sorted_items(self.headers, lower_keys=True),
        )

    def copy(self, **changes: Any) -> "RequestDescriptor":
        """Copy with fresh params/headers/options containers"""
        params = dict(self.params) if isinstance(self.params, dict) else self.params
        changes.setdefault("params", params)
        changes.setdefault("headers", dict(self.headers))
        changes.setdefault("options", dict(self.options))
        return replace(self, **changes)


@dataclass
class TrackedRequest:
    """Registry entry for one logical, possibly retried request"""

    id: int
    descriptor: RequestDescriptor
    retry_count: int = 0
    last_attempt_at: float = 0.0
    attempt_timestamps: List[float] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        """Number of physical attempts admitted so far"""
        return len(self.attempt_timestamps)
