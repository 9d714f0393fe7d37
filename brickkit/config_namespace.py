"""Strict reader for nested config mappings.

Every getter marks its key as consumed; `assert_consumed` then rejects whatever
is left, so a typo like ``runtime.api_verison`` fails loudly instead of being
ignored. Values actually used are kept for `effective_values`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

_REQUIRED = object()


@dataclass
class ConfigNamespace:
    data: Mapping[str, Any]
    path: str = ""
    _consumed: set[str] = field(default_factory=set, init=False, repr=False)
    _children: dict[str, ConfigNamespace] = field(default_factory=dict, init=False, repr=False)
    _effective: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def qualified(self, key: str) -> str:
        return f"{self.path}.{key}" if self.path else key

    def consumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._consumed))

    def unconsumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(str(key) for key in self.data if key not in self._consumed))

    def assert_consumed(self) -> None:
        leftover = self.unconsumed_keys()
        if leftover:
            raise ValueError(
                f"Unknown config keys under {self.path or '<root>'}: {', '.join(leftover)} "
                f"(known: {', '.join(self.consumed_keys()) or '<none>'})"
            )
        for child in self._children.values():
            child.assert_consumed()

    def effective_values(self) -> dict[str, Any]:
        values = dict(self._effective)
        for key, child in self._children.items():
            nested = child.effective_values()
            if nested:
                values[key] = nested
        return values

    def namespace(self, key: str, *, required: bool = False) -> ConfigNamespace:
        if key in self._children:
            return self._children[key]

        self._consumed.add(key)
        raw = self.data.get(key)
        if raw is None:
            if required:
                raise ValueError(f"Missing required config section: {self.qualified(key)}")
            raw = {}
        if not isinstance(raw, Mapping):
            raise TypeError(f"{self.qualified(key)} must be a mapping (type={type(raw).__name__})")

        child = ConfigNamespace(dict(raw), path=self.qualified(key))
        self._children[key] = child
        return child

    def _take(self, key: str, default: Any) -> Any:
        if key in self._children:
            raise ValueError(f"{self.qualified(key)} is a config section, not a value")
        self._consumed.add(key)
        if key in self.data:
            return self.data[key]
        if default is _REQUIRED:
            raise ValueError(f"Missing required config key: {self.qualified(key)}")
        return default

    def _record(self, key: str, value: Any) -> Any:
        self._effective[key] = value
        return value

    def get_bool(self, key: str, *, default: Any = _REQUIRED) -> bool:
        value = self._take(key, default)
        if not isinstance(value, bool):
            raise TypeError(f"{self.qualified(key)} must be a boolean (type={type(value).__name__})")
        return self._record(key, value)

    def get_optional_bool(self, key: str) -> bool | None:
        """Boolean that may be absent or null; None means "use the built-in default"."""
        value = self._take(key, None)
        if value is not None and not isinstance(value, bool):
            raise TypeError(
                f"{self.qualified(key)} must be a boolean or null (type={type(value).__name__})"
            )
        return self._record(key, value)

    def get_str(
        self,
        key: str,
        *,
        default: Any = _REQUIRED,
        choices: Iterable[str] | None = None,
    ) -> str | None:
        value = self._take(key, default)
        if value is None:
            return self._record(key, None)
        if not isinstance(value, str):
            raise TypeError(f"{self.qualified(key)} must be a string (type={type(value).__name__})")

        value = value.strip()
        if not value:
            raise ValueError(f"{self.qualified(key)} cannot be empty")
        if choices is not None and value not in set(choices):
            raise ValueError(
                f"{self.qualified(key)} must be one of: {', '.join(sorted(choices))} (got {value!r})"
            )
        return self._record(key, value)
