from __future__ import annotations

import difflib
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable

from brickkit.brick_types import BRICK_KINDS, Brick, ResolvedBrick
from brickkit.errors import RuntimeNotInitializedError, UnknownBrickError
from brickkit.pipeline_types import BrickConfig


@dataclass(frozen=True)
class BrickRegistry:
    _by_id: dict[str, Brick]

    @classmethod
    def from_bricks(cls, bricks: Iterable[Brick]) -> "BrickRegistry":
        entries: dict[str, Brick] = {}
        for brick in bricks:
            brick_id = getattr(brick, "id", None)
            if not isinstance(brick_id, str) or not brick_id.strip():
                raise TypeError(f"Brick must define a non-empty id (type={type(brick).__name__})")
            kind = getattr(brick, "kind", None)
            if kind not in BRICK_KINDS:
                raise TypeError(f"Brick {brick_id} has invalid kind: {kind!r}")
            if brick_id in entries:
                raise ValueError(f"Duplicate brick id: {brick_id}")
            entries[brick_id] = brick
        return cls(_by_id=entries)

    def available(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_id.keys()))

    def describe(self) -> tuple[dict[str, Any], ...]:
        rows: list[dict[str, Any]] = []
        for brick in sorted(self._by_id.values(), key=lambda b: b.id):
            rows.append(
                {
                    "id": brick.id,
                    "name": brick.name,
                    "kind": brick.kind,
                    "version": brick.version,
                    "description": brick.description,
                    "feature_flag": brick.feature_flag,
                }
            )
        return tuple(rows)

    def get(self, brick_id: str) -> Brick:
        if not isinstance(brick_id, str) or not brick_id.strip():
            raise ValueError("brick_id must be a non-empty string")
        brick = self._by_id.get(brick_id.strip())
        if brick is None:
            raise UnknownBrickError(brick_id, suggestions=self.suggest(brick_id))
        return brick

    def suggest(self, brick_id: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (brick_id or "").strip()
        if not key:
            return ()

        available = self.available()
        if not available:
            return ()

        suffix_to_full: dict[str, list[str]] = defaultdict(list)
        for full in available:
            suffix_to_full[full.rsplit("/", 1)[-1]].append(full)

        suffix = key.rsplit("/", 1)[-1]
        suggestions = difflib.get_close_matches(suffix, list(suffix_to_full.keys()), n=limit)
        expanded: list[str] = []
        for suggestion in suggestions:
            expanded.extend(suffix_to_full.get(suggestion, []))
        if expanded:
            return tuple(expanded[:limit])
        return tuple(difflib.get_close_matches(key, list(available), n=limit))


class BrickResolver:
    """Maps a step's brick id to the loaded brick and its kind."""

    def __init__(self, registry: BrickRegistry | None):
        self._registry = registry

    @property
    def registry(self) -> BrickRegistry:
        if self._registry is None:
            raise RuntimeNotInitializedError(
                "Brick runtime not initialized: provide a BrickRegistry before running pipelines"
            )
        return self._registry

    def resolve(self, config: BrickConfig) -> ResolvedBrick:
        brick = self.registry.get(config.id)
        return ResolvedBrick(config=config, brick=brick, kind=brick.kind)

    def try_resolve(self, config: BrickConfig) -> ResolvedBrick | None:
        try:
            return self.resolve(config)
        except (UnknownBrickError, RuntimeNotInitializedError):
            return None
