"""Debug trace records emitted around each pipeline step.

Entries and exits are correlated by ``(run_id, branches, brick_instance_id)``.
Recording is best-effort: a failing trace store is logged and never breaks a run.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from brickkit.pipeline_types import BrickConfig, RunMetadata
from brickkit.platform import DEBUGGER_CAPABILITY, has_capability

logger = logging.getLogger(__name__)


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def json_safe(value: Any, *, max_depth: int = 6, max_items: int = 50) -> Any:
    if max_depth <= 0:
        return "<max_depth>"
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        items = list(value)
        out = [json_safe(item, max_depth=max_depth - 1, max_items=max_items) for item in items[:max_items]]
        if len(items) > max_items:
            out.append(f"<{len(items) - max_items} more>")
        return out
    if isinstance(value, Mapping):
        out_map: dict[str, Any] = {}
        for idx, (k, v) in enumerate(value.items()):
            if idx >= max_items:
                out_map["<more>"] = f"<{len(value) - max_items} more>"
                break
            out_map[str(k)] = json_safe(v, max_depth=max_depth - 1, max_items=max_items)
        return out_map
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return json_safe(to_dict(), max_depth=max_depth - 1, max_items=max_items)
    return repr(value)


def serialize_error(error: BaseException, *, max_depth: int = 5) -> dict[str, Any]:
    out: dict[str, Any] = {
        "name": type(error).__name__,
        "message": str(error),
        "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
    }
    if error.__cause__ is not None and max_depth > 0:
        out["cause"] = serialize_error(error.__cause__, max_depth=max_depth - 1)
    return out


@dataclass(frozen=True)
class TraceRecordMeta:
    run_id: str
    mod_component_id: str
    branches: tuple[Mapping[str, Any], ...]
    brick_instance_id: str
    brick_id: str

    @classmethod
    def from_step(cls, metadata: RunMetadata, config: BrickConfig) -> "TraceRecordMeta":
        return cls(
            run_id=metadata.run_id or "",
            mod_component_id=metadata.mod_component_ref.mod_component_id,
            branches=tuple(branch.to_dict() for branch in metadata.branches),
            brick_instance_id=config.instance_id or "",
            brick_id=config.id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mod_component_id": self.mod_component_id,
            "branches": [dict(branch) for branch in self.branches],
            "brick_instance_id": self.brick_instance_id,
            "brick_id": self.brick_id,
        }


@dataclass(frozen=True)
class TraceEntry:
    meta: TraceRecordMeta
    brick_config: Mapping[str, Any]
    template_context: Any = None
    rendered_args: Any = None
    render_error: BaseException | None = None
    timestamp: str = field(default_factory=utc_now_iso8601)

    def to_dict(self) -> dict[str, Any]:
        out = self.meta.to_dict()
        out.update(
            {
                "timestamp": self.timestamp,
                "brick_config": json_safe(self.brick_config),
                "template_context": json_safe(self.template_context),
                "rendered_args": json_safe(self.rendered_args),
            }
        )
        if self.render_error is not None:
            out["render_error"] = serialize_error(self.render_error)
        return out


@dataclass(frozen=True)
class TraceExit:
    meta: TraceRecordMeta
    output: Any = None
    error: BaseException | None = None
    output_key: str | None = None
    skipped_run: bool = False
    is_renderer: bool = False
    is_final: bool = True
    timestamp: str = field(default_factory=utc_now_iso8601)

    def to_dict(self) -> dict[str, Any]:
        out = self.meta.to_dict()
        out.update(
            {
                "timestamp": self.timestamp,
                "output_key": self.output_key,
                "skipped_run": self.skipped_run,
                "is_renderer": self.is_renderer,
                "is_final": self.is_final,
            }
        )
        if self.error is not None:
            out["error"] = serialize_error(self.error)
        else:
            out["output"] = json_safe(self.output)
        return out


class TraceRecorder:
    def __init__(self, platform: Any):
        self._platform = platform

    def is_enabled(self, metadata: RunMetadata, config: BrickConfig) -> bool:
        return bool(metadata.run_id and config.instance_id) and has_capability(
            self._platform, DEBUGGER_CAPABILITY
        )

    def enter(self, entry: TraceEntry) -> None:
        try:
            self._platform.traces.add_entry(entry.to_dict())
        except Exception:
            logger.exception("Failed to record trace entry for %s", entry.meta.brick_id)

    def exit(self, record: TraceExit) -> None:
        try:
            self._platform.traces.add_exit(record.to_dict())
        except Exception:
            logger.exception("Failed to record trace exit for %s", record.meta.brick_id)

    def clear(self, mod_component_id: str) -> None:
        if not has_capability(self._platform, DEBUGGER_CAPABILITY):
            return
        try:
            self._platform.traces.clear(mod_component_id)
        except Exception:
            logger.exception("Failed to clear traces for mod component %s", mod_component_id)
