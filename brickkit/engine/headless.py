"""Renderer hand-off.

In headless mode the engine does not run renderers. The first renderer reached
raises `HeadlessModeError` carrying everything needed to render it elsewhere, and
the caller turns it into a `RendererPayload`.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from brickkit.engine.trace import json_safe


class HeadlessModeError(Exception):
    """Control signal: a renderer was reached while running headless."""

    def __init__(
        self,
        brick_id: str,
        args: Mapping[str, Any],
        ctxt: Mapping[str, Any],
        logger_context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{brick_id} is a renderer")
        self.brick_id = brick_id
        self.brick_args = dict(args)
        self.ctxt = dict(ctxt)
        self.logger_context = dict(logger_context or {})


@dataclass(frozen=True)
class RendererPayload:
    brick_id: str
    args: Mapping[str, Any]
    ctxt: Mapping[str, Any]
    run_id: str | None = None
    mod_component_id: str | None = None
    key: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_error(cls, error: HeadlessModeError, *, run_id: str | None = None) -> "RendererPayload":
        return cls(
            brick_id=error.brick_id,
            args=error.brick_args,
            ctxt=error.ctxt,
            run_id=run_id,
            mod_component_id=error.logger_context.get("mod_component_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "brick_id": self.brick_id,
            "args": json_safe(self.args),
            "ctxt": json_safe(self.ctxt),
            "run_id": self.run_id,
            "mod_component_id": self.mod_component_id,
        }
