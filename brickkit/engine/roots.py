"""Per-step root selection (``root_mode`` and ``root`` on a brick config)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from brickkit.engine.options import ReduceOptions
from brickkit.engine.render import map_args
from brickkit.errors import MultipleElementsFoundError, NoElementsFoundError
from brickkit.pipeline_types import BrickConfig


def select_single(base: Any, selector: str) -> Any:
    """Select exactly one element under ``base`` (anything with a ``select(css)`` method)."""
    if base is None:
        raise NoElementsFoundError(selector)
    matches = list(base.select(selector))
    if not matches:
        raise NoElementsFoundError(selector)
    if len(matches) > 1:
        raise MultipleElementsFoundError(selector, len(matches))
    return matches[0]


def select_brick_root(
    config: BrickConfig,
    current_root: Any,
    ctxt: Mapping[str, Any],
    options: ReduceOptions,
    platform: Any,
) -> Any:
    if config.root_mode == "element":
        reference = config.root
        if reference is not None:
            reference = map_args(
                {"root": reference}, ctxt, implicit_render=None, autoescape=options.autoescape
            )["root"]
        return platform.element_reference(reference)

    base = platform.document if config.root_mode == "document" else current_root
    if isinstance(config.root, str) and config.root.strip():
        return select_single(base, config.root.strip())
    return base
