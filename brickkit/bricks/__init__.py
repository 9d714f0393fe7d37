from __future__ import annotations

from brickkit.brick_types import Brick
from brickkit.bricks.control_flow import DisplayPanel, ForEach, IfElse, TryExcept
from brickkit.bricks.core import (
    ContextTransformer,
    DocumentReader,
    EscapeHtmlTransformer,
    HtmlRenderer,
    IdentityTransformer,
    LogEffect,
)


def builtin_bricks() -> tuple[Brick, ...]:
    return (
        IdentityTransformer(),
        ContextTransformer(),
        EscapeHtmlTransformer(),
        LogEffect(),
        HtmlRenderer(),
        DocumentReader(),
        IfElse(),
        ForEach(),
        TryExcept(),
        DisplayPanel(),
    )


__all__ = [
    "ContextTransformer",
    "DisplayPanel",
    "DocumentReader",
    "EscapeHtmlTransformer",
    "ForEach",
    "HtmlRenderer",
    "IdentityTransformer",
    "IfElse",
    "LogEffect",
    "TryExcept",
    "builtin_bricks",
]
