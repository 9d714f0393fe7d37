"""Small general-purpose bricks."""

from __future__ import annotations

import html
import logging
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from brickkit.brick_types import BrickOptions, Effect, Reader, Renderer, Transformer

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class IdentityTransformer(Transformer):
    id = "brickkit/identity"
    name = "Identity"
    description = "Returns its arguments unchanged"

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        return dict(args)


class ContextTransformer(Transformer):
    id = "brickkit/context"
    name = "Context"
    description = "Returns the execution context the brick received"

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        if isinstance(options.ctxt, Mapping):
            return dict(options.ctxt)
        return options.ctxt


class LogInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(..., description="Message to log")
    level: Literal["debug", "info", "warn", "error"] = Field(default="info")
    data: Any = Field(default=None, description="Optional payload appended to the message")


class LogEffect(Effect):
    id = "brickkit/log"
    name = "Log"
    description = "Writes a message to the run log"
    input_schema = LogInput

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> None:
        level = _LEVELS[args.get("level", "info")]
        data = args.get("data")
        if data is None:
            options.logger.log(level, "%s", args["message"])
        else:
            options.logger.log(level, "%s %r", args["message"], data)


class HtmlInput(BaseModel):
    html: str = Field(..., description="HTML to display")
    title: str | None = Field(default=None)


class HtmlRenderer(Renderer):
    id = "brickkit/html"
    name = "HTML"
    description = "Renders an HTML fragment"
    input_schema = HtmlInput

    async def render(self, args: Mapping[str, Any], options: BrickOptions) -> dict[str, Any]:
        return {"html": args["html"], "title": args.get("title")}


class TextInput(BaseModel):
    text: str


class EscapeHtmlTransformer(Transformer):
    id = "brickkit/escape-html"
    name = "Escape HTML"
    input_schema = TextInput

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> dict[str, str]:
        return {"text": html.escape(args["text"])}


def element_text(element: Any) -> str | None:
    if element is None:
        return None
    get_text = getattr(element, "get_text", None)
    if callable(get_text):
        return get_text(" ", strip=True)
    text = getattr(element, "text", None)
    if isinstance(text, str):
        return text.strip()
    return str(element)


class DocumentReader(Reader):
    id = "brickkit/document"
    name = "Document"
    description = "Reads the text and tag name of the current root"

    async def read(self, root: Any) -> dict[str, Any]:
        title = getattr(root, "title", None)
        if title is not None and not isinstance(title, str):
            title = element_text(title)
        return {
            "tag": getattr(root, "name", None),
            "title": title,
            "text": element_text(root),
        }
