"""Error taxonomy for the brick runtime.

Three families:

- control signals (`CancelError`, and `HeadlessModeError` in `brickkit.engine.headless`)
  that callers are expected to handle;
- business errors (`BusinessError` subclasses) caused by user configuration or input;
- step failures, wrapped exactly once in `ContextError` by the pipeline reducer.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

E = TypeVar("E", bound=BaseException)


class BusinessError(Exception):
    """An error caused by the user's configuration or data, not by a bug."""


class CancelError(BusinessError):
    """The run was cancelled by the user or the caller."""


class RuntimeNotInitializedError(RuntimeError):
    """The runtime was used before a brick registry was provided."""


class UnknownBrickError(BusinessError):
    def __init__(self, brick_id: str, *, suggestions: tuple[str, ...] = ()) -> None:
        message = f"Unknown brick id: {brick_id}"
        if suggestions:
            message += f" (did you mean: {', '.join(suggestions)})"
        super().__init__(message)
        self.brick_id = brick_id
        self.suggestions = suggestions


class PipelineConfigurationError(BusinessError):
    def __init__(self, message: str, config: Any = None) -> None:
        super().__init__(message)
        self.config = config


class BrickNotAvailableError(BusinessError):
    def __init__(self, brick_id: str, flag: str) -> None:
        super().__init__(f"Brick {brick_id} is not available (feature flag {flag} is off)")
        self.brick_id = brick_id
        self.flag = flag


class InputValidationError(BusinessError):
    """Rendered args did not match the brick's input schema."""

    def __init__(self, message: str, *, schema: Any, input: Any, errors: list[dict[str, Any]]) -> None:
        super().__init__(message)
        self.schema = schema
        self.input = input
        self.errors = errors


class InvalidPathError(BusinessError):
    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path


class InvalidTemplateError(BusinessError):
    def __init__(self, message: str, template: str) -> None:
        super().__init__(message)
        self.template = template


class NoRendererError(BusinessError):
    def __init__(self, message: str = "No renderer found in pipeline") -> None:
        super().__init__(message)


class NoElementsFoundError(BusinessError):
    def __init__(self, selector: str) -> None:
        super().__init__(f"No roots found for selector: {selector}")
        self.selector = selector


class MultipleElementsFoundError(BusinessError):
    def __init__(self, selector: str, count: int) -> None:
        super().__init__(f"Multiple roots found for selector: {selector} ({count} matches)")
        self.selector = selector
        self.count = count


class ContextError(Exception):
    """Wraps a step failure with the step position and the logger context."""

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException,
        context: Mapping[str, Any] | None = None,
        index: int | None = None,
        brick_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.__cause__ = cause
        self.context = dict(context or {})
        self.index = index
        self.brick_id = brick_id

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


def is_business_error(error: BaseException | None) -> bool:
    return isinstance(error, BusinessError)


def select_specific_error(error: BaseException | None, error_type: type[E]) -> E | None:
    """Follow the cause chain and return the first error of ``error_type``."""
    seen: set[int] = set()
    current = error
    while current is not None and id(current) not in seen:
        if isinstance(current, error_type):
            return current
        seen.add(id(current))
        current = current.__cause__
    return None


def has_specific_error_cause(error: BaseException | None, error_type: type[BaseException]) -> bool:
    return select_specific_error(error, error_type) is not None


def get_root_cause(error: BaseException) -> BaseException:
    seen: set[int] = set()
    current = error
    while current.__cause__ is not None and id(current) not in seen:
        seen.add(id(current))
        current = current.__cause__
    return current
