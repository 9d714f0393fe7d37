"""Capabilities the runtime consumes from its host.

The host exposes them as attributes of a platform object and advertises the
optional ones through ``capabilities``. `LocalPlatform` is an in-process
implementation used by the CLI and the tests.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from brickkit.errors import BusinessError

logger = logging.getLogger(__name__)

DEBUGGER_CAPABILITY = "debugger"
TOASTS_CAPABILITY = "toasts"
ALERTS_CAPABILITY = "alerts"
STATE_CAPABILITY = "state"


class TraceStore(Protocol):
    def add_entry(self, entry: Mapping[str, Any]) -> None: ...

    def add_exit(self, exit: Mapping[str, Any]) -> None: ...

    def clear(self, mod_component_id: str) -> None: ...


class RequestRun(Protocol):
    async def in_opener(self, request: Mapping[str, Any]) -> Any: ...

    async def in_target(self, request: Mapping[str, Any]) -> Any: ...

    async def in_top(self, request: Mapping[str, Any]) -> Any: ...

    async def in_other_tabs(self, request: Mapping[str, Any]) -> list[Any]: ...

    async def in_all_frames(self, request: Mapping[str, Any]) -> list[Any]: ...


class Toasts(Protocol):
    def show_notification(self, *, message: str, type: str) -> str: ...

    def hide_notification(self, notification_id: str) -> None: ...


class Alerts(Protocol):
    def send_deployment_alert(self, *, deployment_id: str, data: Mapping[str, Any]) -> None: ...


class ModVariables(Protocol):
    def get(self, mod_id: str | None) -> dict[str, Any]: ...


class Platform(Protocol):
    capabilities: frozenset[str]
    traces: TraceStore
    request_run: RequestRun
    toasts: Toasts
    alerts: Alerts
    mod_variables: ModVariables
    document: Any

    async def flag_on(self, flag: str) -> bool: ...

    def element_reference(self, reference: Any) -> Any: ...


@dataclass
class InMemoryTraceStore:
    entries: list[dict[str, Any]] = field(default_factory=list)
    exits: list[dict[str, Any]] = field(default_factory=list)

    def add_entry(self, entry: Mapping[str, Any]) -> None:
        self.entries.append(dict(entry))

    def add_exit(self, exit: Mapping[str, Any]) -> None:
        self.exits.append(dict(exit))

    def clear(self, mod_component_id: str) -> None:
        self.entries = [e for e in self.entries if e.get("mod_component_id") != mod_component_id]
        self.exits = [e for e in self.exits if e.get("mod_component_id") != mod_component_id]


class UnsupportedRequestRun:
    """Cross-context RPC for hosts with a single execution context."""

    async def _unsupported(self, target: str) -> Any:
        raise BusinessError(f"Running bricks in {target} is not supported by this platform")

    async def in_opener(self, request: Mapping[str, Any]) -> Any:
        return await self._unsupported("opener")

    async def in_target(self, request: Mapping[str, Any]) -> Any:
        return await self._unsupported("target")

    async def in_top(self, request: Mapping[str, Any]) -> Any:
        return await self._unsupported("top")

    async def in_other_tabs(self, request: Mapping[str, Any]) -> list[Any]:
        return await self._unsupported("broadcast")

    async def in_all_frames(self, request: Mapping[str, Any]) -> list[Any]:
        return await self._unsupported("all_frames")


@dataclass
class LoggingToasts:
    shown: list[dict[str, Any]] = field(default_factory=list)
    hidden: list[str] = field(default_factory=list)
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False)

    def show_notification(self, *, message: str, type: str) -> str:
        notification_id = f"notification-{next(self._ids)}"
        self.shown.append({"id": notification_id, "message": message, "type": type})
        logger.info("Notification [%s]: %s", type, message)
        return notification_id

    def hide_notification(self, notification_id: str) -> None:
        self.hidden.append(notification_id)


@dataclass
class RecordingAlerts:
    sent: list[dict[str, Any]] = field(default_factory=list)

    def send_deployment_alert(self, *, deployment_id: str, data: Mapping[str, Any]) -> None:
        self.sent.append({"deployment_id": deployment_id, "data": dict(data)})
        logger.warning("Deployment alert for %s: %s", deployment_id, data.get("id"))


@dataclass
class InMemoryModVariables:
    values: dict[str | None, dict[str, Any]] = field(default_factory=dict)

    def get(self, mod_id: str | None) -> dict[str, Any]:
        return dict(self.values.get(mod_id, {}))

    def set(self, mod_id: str | None, **updates: Any) -> None:
        self.values.setdefault(mod_id, {}).update(updates)


@dataclass
class LocalPlatform:
    capabilities: frozenset[str] = frozenset({DEBUGGER_CAPABILITY, TOASTS_CAPABILITY, ALERTS_CAPABILITY, STATE_CAPABILITY})
    traces: Any = field(default_factory=InMemoryTraceStore)
    request_run: Any = field(default_factory=UnsupportedRequestRun)
    toasts: Any = field(default_factory=LoggingToasts)
    alerts: Any = field(default_factory=RecordingAlerts)
    mod_variables: Any = field(default_factory=InMemoryModVariables)
    document: Any = None
    flags: Mapping[str, bool] = field(default_factory=dict)
    flag_lookup: Callable[[str], Awaitable[bool]] | None = None
    references: Mapping[Any, Any] = field(default_factory=dict)

    async def flag_on(self, flag: str) -> bool:
        if self.flag_lookup is not None:
            return await self.flag_lookup(flag)
        return bool(self.flags.get(flag, True))

    def element_reference(self, reference: Any) -> Any:
        try:
            return self.references[reference]
        except KeyError:
            raise BusinessError(f"Element reference not found: {reference}") from None


def has_capability(platform: Any, capability: str) -> bool:
    capabilities = getattr(platform, "capabilities", None) or ()
    return capability in capabilities
