"""Change events published by the repositories.

Every successful write produces one `ChangeEvent` (`project.created`,
`task.completed`, ...). The bus appends it to the workspace audit log, a JSONL
file under `.deskmate/logs/`, and then hands it to subscribers such as the
terminal board. A subscriber that fails never undoes or masks the write that
triggered it: the failure is logged as a `bus.handler_failed` entry instead.
"""

from __future__ import annotations

from collections.abc import Callable
import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import secrets
import time
from pathlib import Path
from typing import Any


def _stamp() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()


def _event_id() -> str:
    return f"evt-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class ChangeEvent:
    type: str
    message: str
    source: str
    severity: str = "info"
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_event_id)
    ts: str = field(default_factory=_stamp)

    @property
    def kind(self) -> str:
        """Record kind the event is about: `project`, `task`, `todo`, ..."""
        return self.type.partition(".")[0]

    @property
    def action(self) -> str:
        return self.type.partition(".")[2]

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "type": self.type,
            "severity": self.severity,
            "source": self.source,
            "message": self.message,
            "metadata": dict(self.metadata),
        }


ChangeHandler = Callable[[ChangeEvent], Any]


class AuditLog:
    """Append-only JSONL file of change events, one object per line."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.lines_written = 0

    def append(self, event: ChangeEvent) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(event.to_record(), sort_keys=True, ensure_ascii=True) + "\n")
        self.lines_written += 1

    def read_recent(self, limit: int = 20) -> list[dict[str, Any]]:
        if limit <= 0 or not self.path.exists():
            return []
        entries: list[dict[str, Any]] = []
        for raw in self.path.read_text(encoding="utf-8").splitlines():
            raw = raw.strip()
            if not raw:
                continue
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                entries.append(payload)
        return entries[-limit:]


class EventBus:
    def __init__(self, log_path: Path | None = None) -> None:
        self.audit = AuditLog(log_path) if log_path is not None else None
        self.handler_failures = 0
        self._handlers: list[ChangeHandler] = []

    @property
    def events_written(self) -> int:
        return self.audit.lines_written if self.audit is not None else 0

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: ChangeEvent) -> ChangeEvent:
        if self.audit is not None:
            self.audit.append(event)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001
                self._record_failure(handler, event, exc)
        return event

    def _record_failure(self, handler: ChangeHandler, event: ChangeEvent, exc: Exception) -> None:
        # Failures go to the audit log only; re-publishing could loop through the same handler.
        self.handler_failures += 1
        name = getattr(handler, "__qualname__", None) or type(handler).__name__
        if self.audit is None:
            return
        self.audit.append(
            ChangeEvent(
                type="bus.handler_failed",
                message=f"{name} failed on {event.type}: {exc}",
                source="events",
                severity="error",
                metadata={"event_id": event.id, "handler": name, "error": type(exc).__name__},
            )
        )


def emit(bus: EventBus | None, event_type: str, message: str, *, source: str, **metadata: Any) -> ChangeEvent | None:
    """Publish when a bus is wired in; repositories run fine without one."""
    if bus is None:
        return None
    return bus.publish(ChangeEvent(type=event_type, message=message, source=source, metadata=metadata))


def read_recent_events(path: Path, *, limit: int = 20) -> list[dict[str, Any]]:
    return AuditLog(path).read_recent(limit)
