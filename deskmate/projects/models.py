from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
import math
import re
import secrets
import time
from typing import Any

from ..errors import ValidationError


PROJECT_STATUSES = ("planning", "active", "completed", "archived")
TASK_STATUSES = ("todo", "in-progress", "review", "done")
PRIORITIES = ("low", "medium", "high", "urgent")
MEMBER_ROLES = ("owner", "admin", "member", "viewer")
MILESTONE_STATUSES = ("pending", "completed")

PRIORITY_RANK = {"urgent": 4, "high": 3, "medium": 2, "low": 1}
TASK_STATUS_ORDER = {status: idx for idx, status in enumerate(TASK_STATUSES, start=1)}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_iso(value: datetime) -> str:
    """Millisecond UTC timestamp with a `Z` suffix, the same shape browsers write."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    stamp = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def touch_timestamp(now: datetime, created_at: str) -> str:
    """`updatedAt` for an edit made at `now`; never earlier than `created_at`."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    created = parse_timestamp(created_at)
    if created is not None and now < created:
        return created_at
    return to_iso(now)


def new_id(prefix: str) -> str:
    stamp = int(time.time() * 1000)
    return f"{prefix}-{stamp}-{secrets.token_hex(4)}"


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(frozen=True)
class Milestone:
    id: str
    project_id: str
    title: str
    description: str
    due_date: str
    status: str = "pending"
    completed_at: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    description: str
    status: str
    priority: str
    start_date: str
    end_date: str | None
    progress: int
    owner_id: str
    member_ids: list[str]
    tags: list[str]
    milestones: list[Milestone]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Task:
    id: str
    project_id: str
    title: str
    description: str
    status: str
    priority: str
    progress: int
    created_at: str
    updated_at: str
    assignee_id: str | None = None
    due_date: str | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    tags: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    completed_at: str | None = None

    @property
    def is_done(self) -> bool:
        return self.status == "done"


@dataclass(frozen=True)
class Member:
    id: str
    name: str
    email: str
    role: str
    joined_at: str
    avatar: str | None = None


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _choice(value: Any, choices: tuple[str, ...], default: str) -> str:
    text = _text(value).strip().lower()
    return text if text in choices else default


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def clamp_progress(value: Any) -> int:
    """Lenient read of a stored progress value; unreadable entries become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number:  # NaN
        return 0
    if not math.isfinite(number):
        raise ValueError(f"progress {value!r} is not a finite number")
    return max(0, min(100, int(number + 0.5)))


def require_progress(value: Any, *, kind: str) -> int:
    """Progress given to create/update: a real number, clamped to 0..100 and rounded."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{kind} progress must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ValidationError(f"{kind} progress must be finite, got {value!r}")
    return max(0, min(100, int(value + 0.5)))


def _hours(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        try:
            number = float(str(value))
        except ValueError:
            return None
    if not math.isfinite(number):
        raise ValueError(f"hours {value!r} is not a finite number")
    return number


def _require_id(record: dict[str, Any], kind: str) -> str:
    record_id = _text(record.get("id")).strip()
    if not record_id:
        raise ValueError(f"{kind} record has no id")
    return record_id


def milestone_from_record(record: dict[str, Any], *, project_id: str = "") -> Milestone:
    return Milestone(
        id=_require_id(record, "milestone"),
        project_id=_text(record.get("projectId"), project_id),
        title=_text(record.get("title")),
        description=_text(record.get("description")),
        due_date=_text(record.get("dueDate")),
        status=_choice(record.get("status"), MILESTONE_STATUSES, "pending"),
        completed_at=_optional_text(record.get("completedAt")),
    )


def project_from_record(record: dict[str, Any]) -> Project:
    project_id = _require_id(record, "project")
    created_at = _text(record.get("createdAt"))
    raw_milestones = record.get("milestones")
    milestones: list[Milestone] = []
    if isinstance(raw_milestones, list):
        for item in raw_milestones:
            if not isinstance(item, dict):
                raise ValueError(f"project {project_id} has a malformed milestone")
            milestones.append(milestone_from_record(item, project_id=project_id))
    return Project(
        id=project_id,
        name=_text(record.get("name")),
        description=_text(record.get("description")),
        status=_choice(record.get("status"), PROJECT_STATUSES, "planning"),
        priority=_choice(record.get("priority"), PRIORITIES, "medium"),
        start_date=_text(record.get("startDate"), created_at),
        end_date=_optional_text(record.get("endDate")),
        progress=clamp_progress(record.get("progress")),
        owner_id=_text(record.get("ownerId")),
        member_ids=_str_list(record.get("memberIds")),
        tags=_str_list(record.get("tags")),
        milestones=milestones,
        created_at=created_at,
        updated_at=_text(record.get("updatedAt"), created_at),
    )


def task_from_record(record: dict[str, Any]) -> Task:
    created_at = _text(record.get("createdAt"))
    return Task(
        id=_require_id(record, "task"),
        project_id=_text(record.get("projectId")),
        title=_text(record.get("title")),
        description=_text(record.get("description")),
        status=_choice(record.get("status"), TASK_STATUSES, "todo"),
        priority=_choice(record.get("priority"), PRIORITIES, "medium"),
        progress=clamp_progress(record.get("progress")),
        created_at=created_at,
        updated_at=_text(record.get("updatedAt"), created_at),
        assignee_id=_optional_text(record.get("assigneeId")),
        due_date=_optional_text(record.get("dueDate")),
        estimated_hours=_hours(record.get("estimatedHours")),
        actual_hours=_hours(record.get("actualHours")),
        tags=_str_list(record.get("tags")),
        dependencies=_str_list(record.get("dependencies")),
        completed_at=_optional_text(record.get("completedAt")),
    )


def member_from_record(record: dict[str, Any]) -> Member:
    return Member(
        id=_require_id(record, "member"),
        name=_text(record.get("name")),
        email=_text(record.get("email")),
        role=_choice(record.get("role"), MEMBER_ROLES, "member"),
        joined_at=_text(record.get("joinedAt")),
        avatar=_optional_text(record.get("avatar")),
    )


def to_record(item: Any) -> dict[str, Any]:
    """Serialize with camelCase keys; unset optional fields are left out."""
    record: dict[str, Any] = {}
    for dc_field in fields(item):
        value = getattr(item, dc_field.name)
        if value is None:
            continue
        if isinstance(value, list):
            value = [to_record(entry) if isinstance(entry, Milestone) else entry for entry in value]
        record[camel_case(dc_field.name)] = value
    return record


def merge_changes(current, changes: dict[str, Any], *, kind: str, locked: tuple[str, ...] = ("id", "created_at")):
    """Apply a partial update given as snake_case or camelCase field names."""
    normalized = {snake_case(name): value for name, value in changes.items()}
    allowed = {dc_field.name for dc_field in fields(current)}
    unknown = sorted(set(normalized) - allowed)
    if unknown:
        raise ValidationError(f"unknown {kind} field(s): {', '.join(unknown)}")
    frozen = sorted(set(normalized) & set(locked))
    if frozen:
        raise ValidationError(f"{kind} field(s) cannot be changed: {', '.join(frozen)}")
    return replace(current, **normalized)


def require_text(value: str, *, kind: str, field_name: str) -> str:
    cleaned = " ".join((value or "").split())
    if not cleaned:
        raise ValidationError(f"{kind} {field_name} is empty")
    return cleaned


def require_choice(value: str, choices: tuple[str, ...], *, kind: str, field_name: str) -> str:
    if value not in choices:
        raise ValidationError(f"invalid {kind} {field_name} {value!r}; expected one of {', '.join(choices)}")
    return value
