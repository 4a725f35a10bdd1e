from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import tomllib

from .projects.models import PROJECT_STATUSES
from .projects.projects import PROJECT_SORT_KEYS


PROJECT_FILTERS = ("all", *PROJECT_STATUSES)


def _as_int(value, *, default: int) -> int:
    try:
        return int(value)
    except Exception:  # noqa: BLE001
        return int(default)


def _as_bool(value, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "y", "on"}:
            return True
        if lowered in {"0", "false", "no", "n", "off"}:
            return False
    return bool(default)


def _as_choice(value, *, choices: tuple[str, ...], default: str) -> str:
    if isinstance(value, str) and value.strip() in choices:
        return value.strip()
    return default


def _as_text(value, *, default: str) -> str:
    if isinstance(value, str):
        cleaned = " ".join(value.split()).strip()
        if cleaned:
            return cleaned
    return default


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str = "deskmate"
    version: int = 1


@dataclass(frozen=True)
class UserConfig:
    id: str = "current-user"
    name: str = "Current user"
    email: str = "user@example.com"


@dataclass(frozen=True)
class ProjectsConfig:
    default_sort: str = "startDate"
    default_filter: str = "all"
    clean_dangling_references: bool = True


@dataclass(frozen=True)
class DeskmateConfig:
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    user: UserConfig = field(default_factory=UserConfig)
    projects: ProjectsConfig = field(default_factory=ProjectsConfig)


def load_config(path: Path) -> tuple[DeskmateConfig, str]:
    """Load workspace config from deskmate.toml.

    Returns (config, warning). Warning is empty on success; on any parse problem
    the defaults are returned alongside it.
    """

    if not path.exists():
        return DeskmateConfig(), ""

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        return DeskmateConfig(), f"{path.name} parse failed: {exc}"

    workspace = data.get("workspace") if isinstance(data.get("workspace"), dict) else {}
    user = data.get("user") if isinstance(data.get("user"), dict) else {}
    projects = data.get("projects") if isinstance(data.get("projects"), dict) else {}

    cfg = DeskmateConfig(
        workspace=WorkspaceConfig(
            name=_as_text(workspace.get("name"), default=WorkspaceConfig.name),
            version=_as_int(workspace.get("version"), default=WorkspaceConfig.version),
        ),
        user=UserConfig(
            id=_as_text(user.get("id"), default=UserConfig.id),
            name=_as_text(user.get("name"), default=UserConfig.name),
            email=_as_text(user.get("email"), default=UserConfig.email),
        ),
        projects=ProjectsConfig(
            default_sort=_as_choice(projects.get("default_sort"), choices=PROJECT_SORT_KEYS, default=ProjectsConfig.default_sort),
            default_filter=_as_choice(
                projects.get("default_filter"), choices=PROJECT_FILTERS, default=ProjectsConfig.default_filter
            ),
            clean_dangling_references=_as_bool(
                projects.get("clean_dangling_references"), default=ProjectsConfig.clean_dangling_references
            ),
        ),
    )
    return cfg, ""


def _toml_literal(value: str | bool | int) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


CONFIG_KEYS: dict[str, tuple[str, ...]] = {
    "workspace": ("name", "version"),
    "user": ("id", "name", "email"),
    "projects": ("default_sort", "default_filter", "clean_dangling_references"),
}


def _coerce_setting(section: str, key: str, value: str | bool | int) -> tuple[str | bool | int | None, str]:
    """Check `section.key` is known and `value` fits it. Returns (value, error)."""
    if key not in CONFIG_KEYS.get(section, ()):
        known = ", ".join(f"{name}.{item}" for name, items in CONFIG_KEYS.items() for item in items)
        return None, f"unknown config key {section}.{key}; expected one of {known}"

    dotted = f"{section}.{key}"
    if (section, key) == ("workspace", "version"):
        if isinstance(value, bool):
            return None, f"{dotted} must be an integer"
        try:
            return int(value), ""
        except ValueError:
            return None, f"{dotted} must be an integer"
    if (section, key) == ("projects", "clean_dangling_references"):
        if not isinstance(value, bool):
            return None, f"{dotted} must be true or false"
        return value, ""
    if (section, key) == ("projects", "default_sort") and value not in PROJECT_SORT_KEYS:
        return None, f"{dotted} must be one of {', '.join(PROJECT_SORT_KEYS)}"
    if (section, key) == ("projects", "default_filter") and value not in PROJECT_FILTERS:
        return None, f"{dotted} must be one of {', '.join(PROJECT_FILTERS)}"
    if not isinstance(value, str):
        return None, f"{dotted} must be text"
    if not " ".join(value.split()).strip():
        return None, f"{dotted} cannot be empty"
    return value, ""


def set_config_value(path: Path, section: str, key: str, value: str | bool | int) -> tuple[bool, str]:
    """Set `section.key` in deskmate.toml, keeping the rest of the file as written."""
    checked, error = _coerce_setting(section, key, value)
    if error:
        return False, error
    value = checked

    literal = _toml_literal(value)
    line = f"{key} = {literal}"
    header = f"[{section}]"

    if not path.exists():
        try:
            path.write_text(f"{header}\n{line}\n", encoding="utf-8")
        except OSError as exc:
            return False, f"failed writing {path.name}: {exc}"
        return True, f"{section}.{key} set to {literal} (new file)"

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        return False, f"failed reading {path.name}: {exc}"

    lines = text.splitlines()
    section_start = None
    for idx, raw in enumerate(lines):
        if raw.strip() == header:
            section_start = idx
            break

    if section_start is None:
        if lines and lines[-1].strip():
            lines.append("")
        lines.append(header)
        lines.append(line)
    else:
        section_end = len(lines)
        for idx in range(section_start + 1, len(lines)):
            stripped = lines[idx].strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                section_end = idx
                break

        target_idx = None
        for idx in range(section_start + 1, section_end):
            name = lines[idx].split("=", 1)[0].strip()
            if name == key:
                target_idx = idx
                break

        if target_idx is not None:
            lines[target_idx] = line
        else:
            lines.insert(section_start + 1, line)

    try:
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as exc:
        return False, f"failed writing {path.name}: {exc}"
    return True, f"{section}.{key} set to {literal}"


def explain_config(config: DeskmateConfig, *, path: Path | None = None) -> str:
    location = str(path) if path is not None else "deskmate.toml"
    projects = config.projects
    lines = [
        f"deskmate.toml guide ({location})",
        "",
        "[workspace]",
        f"- name: label shown by the board and CLI (current: {config.workspace.name})",
        f"- version: workspace schema version (current: {config.workspace.version})",
        "",
        "[user]",
        f"- id: member id used as owner of new projects (current: {config.user.id})",
        f"- name: display name of the acting user (current: {config.user.name})",
        f"- email: email of the acting user (current: {config.user.email})",
        "",
        "[projects]",
        f"- default_sort: one of {', '.join(PROJECT_SORT_KEYS)} (current: {projects.default_sort})",
        f"- default_filter: one of {', '.join(PROJECT_FILTERS)} (current: {projects.default_filter})",
        (
            "- clean_dangling_references: strip deleted task/member ids from other records "
            f"(current: {'true' if projects.clean_dangling_references else 'false'})"
        ),
    ]
    return "\n".join(lines)
