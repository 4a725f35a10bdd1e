from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


CONFIG_FILENAME = "deskmate.toml"
RUNTIME_DIRNAME = ".deskmate"


def find_workspace_root(start: Path | None = None) -> Path:
    """Walk up from `start` (default: cwd) looking for `deskmate.toml`.

    If nothing matches, return the start directory so a fresh checkout still
    works; state is then created next to wherever the command ran.
    """

    here = (start or Path.cwd()).resolve()
    for candidate in [here, *here.parents]:
        if (candidate / CONFIG_FILENAME).exists():
            return candidate
        if (candidate / RUNTIME_DIRNAME / "state").is_dir():
            return candidate
    return here


@dataclass(frozen=True)
class RuntimePaths:
    root: Path
    config_toml: Path
    runtime_dir: Path
    state_dir: Path
    logs_dir: Path
    events_log: Path
    app_log: Path


def runtime_paths(workspace_root: Path | None = None) -> RuntimePaths:
    root = workspace_root or find_workspace_root()
    runtime_dir = root / RUNTIME_DIRNAME
    logs_dir = runtime_dir / "logs"
    return RuntimePaths(
        root=root,
        config_toml=root / CONFIG_FILENAME,
        runtime_dir=runtime_dir,
        state_dir=runtime_dir / "state",
        logs_dir=logs_dir,
        events_log=logs_dir / "events.jsonl",
        app_log=logs_dir / "deskmate.log",
    )


def ensure_runtime_dirs(paths: RuntimePaths | None = None) -> RuntimePaths:
    paths = paths or runtime_paths()
    paths.runtime_dir.mkdir(parents=True, exist_ok=True)
    paths.state_dir.mkdir(parents=True, exist_ok=True)
    paths.logs_dir.mkdir(parents=True, exist_ok=True)
    return paths
