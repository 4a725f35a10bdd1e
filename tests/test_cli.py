from __future__ import annotations

import contextlib
import io
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest
from unittest.mock import patch

from deskmate import cli


def run_cli(root: Path, *argv: str) -> tuple[int, str, str]:
    out = io.StringIO()
    err = io.StringIO()
    with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        code = cli.main(["--root", str(root), *argv])
    return code, out.getvalue(), err.getvalue()


def created_id(output: str) -> str:
    return output.splitlines()[0].split(": ", 1)[1].strip()


class TestCliCommands(unittest.TestCase):
    def test_project_and_task_flow(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            code, out, _ = run_cli(root, "projects", "create", "--name", "Alpha", "--status", "active", "--end", "2026-12-01")
            self.assertEqual(0, code)
            project_id = created_id(out)

            code, out, _ = run_cli(root, "tasks", "add", project_id, "--title", "Ship it", "--priority", "high", "--due", "2026-11-20")
            self.assertEqual(0, code)
            task_id = created_id(out)

            code, out, _ = run_cli(root, "tasks", "done", task_id)
            self.assertEqual(0, code)
            self.assertIn("[done/high] Ship it 100%", out)

            code, out, _ = run_cli(root, "projects", "list", "--filter", "active")
            self.assertEqual(0, code)
            self.assertIn("Alpha", out)

            code, out, _ = run_cli(root, "stats", project_id)
            self.assertEqual(0, code)
            self.assertIn("- completion: 100%", out)

            code, out, _ = run_cli(root, "projects", "show", project_id)
            self.assertEqual(0, code)
            self.assertIn("members:", out)
            self.assertIn("Current user", out)

            code, out, _ = run_cli(root, "projects", "delete", project_id)
            self.assertEqual(0, code)
            self.assertIn("1 task(s) removed", out)

            code, out, _ = run_cli(root, "log", "--limit", "3")
            self.assertEqual(0, code)
            self.assertIn("project.deleted", out)

    def test_errors_exit_nonzero_and_are_logged(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            code, _, err = run_cli(root, "tasks", "done", "task-missing")
            self.assertEqual(1, code)
            self.assertIn("task not found: task-missing", err)

            log_text = (root / ".deskmate" / "logs" / "deskmate.log").read_text(encoding="utf-8")
            self.assertIn("[error] tasks: task not found: task-missing", log_text)

            code, _, err = run_cli(root, "tasks", "add", "prj-x", "--title", "x", "--due", "someday")
            self.assertEqual(1, code)
            self.assertIn("--due must be a date", err)

    def test_corrupt_state_is_reported(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            state = root / ".deskmate" / "state"
            state.mkdir(parents=True)
            (state / "projects.json").write_text("{broken", encoding="utf-8")

            code, _, err = run_cli(root, "projects", "list")
            self.assertEqual(1, code)
            self.assertIn("stored collection `projects` is corrupt", err)

    def test_todos_and_notes(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            code, out, _ = run_cli(root, "todos", "add", "water plants", "--priority", "low")
            self.assertEqual(0, code)
            todo_id = out.strip().rsplit(" ", 1)[1]

            self.assertEqual(0, run_cli(root, "todos", "toggle", todo_id)[0])
            code, out, _ = run_cli(root, "todos", "list", "--filter", "completed")
            self.assertIn("[x] water plants", out)
            code, out, _ = run_cli(root, "todos", "clear")
            self.assertIn("cleared 1", out)

            code, out, _ = run_cli(root, "notes", "add", "--title", "Ideas", "--content", "rewrite onboarding", "--tags", "product")
            self.assertEqual(0, code)
            code, out, _ = run_cli(root, "notes", "list", "--search", "onboarding")
            self.assertIn("Ideas #product", out)

    def test_config_set_and_explain(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            code, out, _ = run_cli(root, "config", "--set", "user.name=Ada")
            self.assertEqual(0, code)
            self.assertIn("user.name set to", out)

            code, out, _ = run_cli(root, "config", "--set", "projects.clean_dangling_references=false")
            self.assertEqual(0, code)

            code, out, _ = run_cli(root, "config")
            self.assertEqual(0, code)
            self.assertIn("current: Ada", out)
            self.assertIn("(current: false)", out)

            code, _, err = run_cli(root, "config", "--set", "nonsense")
            self.assertEqual(1, code)
            self.assertIn("SECTION.KEY=VALUE", err)

            before = (root / "deskmate.toml").read_text(encoding="utf-8")
            code, _, err = run_cli(root, "config", "--set", "bogus.key=1")
            self.assertEqual(1, code)
            self.assertIn("unknown config key bogus.key", err)
            code, _, err = run_cli(root, "config", "--set", "projects.default_sort=colour")
            self.assertEqual(1, code)
            self.assertEqual(before, (root / "deskmate.toml").read_text(encoding="utf-8"))

    def test_board_runs_app_with_workspace(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            with patch("deskmate.app.run_board", return_value=0) as board_mock:
                code, _, _ = run_cli(root, "board")

            self.assertEqual(0, code)
            board_mock.assert_called_once()
            workspace = board_mock.call_args.args[0]
            self.assertEqual(root.resolve(), workspace.paths.root)


if __name__ == "__main__":
    unittest.main()
