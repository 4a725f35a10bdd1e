from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from deskmate.app import BOARD_HELP, DeskmateBoardApp, _cycle, _parse_board_command, _parse_progress
from deskmate.errors import ValidationError
from deskmate.storage import MemoryStore
from deskmate.workspace import open_workspace
from tests.helpers import FakeClock


class TestBoardHelpers(unittest.TestCase):
    def test_parse_board_command(self) -> None:
        self.assertEqual(("progress", "40"), _parse_board_command("  Progress    40 "))
        self.assertEqual(("new", "Launch site"), _parse_board_command("new Launch   site"))
        self.assertEqual(("", ""), _parse_board_command("   "))

    def test_parse_progress_requires_whole_number(self) -> None:
        self.assertEqual(40, _parse_progress("40"))
        self.assertEqual(-5, _parse_progress("-5"))
        for bad in ("abc", "", "4.5"):
            with self.assertRaises(ValidationError):
                _parse_progress(bad)

    def test_cycle_wraps_and_recovers(self) -> None:
        self.assertEqual("b", _cycle(("a", "b"), "a"))
        self.assertEqual("a", _cycle(("a", "b"), "b"))
        self.assertEqual("a", _cycle(("a", "b"), "zzz"))


class TestBoardApp(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.clock = FakeClock()
        self.store = MemoryStore()
        self.ws = open_workspace(Path(self._tmp.name), store=self.store, clock=self.clock)
        self.app = DeskmateBoardApp(self.ws)
        self.addCleanup(self.app.on_unmount)

    def _activity(self) -> str:
        return "\n".join(self.app.activity_entries)

    def _new(self, name: str) -> None:
        self.app.run_board_command(f"new {name}")
        self.clock.advance(days=1)

    def test_new_project_reaches_board_through_events(self) -> None:
        self._new("Alpha")

        self.assertEqual(["Alpha"], [project.name for project in self.app.visible_projects])
        self.assertIn("created project Alpha", self._activity())

    def test_commands_need_a_selected_project(self) -> None:
        self.app.run_board_command("task Ship")
        self.assertIn("no project selected", self._activity())
        self.assertEqual([], self.ws.tasks.list_tasks())

    def test_task_done_status_and_progress(self) -> None:
        self._new("Alpha")
        project = self.app.visible_projects[0]

        self.app.run_board_command("task Ship it")
        task = self.ws.tasks.list_by_project(project.id)[0]
        self.assertEqual("Ship it", task.title)

        self.app.run_board_command(f"done {task.id}")
        self.assertTrue(self.ws.tasks.get(task.id).is_done)

        self.app.run_board_command("status ACTIVE")
        self.app.run_board_command("progress 55")
        updated = self.ws.projects.get(project.id)
        self.assertEqual("active", updated.status)
        self.assertEqual(55, updated.progress)

    def test_bad_input_is_reported_and_changes_nothing(self) -> None:
        self._new("Alpha")
        project = self.app.visible_projects[0]

        self.app.run_board_command("progress abc")
        self.assertIn("error: progress must be a whole number", self._activity())
        self.app.run_board_command("status paused")
        self.assertIn("error: invalid project status", self._activity())
        self.app.run_board_command("done task-missing")
        self.assertIn("error: task not found: task-missing", self._activity())
        self.app.run_board_command("launch")
        self.assertIn("unknown command `launch`", self._activity())

        self.assertEqual(project, self.ws.projects.get(project.id))

    def test_help_lists_commands(self) -> None:
        self.app.run_board_command("help")
        self.assertIn(BOARD_HELP, self._activity())

    def test_selection_wraps_both_ways(self) -> None:
        self._new("Alpha")
        self._new("Beta")
        self._new("Gamma")
        self.assertEqual(["Gamma", "Beta", "Alpha"], [project.name for project in self.app.visible_projects])

        self.app.action_select_next()
        self.assertEqual("Beta", self.app._selected_project().name)
        self.app.action_select_previous()
        self.app.action_select_previous()
        self.assertEqual("Alpha", self.app._selected_project().name)
        self.app.action_select_next()
        self.assertEqual("Gamma", self.app._selected_project().name)

    def test_delete_removes_selected_and_moves_selection_up(self) -> None:
        self._new("Alpha")
        self._new("Beta")
        self.app.action_select_next()
        self.assertEqual("Alpha", self.app._selected_project().name)

        self.app.run_board_command("delete")

        self.assertEqual(["Beta"], [project.name for project in self.app.visible_projects])
        self.assertEqual("Beta", self.app._selected_project().name)
        self.assertIn("deleted project", self._activity())

    def test_cycle_filter_and_sort(self) -> None:
        self._new("Alpha")
        self.app.run_board_command("status active")
        self._new("Beta")

        self.app.action_cycle_filter()
        self.assertEqual("planning", self.app.project_filter)
        self.assertEqual(["Beta"], [project.name for project in self.app.visible_projects])
        self.app.action_cycle_filter()
        self.assertEqual("active", self.app.project_filter)
        self.assertEqual(["Alpha"], [project.name for project in self.app.visible_projects])

        self.app.action_cycle_sort()
        self.assertEqual("endDate", self.app.project_sort)

    def test_refresh_survives_corrupt_collections(self) -> None:
        self._new("Alpha")
        project = self.app.visible_projects[0]

        self.store.set("project-tasks", "{not json")
        detail = self.app._detail_text(project, now=self.clock.now)
        self.assertIn("cannot read details", detail)

        self.store.set("projects", "{not json")
        self.app.action_refresh()
        self.assertEqual([], self.app.visible_projects)
        self.assertIn("projects", self.app.load_error)

    def test_unmount_stops_event_delivery(self) -> None:
        self.app.on_unmount()
        self.ws.projects.create(name="Quiet")
        self.assertEqual([], list(self.app.activity_entries))


if __name__ == "__main__":
    unittest.main()
