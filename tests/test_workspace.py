from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from deskmate.events import read_recent_events
from deskmate.paths import find_workspace_root, runtime_paths
from deskmate.storage import MemoryStore
from deskmate.workspace import open_workspace
from tests.helpers import FakeClock


class TestWorkspace(unittest.TestCase):
    def test_open_creates_runtime_dirs_and_seeds_user(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "deskmate.toml").write_text('[user]\nid = "ada"\nname = "Ada"\n', encoding="utf-8")

            ws = open_workspace(root, clock=FakeClock())
            self.assertTrue(ws.paths.state_dir.is_dir())
            self.assertTrue(ws.paths.logs_dir.is_dir())
            self.assertEqual("", ws.config_warning)

            user = ws.current_user()
            self.assertEqual("ada", user.id)
            self.assertEqual("owner", user.role)

            project = ws.projects.create(name="Alpha")
            self.assertEqual("ada", project.owner_id)
            self.assertEqual([user], ws.members.list_for_project(project.id))
            self.assertTrue((ws.paths.state_dir / "projects.json").exists())

            types = [event["type"] for event in read_recent_events(ws.paths.events_log)]
            self.assertEqual(["member.seeded", "project.created"], types)

            reopened = open_workspace(root, clock=FakeClock())
            self.assertEqual([project], reopened.projects.list_projects())
            self.assertEqual(1, len(reopened.members.list_members()))

    def test_clean_flag_reaches_repositories(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "deskmate.toml").write_text("[projects]\nclean_dangling_references = false\n", encoding="utf-8")
            ws = open_workspace(root, store=MemoryStore())
            self.assertFalse(ws.tasks.clean_dangling_references)
            self.assertFalse(ws.members.clean_dangling_references)
            self.assertEqual([], list((ws.paths.state_dir).glob("*.json")))

    def test_find_workspace_root_walks_up(self) -> None:
        with TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            (root / "deskmate.toml").write_text("", encoding="utf-8")
            nested = root / "a" / "b"
            nested.mkdir(parents=True)

            self.assertEqual(root, find_workspace_root(nested))
            paths = runtime_paths(root)
            self.assertEqual(root / ".deskmate" / "logs" / "events.jsonl", paths.events_log)


if __name__ == "__main__":
    unittest.main()
