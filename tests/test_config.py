from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from deskmate.config import DeskmateConfig, explain_config, load_config, set_config_value


class TestDeskmateConfig(unittest.TestCase):
    def test_missing_file_uses_defaults(self) -> None:
        with TemporaryDirectory() as tmp:
            cfg, warning = load_config(Path(tmp) / "deskmate.toml")
        self.assertEqual("", warning)
        self.assertEqual(DeskmateConfig(), cfg)
        self.assertTrue(cfg.projects.clean_dangling_references)

    def test_parses_sections_and_falls_back_per_value(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "deskmate.toml"
            path.write_text(
                "\n".join(
                    [
                        "[workspace]",
                        'name = "  Team   board "',
                        "",
                        "[user]",
                        'id = "ada"',
                        'name = "Ada"',
                        "",
                        "[projects]",
                        'default_sort = "priority"',
                        'default_filter = "paused"',
                        'clean_dangling_references = "no"',
                        "",
                    ]
                ),
                encoding="utf-8",
            )
            cfg, warning = load_config(path)

        self.assertEqual("", warning)
        self.assertEqual("Team board", cfg.workspace.name)
        self.assertEqual("ada", cfg.user.id)
        self.assertEqual("Ada", cfg.user.name)
        self.assertEqual("user@example.com", cfg.user.email)
        self.assertEqual("priority", cfg.projects.default_sort)
        self.assertEqual("all", cfg.projects.default_filter)
        self.assertFalse(cfg.projects.clean_dangling_references)

    def test_parse_error_returns_defaults_with_warning(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "deskmate.toml"
            path.write_text("[user\nname = ", encoding="utf-8")
            cfg, warning = load_config(path)
        self.assertEqual(DeskmateConfig(), cfg)
        self.assertIn("parse failed", warning)

    def test_set_config_value_creates_and_updates_sections(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "deskmate.toml"
            ok, summary = set_config_value(path, "user", "name", "Ada")
            self.assertTrue(ok)
            self.assertIn("new file", summary)

            ok, _ = set_config_value(path, "projects", "clean_dangling_references", False)
            self.assertTrue(ok)
            ok, _ = set_config_value(path, "user", "name", 'Ada "the first"')
            self.assertTrue(ok)

            cfg, warning = load_config(path)
            self.assertEqual("", warning)
            self.assertEqual('Ada "the first"', cfg.user.name)
            self.assertFalse(cfg.projects.clean_dangling_references)
            self.assertEqual(1, path.read_text(encoding="utf-8").count("name ="))

            ok, summary = set_config_value(path, "user", "name", "   ")
            self.assertFalse(ok)
            self.assertIn("cannot be empty", summary)

    def test_set_config_value_rejects_unknown_keys_and_bad_values(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "deskmate.toml"
            ok, summary = set_config_value(path, "bogus", "key", "1")
            self.assertFalse(ok)
            self.assertIn("unknown config key bogus.key", summary)
            ok, summary = set_config_value(path, "user", "nickname", "ada")
            self.assertFalse(ok)
            self.assertIn("unknown config key", summary)
            self.assertFalse(path.exists())

            ok, summary = set_config_value(path, "projects", "default_sort", "colour")
            self.assertFalse(ok)
            self.assertIn("must be one of", summary)
            ok, summary = set_config_value(path, "projects", "clean_dangling_references", "maybe")
            self.assertFalse(ok)
            self.assertIn("true or false", summary)
            ok, summary = set_config_value(path, "workspace", "version", "two")
            self.assertFalse(ok)
            self.assertIn("integer", summary)
            self.assertFalse(path.exists())

            ok, _ = set_config_value(path, "workspace", "version", "2")
            self.assertTrue(ok)
            ok, _ = set_config_value(path, "projects", "default_filter", "archived")
            self.assertTrue(ok)
            cfg, _ = load_config(path)
            self.assertEqual(2, cfg.workspace.version)
            self.assertEqual("archived", cfg.projects.default_filter)
            self.assertIn("version = 2\n", path.read_text(encoding="utf-8"))

    def test_explain_config_lists_current_values(self) -> None:
        report = explain_config(DeskmateConfig(), path=Path("/tmp/deskmate.toml"))
        self.assertIn("/tmp/deskmate.toml", report)
        self.assertIn("[projects]", report)
        self.assertIn("current: startDate", report)
        self.assertIn("clean_dangling_references", report)


if __name__ == "__main__":
    unittest.main()
