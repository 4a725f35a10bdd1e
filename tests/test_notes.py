from __future__ import annotations

import unittest

from deskmate.errors import NotFoundError, ValidationError
from deskmate.notes import NoteRepository, search_notes
from deskmate.projects.models import to_iso
from deskmate.storage import MemoryStore
from tests.helpers import FakeClock


class TestNoteRepository(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.notes = NoteRepository(MemoryStore(), clock=self.clock)

    def test_new_notes_go_first(self) -> None:
        first = self.notes.create(title="First", content="one")
        second = self.notes.create(title="Second")

        self.assertTrue(first.id.startswith("note-"))
        self.assertEqual([second.id, first.id], [note.id for note in self.notes.list_notes()])

    def test_update_and_delete(self) -> None:
        note = self.notes.create(title="Draft", content="hello", tags=["ideas"])
        self.clock.advance(minutes=10)

        updated = self.notes.update(note.id, content="hello world", tags=["ideas", "blog"])
        self.assertEqual("hello world", updated.content)
        self.assertEqual(["ideas", "blog"], updated.tags)
        self.assertEqual(note.created_at, updated.created_at)
        self.assertEqual(to_iso(self.clock.now), updated.updated_at)
        self.assertEqual(updated, self.notes.get(note.id))

        with self.assertRaises(ValidationError):
            self.notes.update(note.id, tags="blog")
        with self.assertRaises(ValidationError):
            self.notes.update(note.id, author="me")

        self.notes.delete(note.id)
        with self.assertRaises(NotFoundError):
            self.notes.get(note.id)
        with self.assertRaises(NotFoundError):
            self.notes.delete(note.id)
        with self.assertRaises(NotFoundError):
            self.notes.update(note.id, title="x")

    def test_search_matches_title_content_and_tags(self) -> None:
        recipe = self.notes.create(title="Pancakes", content="flour, eggs")
        meeting = self.notes.create(title="Standup", content="Discuss EGG budget", tags=["work"])
        notes = self.notes.list_notes()

        self.assertEqual([meeting, recipe], search_notes(notes, "egg"))
        self.assertEqual([meeting], search_notes(notes, "WORK"))
        self.assertEqual([recipe], search_notes(notes, "pancake"))
        self.assertEqual(notes, search_notes(notes, "  "))


if __name__ == "__main__":
    unittest.main()
