from __future__ import annotations

import unittest

from deskmate.errors import NotFoundError, ValidationError
from deskmate.projects.models import Member, to_iso
from tests.helpers import START, build_repos


class TestMemberRepository(unittest.TestCase):
    def test_add_links_member_to_project(self) -> None:
        _, _, _, projects, _, members = build_repos()
        project = projects.create(name="Alpha")

        member = members.add(project.id, name="Ada Lovelace", email="ada@example.com", role="admin")
        self.assertTrue(member.id.startswith("member-"))
        self.assertEqual(to_iso(START), member.joined_at)
        self.assertEqual([member], members.list_members())
        self.assertEqual(["current-user", member.id], projects.get(project.id).member_ids)
        self.assertEqual([member], members.list_for_project(project.id))

    def test_add_validates_input(self) -> None:
        _, _, _, projects, _, members = build_repos()
        project = projects.create(name="Alpha")
        with self.assertRaises(NotFoundError):
            members.add("prj-missing", name="Ada")
        with self.assertRaises(ValidationError):
            members.add(project.id, name="  ")
        with self.assertRaises(ValidationError):
            members.add(project.id, name="Ada", role="guest")
        self.assertEqual([], members.list_members())

    def test_remove_cleans_other_projects_and_assignments(self) -> None:
        _, _, _, projects, tasks, members = build_repos()
        alpha = projects.create(name="Alpha")
        beta = projects.create(name="Beta")
        member = members.add(alpha.id, name="Ada")
        projects.update(beta.id, member_ids=[*beta.member_ids, member.id])
        task = tasks.create(beta.id, title="Review", assignee_id=member.id)

        members.remove(alpha.id, member.id)

        self.assertEqual([], members.list_members())
        self.assertNotIn(member.id, projects.get(alpha.id).member_ids)
        self.assertNotIn(member.id, projects.get(beta.id).member_ids)
        self.assertIsNone(tasks.get(task.id).assignee_id)

    def test_reference_cleanup_keeps_other_projects_updated_at(self) -> None:
        _, clock, events, projects, _, members = build_repos()
        alpha = projects.create(name="Alpha")
        beta = projects.create(name="Beta")
        member = members.add(alpha.id, name="Ada")
        beta = projects.update(beta.id, member_ids=[*beta.member_ids, member.id])
        seen: list[str] = []
        events.subscribe(lambda event: seen.append(event.type))
        clock.advance(days=2)

        members.remove(alpha.id, member.id)

        cleaned = projects.get(beta.id)
        self.assertEqual(["current-user"], cleaned.member_ids)
        self.assertEqual(beta.updated_at, cleaned.updated_at)
        self.assertEqual(to_iso(clock.now), projects.get(alpha.id).updated_at)
        self.assertIn("project.members_cleaned", seen)
        self.assertEqual(0, projects.drop_member_references(member.id))

    def test_remove_without_cleaning_leaves_other_references(self) -> None:
        _, _, _, projects, tasks, members = build_repos(clean=False)
        alpha = projects.create(name="Alpha")
        beta = projects.create(name="Beta")
        member = members.add(alpha.id, name="Ada")
        projects.update(beta.id, member_ids=[*beta.member_ids, member.id])
        task = tasks.create(beta.id, title="Review", assignee_id=member.id)

        members.remove(alpha.id, member.id)

        self.assertNotIn(member.id, projects.get(alpha.id).member_ids)
        self.assertIn(member.id, projects.get(beta.id).member_ids)
        self.assertEqual(member.id, tasks.get(task.id).assignee_id)
        self.assertEqual([], members.list_for_project(beta.id))

    def test_remove_unknown_member_raises(self) -> None:
        _, _, _, projects, _, members = build_repos()
        project = projects.create(name="Alpha")
        with self.assertRaises(NotFoundError):
            members.remove(project.id, "member-missing")

    def test_list_for_project_follows_member_order(self) -> None:
        _, _, _, projects, _, members = build_repos()
        project = projects.create(name="Alpha")
        first = members.add(project.id, name="First")
        second = members.add(project.id, name="Second")
        projects.update(project.id, member_ids=[second.id, "member-ghost", first.id])

        self.assertEqual([second, first], members.list_for_project(project.id))

    def test_ensure_member_is_idempotent(self) -> None:
        _, _, _, _, _, members = build_repos()
        owner = Member(id="current-user", name="Me", email="me@example.com", role="owner", joined_at=to_iso(START))

        self.assertEqual(owner, members.ensure_member(owner))
        renamed = Member(id="current-user", name="Other", email="", role="viewer", joined_at="")
        self.assertEqual(owner, members.ensure_member(renamed))
        self.assertEqual([owner], members.list_members())
        self.assertEqual(owner, members.get("current-user"))


if __name__ == "__main__":
    unittest.main()
