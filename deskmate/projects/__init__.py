"""Project board: projects, their tasks, members and milestones.

Three collections live side by side in the key-value store:
- projects          (milestones are embedded in each project)
- project-tasks     (every project's tasks in one array)
- project-members   (one global member list)

Foreign keys are plain ids resolved by scanning; the repositories are the only
writers and always rewrite a whole collection.
"""

from .members import MemberRepository
from .models import Member, Milestone, Project, Task
from .projects import ProjectRepository, filter_projects, sort_projects
from .stats import ProjectStats, TaskStats, project_stats, task_stats
from .tasks import TaskRepository, filter_tasks, kanban_columns, sort_tasks, timeline

__all__ = [
    "Member",
    "MemberRepository",
    "Milestone",
    "Project",
    "ProjectRepository",
    "ProjectStats",
    "Task",
    "TaskRepository",
    "TaskStats",
    "filter_projects",
    "filter_tasks",
    "kanban_columns",
    "project_stats",
    "sort_projects",
    "sort_tasks",
    "task_stats",
    "timeline",
]
