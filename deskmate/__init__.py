"""deskmate: a local project, task, todo and notes board."""

__version__ = "0.1.0"
