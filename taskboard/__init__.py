"""Taskboard - team and task tracking.

A REST backend for teams, memberships and tasks, with role-based rules
for who may change what.
"""

__version__ = "1.0.0"

from taskboard.config import TaskboardConfig

__all__ = [
    "__version__",
    "TaskboardConfig",
]
