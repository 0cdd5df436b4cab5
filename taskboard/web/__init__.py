"""Taskboard Web API module.

Provides:
- REST API endpoints for auth, teams, tasks and the dashboard
- A uniform JSON envelope for results and errors

Usage:
    from taskboard.web import create_app
    app = create_app()

    # Or run via CLI:
    taskboard serve --port 3001
"""

from taskboard.web.server import create_app, TaskboardAPI

__all__ = ["create_app", "TaskboardAPI"]
