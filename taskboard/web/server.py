"""Taskboard Web API Server.

FastAPI application exposing authentication, teams, tasks and the
dashboard. Every response is a JSON envelope with a boolean ``success``
flag; failures carry a human-readable ``message``.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Optional, Union

import structlog
from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskboard import __version__
from taskboard.collaboration.auth import TokenStore
from taskboard.collaboration.dashboard import Dashboard
from taskboard.collaboration.tasks import TaskStore
from taskboard.collaboration.teams import TeamStore
from taskboard.collaboration.users import UserStore
from taskboard.config import TaskboardConfig
from taskboard.core.errors import TaskboardError, UnexpectedError, classify_error
from taskboard.logging import REQUEST_ID_HEADER, bind_request_context, clear_request_context
from taskboard.persistence.database import MAX_ROW_ID, Database

log = structlog.get_logger()

TeamId = Annotated[int, Path(ge=1, le=MAX_ROW_ID)]
TaskId = Annotated[int, Path(ge=1, le=MAX_ROW_ID)]


# Pydantic models for API requests. Fields are optional so that missing
# values reach the domain rules and get their specific messages.
class RegisterRequest(BaseModel):
    """Register a new user."""
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """Log in with email and password."""
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    """Update the caller's profile."""
    name: Optional[str] = None
    email: Optional[str] = None


class TeamRequest(BaseModel):
    """Create or edit a team."""
    name: Optional[str] = None
    description: Optional[str] = None


class TaskCreateRequest(BaseModel):
    """Create a task."""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    team_id: Optional[int] = Field(default=None, ge=1, le=MAX_ROW_ID)
    description: Optional[str] = None
    assigned_to: Optional[Union[int, str]] = None
    due_date: Optional[str] = None


class TaskUpdateRequest(BaseModel):
    """Partially update a task. Only fields sent by the client are applied."""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Optional[Union[int, str]] = None
    due_date: Optional[str] = None


class TaskboardAPI:
    """Taskboard API application state."""

    def __init__(self, config: TaskboardConfig):
        self.config = config
        self.db = Database(config.db_path)
        self.users = UserStore(self.db, min_password_length=config.min_password_length)
        self.tokens = TokenStore(self.db, ttl_hours=config.token_ttl_hours)
        self.teams = TeamStore(self.db)
        self.tasks = TaskStore(self.db)
        self.dashboard = Dashboard(self.db)

    async def initialize(self):
        """Initialize API components."""
        await self.db.initialize()
        await self.tokens.cleanup_expired()
        log.info("taskboard_api_initialized", db_path=str(self.config.db_path))

    async def shutdown(self):
        log.info("taskboard_api_shutdown")


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def create_app(config: Optional[TaskboardConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Taskboard configuration (loaded from disk if omitted)

    Returns:
        Configured FastAPI application
    """
    config = config or TaskboardConfig.load()
    api = TaskboardAPI(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        await api.initialize()
        yield
        await api.shutdown()

    app = FastAPI(
        title="Taskboard API",
        description="Team and task tracking",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.api = api

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = bind_request_context(
            request.method,
            request.url.path,
            request.headers.get(REQUEST_ID_HEADER),
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            log.info(
                "request_completed",
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return response
        finally:
            clear_request_context()

    bearer = HTTPBearer(auto_error=False)

    async def current_user_id(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    ) -> int:
        """Resolve the bearer token to the caller's user id."""
        return await api.tokens.resolve(credentials.credentials if credentials else None)

    # ===== Error Handling =====

    @app.exception_handler(TaskboardError)
    async def handle_taskboard_error(request: Request, exc: TaskboardError):
        if isinstance(exc, UnexpectedError):
            log.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=exc.message,
            )
            if not config.expose_errors:
                return _error_response(exc.status_code, "Internal server error")
        else:
            log.info("request_rejected", kind=exc.kind, status=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"Invalid {location}: {first.get('msg')}" if location else first.get("msg")
        else:
            message = "Invalid request"
        return _error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        error = classify_error(exc, context=f"{request.method} {request.url.path}")
        return await handle_taskboard_error(request, error)

    # ===== Health =====

    @app.get("/health", tags=["System"])
    async def health_check():
        """Check API health status."""
        db_ok = False
        try:
            async with api.db.connect() as conn:
                await conn.execute("SELECT 1")
            db_ok = True
        except Exception as e:
            log.warning("health_database_check_failed", error=str(e))

        return {
            "success": db_ok,
            "message": "Taskboard API is running" if db_ok else "Database unavailable",
            "version": __version__,
            "database_ok": db_ok,
            "timestamp": datetime.now().isoformat(),
        }

    # ===== Auth Endpoints =====

    @app.post("/api/auth/register", status_code=201, tags=["Auth"])
    async def register(request: RegisterRequest):
        """Register a new user and log them in."""
        user = await api.users.create_user(request.name, request.email, request.password)
        token = await api.tokens.issue(user.id)
        return {
            "success": True,
            "message": "User registered successfully",
            "token": token.token,
            "user": user.to_dict(),
        }

    @app.post("/api/auth/login", tags=["Auth"])
    async def login(request: LoginRequest):
        """Exchange email and password for a bearer token."""
        user = await api.users.authenticate(request.email, request.password)
        token = await api.tokens.issue(user.id)
        return {
            "success": True,
            "message": "Login successful",
            "token": token.token,
            "user": user.to_dict(),
        }

    @app.post("/api/auth/logout", tags=["Auth"])
    async def logout(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
        user_id: int = Depends(current_user_id),
    ):
        """Revoke the bearer token used for this request."""
        await api.tokens.revoke(credentials.credentials)
        return {"success": True, "message": "Logged out"}

    @app.get("/api/auth/profile", tags=["Auth"])
    async def get_profile(user_id: int = Depends(current_user_id)):
        """Get the caller's profile."""
        user = await api.users.get_user(user_id)
        if user is None:
            return _error_response(404, "User not found")
        return {"success": True, "user": user.to_dict()}

    @app.put("/api/auth/profile", tags=["Auth"])
    async def update_profile(request: ProfileUpdateRequest, user_id: int = Depends(current_user_id)):
        """Update the caller's name and/or email."""
        user = await api.users.update_profile(user_id, name=request.name, email=request.email)
        return {"success": True, "message": "Profile updated successfully", "user": user.to_dict()}

    # ===== Team Endpoints =====

    @app.get("/api/teams", tags=["Teams"])
    async def list_teams(user_id: int = Depends(current_user_id)):
        """List all teams (for joining)."""
        teams = await api.teams.list_teams()
        return {"success": True, "teams": [t.to_dict() for t in teams]}

    @app.get("/api/teams/my-teams", tags=["Teams"])
    async def list_my_teams(user_id: int = Depends(current_user_id)):
        """List the caller's teams with their role in each."""
        teams = await api.teams.list_user_teams(user_id)
        return {"success": True, "teams": [t.to_dict() for t in teams]}

    @app.post("/api/teams", status_code=201, tags=["Teams"])
    async def create_team(request: TeamRequest, user_id: int = Depends(current_user_id)):
        """Create a team led by the caller."""
        team = await api.teams.create_team(user_id, request.name, request.description)
        return {"success": True, "message": "Team created successfully", "team": team.to_dict()}

    @app.get("/api/teams/{team_id}", tags=["Teams"])
    async def get_team(team_id: TeamId, user_id: int = Depends(current_user_id)):
        """Get a team with its members (members only)."""
        team = await api.teams.get_team_detail(user_id, team_id)
        return {"success": True, "team": team.to_dict()}

    @app.put("/api/teams/{team_id}", tags=["Teams"])
    async def update_team(team_id: TeamId, request: TeamRequest, user_id: int = Depends(current_user_id)):
        """Edit a team (leaders only)."""
        team = await api.teams.update_team(user_id, team_id, request.name, request.description)
        return {"success": True, "message": "Team updated successfully", "team": team.to_dict()}

    @app.delete("/api/teams/{team_id}", tags=["Teams"])
    async def delete_team(team_id: TeamId, user_id: int = Depends(current_user_id)):
        """Delete a team with its tasks and memberships (leaders only)."""
        await api.teams.delete_team(user_id, team_id)
        return {"success": True, "message": "Team deleted successfully"}

    @app.post("/api/teams/{team_id}/join", tags=["Teams"])
    async def join_team(team_id: TeamId, user_id: int = Depends(current_user_id)):
        """Join a team as a member."""
        membership = await api.teams.join_team(user_id, team_id)
        return {
            "success": True,
            "message": "Successfully joined the team",
            "membership": membership.to_dict(),
        }

    @app.post("/api/teams/{team_id}/leave", tags=["Teams"])
    async def leave_team(team_id: TeamId, user_id: int = Depends(current_user_id)):
        """Leave a team."""
        await api.teams.leave_team(user_id, team_id)
        return {"success": True, "message": "Successfully left the team"}

    # ===== Task Endpoints =====

    @app.get("/api/tasks/my-tasks", tags=["Tasks"])
    async def list_my_tasks(
        status: Optional[str] = Query(default=None, description="Filter by status"),
        user_id: int = Depends(current_user_id),
    ):
        """List tasks assigned to the caller."""
        tasks = await api.tasks.list_assigned_tasks(user_id, status=status)
        return {"success": True, "tasks": [t.to_dict() for t in tasks]}

    @app.get("/api/tasks/team/{team_id}", tags=["Tasks"])
    async def list_team_tasks(
        team_id: TeamId,
        status: Optional[str] = Query(default=None, description="Filter by status"),
        user_id: int = Depends(current_user_id),
    ):
        """List a team's tasks (members only)."""
        tasks = await api.tasks.list_team_tasks(user_id, team_id, status=status)
        return {"success": True, "tasks": [t.to_dict() for t in tasks]}

    @app.get("/api/tasks/team/{team_id}/stats", tags=["Tasks"])
    async def team_task_stats(team_id: TeamId, user_id: int = Depends(current_user_id)):
        """Task counts for a team (members only)."""
        stats = await api.tasks.get_team_stats(user_id, team_id)
        return {"success": True, "stats": stats.to_dict()}

    @app.post("/api/tasks", status_code=201, tags=["Tasks"])
    async def create_task(request: TaskCreateRequest, user_id: int = Depends(current_user_id)):
        """Create a task in one of the caller's teams."""
        task = await api.tasks.create_task(
            user_id,
            title=request.title,
            team_id=request.team_id,
            description=request.description,
            assigned_to=request.assigned_to,
            due_date=request.due_date,
        )
        return {"success": True, "message": "Task created successfully", "task": task.to_dict()}

    @app.put("/api/tasks/{task_id}", tags=["Tasks"])
    async def update_task(
        task_id: TaskId,
        request: TaskUpdateRequest,
        user_id: int = Depends(current_user_id),
    ):
        """Apply the fields present in the body to a task."""
        task = await api.tasks.update_task(
            user_id, task_id, request.model_dump(exclude_unset=True)
        )
        return {"success": True, "message": "Task updated successfully", "task": task.to_dict()}

    @app.delete("/api/tasks/{task_id}", tags=["Tasks"])
    async def delete_task(task_id: TaskId, user_id: int = Depends(current_user_id)):
        """Delete a task (creator or team leader)."""
        await api.tasks.delete_task(user_id, task_id)
        return {"success": True, "message": "Task deleted successfully"}

    # ===== Dashboard =====

    @app.get("/api/dashboard/summary", tags=["Dashboard"])
    async def dashboard_summary(user_id: int = Depends(current_user_id)):
        """Team and task rollups for the caller."""
        summary = await api.dashboard.get_summary(user_id)
        return {"success": True, "summary": summary.to_dict()}

    return app


def run_server(config: Optional[TaskboardConfig] = None):
    """Run the Taskboard API server.

    Args:
        config: Taskboard configuration (host, port, database)
    """
    import uvicorn

    config = config or TaskboardConfig.load()
    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())
