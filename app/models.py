from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import DateTime
from sqlmodel import Column, Field, Relationship, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class ProjectStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


# ---------------------------------------------------------------------------
# Table models
# ---------------------------------------------------------------------------


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    name: str = Field(max_length=100)
    role: UserRole = Field(default=UserRole.USER)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    projects: list["Project"] = Relationship(back_populates="owner")


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(max_length=100, index=True)
    description: str | None = Field(default=None)
    status: ProjectStatus = Field(default=ProjectStatus.ACTIVE, index=True)
    owner_id: str = Field(foreign_key="users.id", index=True)
    provisioned_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )

    owner: User | None = Relationship(back_populates="projects")
    tasks: list["Task"] = Relationship(
        back_populates="project",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan",
            "order_by": "Task.created_at",
        },
    )


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str = Field(max_length=200, index=True)
    description: str | None = Field(default=None)
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    project_id: str = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    assignee_id: str | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    project: Project | None = Relationship(back_populates="tasks")


# ---------------------------------------------------------------------------
# Input schemas
# ---------------------------------------------------------------------------


def _reject_null(value):
    # Fields may be omitted from a partial update but not cleared
    if value is None:
        raise ValueError("may not be null")
    return value


class UserCreate(SQLModel):
    email: str = Field(min_length=3, max_length=255, regex=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(min_length=1, max_length=100)
    role: UserRole = UserRole.USER


class ProjectBase(SQLModel):
    """Fields a client may send when creating a project"""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = None


class ProjectCreate(ProjectBase):
    owner_id: str = Field(min_length=1)


class ProjectUpdate(SQLModel):
    """Schema for updating a project - all fields optional"""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    status: ProjectStatus | None = None

    @field_validator("name", "status")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class TaskCreate(SQLModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    project_id: str
    assignee_id: str | None = None


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assignee_id: str | None = None

    @field_validator("title", "status", "priority")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


# ---------------------------------------------------------------------------
# Read schemas. These are also the canonical cache snapshots.
# ---------------------------------------------------------------------------


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: UserRole
    created_at: datetime
    updated_at: datetime


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    project_id: str
    assignee_id: str | None = None
    created_at: datetime
    updated_at: datetime


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    status: ProjectStatus
    owner_id: str
    provisioned_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ProjectDetail(ProjectRead):
    """Project together with its tasks and owner"""

    tasks: list[TaskRead] = []
    owner: UserRead | None = None


class ProjectMetrics(BaseModel):
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    progress_percentage: float


class ProjectSetupPayload(BaseModel):
    """Payload of the projectSetup job"""

    project_id: str
    owner_id: str
