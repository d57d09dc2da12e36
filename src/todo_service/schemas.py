from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator

from .models import TodoPriority
from .store import CollectionSchema

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000


def _clean_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (1 <= len(s) <= TITLE_MAX_LENGTH):
        raise ValueError(f"title length must be between 1 and {TITLE_MAX_LENGTH} characters")
    return s


def _clean_description(v: Optional[str]) -> Optional[str]:
    return v.strip() if isinstance(v, str) else v


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.

    Omitted optional fields are filled here (priority=medium, completed=false),
    so every TodoCreate handed to the repository is complete.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "priority": "high",
                "completed": False,
            }
        }
    )

    title: str = Field(..., description="Short title for the todo item", min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(
        default=None, description="Optional detailed description", max_length=DESCRIPTION_MAX_LENGTH
    )
    priority: TodoPriority = Field(default=TodoPriority.MEDIUM, description="Priority: low, medium or high")
    completed: bool = Field(default=False, description="Completion status flag")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        if v is None:
            raise ValueError("title is required")
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        return _clean_description(v)

    def to_document(self) -> Dict[str, Any]:
        """Return the stored field values (enum members as their string values)."""
        return self.model_dump(mode="json")


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for updating an existing Todo item.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries and supplies",
                "priority": "low",
                "completed": True,
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the todo item", min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(
        default=None, description="Optional detailed description", max_length=DESCRIPTION_MAX_LENGTH
    )
    priority: Optional[TodoPriority] = Field(default=None, description="Priority: low, medium or high")
    completed: Optional[bool] = Field(default=None, description="Completion status flag")

    @field_validator("title", "priority", "completed")
    @classmethod
    def reject_explicit_null(cls, v: Any) -> Any:
        """
        Only description may be cleared; the other fields can be omitted but not nulled.
        """
        if v is None:
            raise ValueError("field may be omitted but not set to null")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce 1..200 length.
        """
        return _clean_title(v)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        return _clean_description(v)

    def to_patch(self) -> Dict[str, Any]:
        """Return only the fields the caller actually provided."""
        return self.model_dump(mode="json", exclude_unset=True)


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "507f1f77bcf86cd799439011",
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "priority": "medium",
                "completed": False,
                "created_at": "2025-01-25T10:15:30.123456+00:00",
                "updated_at": "2025-01-26T09:00:00.000001+00:00",
            }
        }
    )

    id: str = Field(..., description="Unique identifier of the todo item (24 hex characters)")
    title: str = Field(..., description="Short title for the todo item")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    priority: TodoPriority = Field(..., description="Priority: low, medium or high")
    completed: bool = Field(..., description="Completion status flag")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class TodoUpdateItem(BaseModel):
    """One entry of a bulk update: the target id and the patch to apply."""

    id: str = Field(..., description="Id of the todo to update")
    data: TodoUpdate = Field(..., description="Fields to change")


class BulkDeleteRequest(BaseModel):
    ids: List[str] = Field(..., description="Ids of the todos to delete; malformed ids are ignored")


# PUBLIC_INTERFACE
class BulkOperationData(BaseModel):
    """
    Input for a combined create/update/delete run. Each phase is optional.
    """

    create_todos: Optional[List[TodoCreate]] = Field(default=None, description="Todos to create")
    update_todos: Optional[List[TodoUpdateItem]] = Field(default=None, description="Updates to apply")
    delete_todo_ids: Optional[List[str]] = Field(default=None, description="Ids of todos to delete")


class TransferPriorityRequest(BaseModel):
    from_priority: TodoPriority = Field(..., description="Priority to move todos away from")
    to_priority: TodoPriority = Field(..., description="Priority to assign")
    limit: Optional[int] = Field(default=None, ge=1, description="Move at most this many todos")


# Collection schema enforced by the document stores on every write.


class TodoDocument(BaseModel):
    """Shape of a stored todo document, excluding `_id`."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    priority: TodoPriority
    completed: StrictBool
    created_at: datetime
    updated_at: datetime


class TodoDocumentPatch(BaseModel):
    """Shape of a `$set` patch against a stored todo. created_at is immutable."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    priority: Optional[TodoPriority] = None
    completed: Optional[StrictBool] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_required_not_null(self) -> "TodoDocumentPatch":
        for name in ("title", "priority", "completed", "updated_at"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


TODO_SCHEMA = CollectionSchema(document=TodoDocument, patch=TodoDocumentPatch)
