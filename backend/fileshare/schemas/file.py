"""File and category request/response schemas."""
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field, field_validator
from fileshare.schemas.base import CamelModel, CamelORMModel


class FileMetadata(CamelModel):
    """Known metadata shapes for a shared file. Unknown keys are rejected."""
    version: Optional[str] = Field(default=None, max_length=50)
    platform: Optional[str] = Field(default=None, max_length=50)
    tags: list[str] = Field(default_factory=list, max_length=20)

    model_config = {"extra": "forbid"}

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: list[str]) -> list[str]:
        return [t.strip() for t in v if t and t.strip()]


class CategorySummary(CamelORMModel):
    id: uuid.UUID
    name: str
    description: str = ""


class FileRecordResponse(CamelORMModel):
    id: uuid.UUID
    type: str
    filename: str
    display_name: str
    url: Optional[str] = None
    size: int
    description: str = ""
    category_id: Optional[uuid.UUID] = None
    category: Optional[CategorySummary] = None
    download_count: int = 0
    metadata: FileMetadata = Field(default_factory=FileMetadata)
    uploaded_at: datetime


class CategoryAssign(CamelModel):
    category_id: Optional[str] = None


class DownloadCountResponse(CamelModel):
    download_count: int


class CategoryCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class CategoryResponse(CamelORMModel):
    id: uuid.UUID
    name: str
    description: str = ""
    file_count: int = 0
    created_at: datetime
