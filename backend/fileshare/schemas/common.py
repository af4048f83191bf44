"""Shared Pydantic schemas."""
from typing import Optional
from fileshare.schemas.base import CamelModel


class DeleteResponse(CamelModel):
    deleted: bool = True
    id: str = ""
    message: str = ""


class RecordSweepResponse(CamelModel):
    message: str
    cleaned_count: int
    errors: Optional[list[str]] = None


class FileSweepResponse(CamelModel):
    message: str
    deleted_count: int
