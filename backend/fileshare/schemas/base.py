"""Base schema classes with camelCase alias generation.

API JSON is camelCase (the download page and admin panel expect
``displayName``, ``downloadCount`` ...); Python code stays snake_case.
"""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for request schemas. Accepts camelCase or snake_case, outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class CamelORMModel(CamelModel):
    """Base for response schemas built from SQLAlchemy rows or plain dicts."""
    model_config = {
        "from_attributes": True,
    }
