"""Import all models so SQLAlchemy metadata knows about them."""
from fileshare.models.base import Base
from fileshare.models.category import Category
from fileshare.models.file_record import FileKind, FileRecord

__all__ = ["Base", "Category", "FileKind", "FileRecord"]
