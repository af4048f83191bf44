"""FileRecord model - blob/link metadata (blob bytes live in the managed upload directory)."""
import enum
import uuid
from sqlalchemy import BigInteger, Enum, ForeignKey, Integer, JSON, String, Text, Uuid, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from fileshare.models.base import Base, TimestampMixin

FILENAME_MAX_LENGTH = 500
DISPLAY_NAME_MAX_LENGTH = 1000


class FileKind(str, enum.Enum):
    BLOB = "file"
    LINK = "url"


class FileRecord(Base, TimestampMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[FileKind] = mapped_column(
        Enum(
            FileKind,
            name="file_kind",
            native_enum=False,
            length=10,
            values_callable=lambda kinds: [k.value for k in kinds],
        ),
        default=FileKind.BLOB,
        nullable=False,
    )
    filename: Mapped[str] = mapped_column(String(FILENAME_MAX_LENGTH), default="")
    display_name: Mapped[str] = mapped_column(String(DISPLAY_NAME_MAX_LENGTH), default="")
    # Relative to the managed upload directory; empty for links
    stored_path: Mapped[str] = mapped_column(String(1000), default="")
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="")
    category_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    category = relationship("Category", lazy="selectin")

    __table_args__ = (
        Index("idx_files_kind_created_at", "kind", "created_at"),
    )
