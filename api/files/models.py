"""
Models for the Files API

Three tables back the file registry:
- GlobalFile: one row per distinct blob, keyed by content hash
- FileRecord: per-user file metadata, optionally pointing at a GlobalFile
- KnowledgeBaseFile: many-to-many link between files and knowledge bases
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON, ForeignKey, String
from pydantic import ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_file_id() -> str:
    """Generate a file record id, e.g. file_3f2a9c..."""
    return f"file_{uuid.uuid4().hex}"


class FileCategory(str, Enum):
    """Logical groups of mime types used to filter file listings"""

    ALL = "all"
    DOCUMENTS = "documents"
    IMAGES = "images"
    VIDEOS = "videos"
    AUDIOS = "audios"
    WEBSITES = "websites"


class SortType(str, Enum):
    """Sort direction"""

    ASC = "asc"
    DESC = "desc"


# Mime type LIKE patterns for each category (ALL has no filter)
CATEGORY_MIME_PATTERNS: dict[FileCategory, tuple[str, ...]] = {
    FileCategory.DOCUMENTS: ("application/%", "text/%"),
    FileCategory.IMAGES: ("image/%",),
    FileCategory.VIDEOS: ("video/%",),
    FileCategory.AUDIOS: ("audio/%",),
    FileCategory.WEBSITES: ("text/html",),
}

# Fields a listing may be ordered by
SORTABLE_FIELDS = ("name", "size", "mime_type", "created_at", "updated_at")


# ============================================================================
# Database Tables
# ============================================================================


class GlobalFile(SQLModel, table=True):
    """
    Deduplicated blob, shared by every FileRecord carrying the same hash.
    The reference count is not stored; it is the number of FileRecord rows
    whose file_hash equals hash_id.
    """
    __tablename__ = "globalfile"

    hash_id: str = Field(primary_key=True, max_length=128)
    mime_type: str = Field(max_length=255, nullable=False)
    size: int = Field(nullable=False)
    url: str = Field(nullable=False)
    # "metadata" is reserved on declarative classes
    file_metadata: dict[str, Any] | None = Field(
        default=None, sa_column=Column("metadata", JSON)
    )
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)


class KnowledgeBaseFile(SQLModel, table=True):
    """
    Association between a file record and a knowledge base.
    Rows go away with their file record (ON DELETE CASCADE).
    """
    __tablename__ = "knowledgebasefile"

    file_id: str = Field(
        sa_column=Column(
            String(64),
            ForeignKey("filerecord.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    knowledge_base_id: str = Field(primary_key=True, max_length=64)
    created_at: datetime = Field(default_factory=utcnow)


class FileRecord(SQLModel, table=True):
    """
    User owned file metadata. user_id never changes after creation.
    """
    __tablename__ = "filerecord"

    id: str = Field(default_factory=generate_file_id, primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=255, nullable=False)
    name: str = Field(max_length=1024, nullable=False)
    url: str = Field(nullable=False)
    size: int = Field(nullable=False)
    mime_type: str = Field(max_length=255, nullable=False)
    file_hash: str | None = Field(
        default=None, foreign_key="globalfile.hash_id", index=True, max_length=128
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Request/Response Models (Pydantic)
# ============================================================================


class GlobalFileCreate(SQLModel):
    """Request model for registering a deduplicated blob"""
    hash_id: str
    mime_type: str
    size: int
    url: str
    file_metadata: dict[str, Any] | None = None

    model_config = ConfigDict(extra="forbid")


class GlobalFilePublic(SQLModel):
    """Public representation of a global file"""
    hash_id: str
    mime_type: str
    size: int
    url: str
    file_metadata: dict[str, Any] | None = None
    created_at: datetime | None = None


class FileRecordCreate(SQLModel):
    """
    Request model for creating a file record.

    When file_hash names a blob the store has never seen, global_file
    carries what is needed to register it in the same transaction.
    """
    name: str
    url: str
    size: int
    mime_type: str
    file_hash: str | None = None
    knowledge_base_id: str | None = None
    id: str | None = None
    global_file: GlobalFileCreate | None = None

    model_config = ConfigDict(extra="forbid")


class FileRecordUpdate(SQLModel):
    """
    Metadata that may change on an existing record.
    Ownership and hash linkage are not updatable.
    """
    name: str | None = None
    url: str | None = None
    size: int | None = None
    mime_type: str | None = None

    model_config = ConfigDict(extra="forbid")


class FileRecordPublic(SQLModel):
    """Public representation of a file record"""
    id: str
    user_id: str
    name: str
    url: str
    size: int
    mime_type: str
    file_hash: str | None
    created_at: datetime | None
    updated_at: datetime | None


class FileQuery(SQLModel):
    """Filter and sort options for listing a user's files"""
    q: str | None = None
    category: FileCategory | None = None
    knowledge_base_id: str | None = None
    show_files_in_knowledge_base: bool | None = None
    sorter: str | None = None
    sort_type: SortType | None = None


class HashCheckResult(SQLModel):
    """Outcome of looking up a content hash"""
    exists: bool
    mime_type: str | None = None
    size: int | None = None
    url: str | None = None
    file_metadata: dict[str, Any] | None = None


class FileIdsRequest(SQLModel):
    """Bulk operation over file record ids"""
    ids: list[str]

    model_config = ConfigDict(extra="forbid")


class FileUsagePublic(SQLModel):
    """Total logical bytes used by a user"""
    user_id: str
    total_size: int


class HashCountPublic(SQLModel):
    """Number of file records referencing a hash"""
    hash_id: str
    count: int
