"""Pydantic schemas for temporary file storage.

- TempFileRecord: everything the storage manager knows about one file
- StorageUsage: aggregate numbers reported by /stats
- CleanupResult: outcome of one sweep

Records are serialised with camelCase keys (``model_dump(by_alias=True)``)
so they can be dropped straight into response envelopes.
"""
from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TempFileRecord(_CamelModel):
    """Metadata for a file held in temp storage."""
    id: str = Field(..., description="32 hex char file id")
    path: str = Field(..., description="Absolute path on disk")
    filename: str = Field(..., description="Stored (sanitised, unique) filename")
    original_name: str = Field(..., description="Filename supplied by the caller")
    size: int = Field(..., description="Size in bytes")
    mime_type: str = Field(..., description="MIME type")
    download_url: str = Field(..., description="Relative URL serving the file")
    created_at: datetime
    expires_at: datetime
    access_count: int = 0
    last_accessed: datetime
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StorageUsage(_CamelModel):
    total_size: int
    file_count: int
    disk_usage: int
    max_total_size: int
    max_file_size: int
    usage_percentage: float
    file_lifetime: int = Field(..., description="Default lifetime in seconds")


class CleanupResult(_CamelModel):
    deleted_count: int
    freed_space: int
    remaining_files: int
    timestamp: datetime
