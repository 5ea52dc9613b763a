from sqlmodel import Field

from app.models.base import TenantScopedModel, TimestampedModel, UUIDModel


class StoredFile(UUIDModel, TenantScopedModel, TimestampedModel, table=True):
    __tablename__ = "stored_files"

    storage_path: str = Field(max_length=1024)
    original_name: str = Field(max_length=255)
    mime_type: str = Field(default="application/octet-stream", max_length=128)
    file_size: int = Field(default=0)
