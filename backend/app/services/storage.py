from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from uuid import UUID

import boto3
from botocore.client import Config as BotoConfig
from sqlmodel import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.logging_setup import logger
from app.models.file import StoredFile


def resolve_storage_root() -> Path:
    """
    Directory where locally stored files live. MSP_BILLING_STORAGE wins over settings.
    """
    raw = os.getenv("MSP_BILLING_STORAGE") or settings.msp_billing_storage or "storage"
    return Path(raw).expanduser().resolve()


class StorageBackend(Protocol):
    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:  # returns storage path/URL
        ...

    def load_bytes(self, path: str) -> bytes:
        ...


@dataclass
class LocalStorage:
    base_dir: Path

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        target_dir = self.base_dir / root
        target_dir.mkdir(parents=True, exist_ok=True)
        file_path = target_dir / name
        file_path.write_bytes(data)
        return str(file_path.relative_to(self.base_dir))

    def load_bytes(self, path: str) -> bytes:
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.base_dir / path
        if not file_path.exists():
            raise FileNotFoundError(f"File {path!r} was not found in the configured storage.")
        return file_path.read_bytes()


@dataclass
class S3Storage:
    bucket: str
    client: Any

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        key = f"{root.strip('/')}/{name}"
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        return f"s3://{self.bucket}/{key}"

    def load_bytes(self, path: str) -> bytes:
        if not path.startswith("s3://"):
            raise ValueError("Expected s3:// path for S3 storage")
        _, rest = path.split("s3://", 1)
        bucket, key = rest.split("/", 1)
        response = self.client.get_object(Bucket=bucket, Key=key)
        body = response.get("Body")
        return body.read() if body else b""


def get_storage() -> StorageBackend:
    # During tests, prefer local storage to avoid external dependencies
    if os.getenv("PYTEST_CURRENT_TEST") or os.getenv("MSP_BILLING_STORAGE"):
        return LocalStorage(base_dir=resolve_storage_root())

    if settings.s3_endpoint_url and settings.s3_access_key and settings.s3_secret_key and settings.s3_bucket_invoices:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name=os.getenv("AWS_REGION", "us-east-1"),
        )
        return S3Storage(bucket=settings.s3_bucket_invoices, client=client)

    return LocalStorage(base_dir=resolve_storage_root())


@dataclass(frozen=True)
class DownloadedFile:
    file_id: UUID
    original_name: str
    mime_type: str
    buffer: bytes


class FileStorageService:
    """Stores artifacts through a StorageBackend and tracks them as StoredFile rows."""

    def __init__(self, session: Session, backend: StorageBackend | None = None) -> None:
        self.session = session
        self.backend = backend or get_storage()

    def upload_file(
        self,
        *,
        tenant_id: UUID,
        name: str,
        data: bytes,
        mime_type: str = "application/octet-stream",
        root: str = "files",
    ) -> StoredFile:
        stored = StoredFile(
            tenant_id=tenant_id,
            storage_path="",
            original_name=name,
            mime_type=mime_type,
            file_size=len(data),
        )
        stored.storage_path = self.backend.save_bytes(
            root=f"{tenant_id}/{root}",
            name=f"{stored.id}_{name}",
            data=data,
        )
        self.session.add(stored)
        self.session.commit()
        self.session.refresh(stored)
        logger.debug("Stored %s (%d bytes) as file %s", name, len(data), stored.id)
        return stored

    def get_file(self, tenant_id: UUID, file_id: UUID) -> StoredFile | None:
        stored = self.session.get(StoredFile, file_id)
        if stored and stored.tenant_id == tenant_id:
            return stored
        return None

    def download_file(self, file_id: UUID, *, tenant_id: UUID) -> DownloadedFile:
        stored = self.get_file(tenant_id, file_id)
        if not stored:
            raise NotFoundError(f"File {file_id} not found")
        return DownloadedFile(
            file_id=stored.id,
            original_name=stored.original_name,
            mime_type=stored.mime_type,
            buffer=self.backend.load_bytes(stored.storage_path),
        )
