"""Metadata file written next to the database."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from vulnstore.utils.files import _format_time, must_time_parse

METADATA_FILE = "metadata.json"
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class MetadataError(Exception):
    """The metadata file could not be read, written or removed."""


def metadata_path(db_dir: str | os.PathLike[str]) -> str:
    """Path of the metadata file in db_dir."""
    return os.path.join(os.fspath(db_dir), METADATA_FILE)


def _parse_time(value: Any) -> datetime:
    return ZERO_TIME if value is None else must_time_parse(value)


@dataclass
class Metadata:
    """Schema version and update times of a database."""

    version: int = 0
    next_update: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    downloaded_at: datetime = ZERO_TIME  # filled in after downloading

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"Version": self.version} if self.version else {}
        data["NextUpdate"] = _format_time(self.next_update)
        data["UpdatedAt"] = _format_time(self.updated_at)
        data["DownloadedAt"] = _format_time(self.downloaded_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metadata:
        return cls(
            version=int(data.get("Version") or 0),
            next_update=_parse_time(data.get("NextUpdate")),
            updated_at=_parse_time(data.get("UpdatedAt")),
            downloaded_at=_parse_time(data.get("DownloadedAt")),
        )


class MetadataClient:
    """Reads and writes the metadata file of one database directory."""

    def __init__(self, db_dir: str | os.PathLike[str]) -> None:
        self.file_path = metadata_path(db_dir)

    def get(self) -> Metadata:
        """Load the metadata from the file."""
        try:
            with open(self.file_path, "rb") as file:
                raw = file.read()
        except OSError as exc:
            raise MetadataError(f"file open error: {self.file_path}: {exc}") from exc
        try:
            data = json.loads(raw)
            if data is None:
                return Metadata()
            if not isinstance(data, dict):
                raise ValueError("not an object")
            return Metadata.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise MetadataError(f"json decode error: {self.file_path}: {exc}") from exc

    def update(self, meta: Metadata) -> None:
        """Write the metadata, creating the directory if needed."""
        try:
            os.makedirs(os.path.dirname(self.file_path) or ".", mode=0o744, exist_ok=True)
        except OSError as exc:
            raise MetadataError(f"mkdir error: {self.file_path}: {exc}") from exc
        try:
            with open(self.file_path, "w", encoding="utf-8") as file:
                file.write(json.dumps(meta.to_dict()) + "\n")
        except OSError as exc:
            raise MetadataError(f"file create error: {self.file_path}: {exc}") from exc

    def delete(self) -> None:
        """Remove the metadata file."""
        try:
            os.remove(self.file_path)
        except OSError as exc:
            raise MetadataError(f"file remove error: {self.file_path}: {exc}") from exc