from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class Work:
    """One saved work as described by its metadata record."""

    id: str
    file_name: str
    created_at: datetime
    size: int
    thumbnail_size: int
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Deep copy: nested values must not be shared with the caller or with other Work instances.
        object.__setattr__(self, "attributes", MappingProxyType(copy.deepcopy(dict(self.attributes))))

    def attributes_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.attributes))

    def to_public_dict(self) -> dict[str, Any]:
        """Shape returned by the HTTP layer (camelCase, as the browser client expects)."""
        return {
            "id": self.id,
            "fileName": self.file_name,
            "createdAt": self.created_at.isoformat(),
            "size": self.size,
            "thumbnailSize": self.thumbnail_size,
            "attributes": self.attributes_dict(),
        }


@dataclass(frozen=True)
class SavedWork:
    id: str
    file_name: str
    image_url: str
    thumbnail_url: str

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "imagePath": self.image_url,
            "thumbnailPath": self.thumbnail_url,
        }


@dataclass(frozen=True)
class WorkStats:
    total_works: int
    total_size_bytes: int
    oldest_created_at: datetime | None
    newest_created_at: datetime | None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "totalWorks": self.total_works,
            "totalSizeBytes": self.total_size_bytes,
            "oldestCreatedAt": self.oldest_created_at.isoformat() if self.oldest_created_at else None,
            "newestCreatedAt": self.newest_created_at.isoformat() if self.newest_created_at else None,
        }
