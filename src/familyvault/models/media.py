"""
Media record model for familyvault.

A MediaRecord is the metadata of one uploaded photo or video. Records are
partitioned into year shards by ``taken_at``; tags and subjects are normalized
to lowercase whenever a record is constructed.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class MediaType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


class Visibility(str, Enum):
    PUBLIC = "public"
    FAMILY = "family"
    EXTENDED_FAMILY = "extended-family"
    PRIVATE = "private"


class DateSource(str, Enum):
    EXIF = "exif"
    FILENAME = "filename"
    FILE_CREATION = "file-creation"
    UPLOAD_TIME = "upload-time"


class DateConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UploadSource(str, Enum):
    WEB = "web"
    WHATSAPP = "whatsapp"
    EMAIL = "email"


# Records written before visibility existed are treated as family content.
DEFAULT_VISIBILITY = Visibility.FAMILY


def normalize_tags(values: Iterable[str] | None) -> list[str]:
    """
    Normalize a tag or subject list.

    Values are stripped and lowercased, empty values dropped and duplicates
    removed keeping the first occurrence.
    """
    if not values:
        return []
    if isinstance(values, str):
        values = [values]

    normalized: list[str] = []
    seen: set[str] = set()
    for value in values:
        tag = str(value).strip().lower()
        if tag and tag not in seen:
            seen.add(tag)
            normalized.append(tag)
    return normalized


def parse_timestamp(value: datetime | str) -> datetime:
    """
    Parse an ISO 8601 timestamp into a timezone-aware datetime.

    Naive values are interpreted as UTC.

    Raises:
        ValueError: If the value is not a datetime or a parseable string
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a timestamp the way it is stored in shard documents."""
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class GpsLocation:
    latitude: float | None = None
    longitude: float | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GpsLocation":
        # Older documents stored {lat, lng}
        return cls(
            latitude=data.get("latitude", data.get("lat")),
            longitude=data.get("longitude", data.get("lng")),
        )


@dataclass
class MediaFileMetadata:
    """Technical metadata of the stored file."""

    size: int
    content_hash: str
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    camera: str | None = None
    gps_location: GpsLocation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "contentHash": self.content_hash,
            "width": self.width,
            "height": self.height,
            "duration": self.duration,
            "camera": self.camera,
            "gpsLocation": self.gps_location.to_dict() if self.gps_location else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediaFileMetadata":
        location = data.get("gpsLocation", data.get("location"))
        return cls(
            size=int(data.get("size") or 0),
            content_hash=str(data.get("contentHash", data.get("hash")) or ""),
            width=data.get("width"),
            height=data.get("height"),
            duration=data.get("duration"),
            camera=data.get("camera"),
            gps_location=GpsLocation.from_dict(location) if isinstance(location, dict) else None,
        )


@dataclass
class DateInfo:
    """Where ``taken_at`` came from and how much it can be trusted."""

    source: DateSource = DateSource.UPLOAD_TIME
    confidence: DateConfidence = DateConfidence.LOW

    def __post_init__(self) -> None:
        self.source = DateSource(self.source)
        self.confidence = DateConfidence(self.confidence)

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source.value, "confidence": self.confidence.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DateInfo":
        if not data:
            return cls()
        return cls(
            source=data.get("source", DateSource.UPLOAD_TIME.value),
            confidence=data.get("confidence", DateConfidence.LOW.value),
        )


@dataclass
class MediaRecord:
    """
    Metadata of one photo or video in the family gallery.

    The record belongs to the shard of the UTC year of ``taken_at``. Only storage paths
    are kept here; file bytes live in blob storage.
    """

    id: str
    filename: str
    original_filename: str
    path: str
    type: MediaType
    uploaded_by: str
    uploaded_at: datetime
    taken_at: datetime
    metadata: MediaFileMetadata
    date_info: DateInfo = field(default_factory=DateInfo)
    tags: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)
    visibility: Visibility = DEFAULT_VISIBILITY
    allowed_users: list[str] | None = None
    restricted_users: list[str] | None = None
    thumbnail_path: str | None = None
    upload_source: UploadSource = UploadSource.WEB

    def __post_init__(self) -> None:
        self.type = MediaType(self.type)
        self.visibility = Visibility(self.visibility)
        self.upload_source = UploadSource(self.upload_source)
        # Stored in UTC, so the shard year is the UTC year
        self.uploaded_at = parse_timestamp(self.uploaded_at).astimezone(UTC)
        self.taken_at = parse_timestamp(self.taken_at).astimezone(UTC)
        self.tags = normalize_tags(self.tags)
        self.subjects = normalize_tags(self.subjects)
        if self.allowed_users is not None:
            self.allowed_users = list(dict.fromkeys(self.allowed_users))
        if self.restricted_users is not None:
            self.restricted_users = list(dict.fromkeys(self.restricted_users))

    @property
    def year(self) -> int:
        """Shard year of this record."""
        return self.taken_at.year

    @property
    def has_gps(self) -> bool:
        return self.metadata.gps_location is not None and self.metadata.gps_location.has_coordinates

    @classmethod
    def create_new(
        cls,
        filename: str,
        original_filename: str,
        path: str,
        media_type: MediaType | str,
        uploaded_by: str,
        taken_at: datetime | str,
        metadata: MediaFileMetadata,
        date_info: DateInfo | None = None,
        tags: Iterable[str] | None = None,
        subjects: Iterable[str] | None = None,
        visibility: Visibility | str = DEFAULT_VISIBILITY,
        thumbnail_path: str | None = None,
        uploaded_at: datetime | None = None,
        upload_source: UploadSource | str = UploadSource.WEB,
    ) -> "MediaRecord":
        """
        Create a new MediaRecord with a generated ID, once the file upload is confirmed.

        Args:
            filename: Stored filename
            original_filename: Filename as uploaded by the user
            path: Blob storage path of the original file
            media_type: photo or video
            uploaded_by: ID of the uploading user
            taken_at: Capture timestamp, decides the shard
            metadata: Technical file metadata including the content hash
            date_info: Provenance of ``taken_at``
            tags: Initial tags
            subjects: Initial subjects
            visibility: Access tier
            thumbnail_path: Blob storage path of the thumbnail
            uploaded_at: Upload time (defaults to now)
            upload_source: Channel the file arrived through

        Returns:
            New MediaRecord instance
        """
        return cls(
            id=str(uuid.uuid4()),
            filename=filename,
            original_filename=original_filename,
            path=path,
            type=MediaType(media_type),
            uploaded_by=uploaded_by,
            uploaded_at=uploaded_at or datetime.now(UTC),
            taken_at=taken_at,
            metadata=metadata,
            date_info=date_info or DateInfo(),
            tags=list(tags or []),
            subjects=list(subjects or []),
            visibility=Visibility(visibility),
            thumbnail_path=thumbnail_path,
            upload_source=UploadSource(upload_source),
        )

    def with_updates(self, **changes: Any) -> "MediaRecord":
        """Return a copy with the given fields replaced (normalization re-applied)."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the record to its stored JSON form.

        Returns:
            Dictionary with camelCase keys as kept in shard documents
        """
        data: dict[str, Any] = {
            "id": self.id,
            "filename": self.filename,
            "originalFilename": self.original_filename,
            "path": self.path,
            "type": self.type.value,
            "uploadedBy": self.uploaded_by,
            "uploadedAt": format_timestamp(self.uploaded_at),
            "uploadSource": self.upload_source.value,
            "takenAt": format_timestamp(self.taken_at),
            "dateInfo": self.date_info.to_dict(),
            "metadata": self.metadata.to_dict(),
            "tags": list(self.tags),
            "subjects": list(self.subjects),
            "visibility": self.visibility.value,
        }
        if self.allowed_users is not None:
            data["allowedUsers"] = list(self.allowed_users)
        if self.restricted_users is not None:
            data["restrictedUsers"] = list(self.restricted_users)
        if self.thumbnail_path is not None:
            data["thumbnailPath"] = self.thumbnail_path
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediaRecord":
        """
        Create a MediaRecord from its stored JSON form.

        Raises:
            ValueError: If required keys are missing or values are malformed
        """
        try:
            return cls(
                id=data["id"],
                filename=data["filename"],
                original_filename=data.get("originalFilename") or data["filename"],
                path=data["path"],
                type=data["type"],
                uploaded_by=data["uploadedBy"],
                uploaded_at=data["uploadedAt"],
                taken_at=data["takenAt"],
                metadata=MediaFileMetadata.from_dict(data.get("metadata") or {}),
                date_info=DateInfo.from_dict(data.get("dateInfo")),
                tags=data.get("tags") or [],
                subjects=data.get("subjects") or [],
                visibility=data.get("visibility") or DEFAULT_VISIBILITY,
                allowed_users=data.get("allowedUsers"),
                restricted_users=data.get("restrictedUsers"),
                thumbnail_path=data.get("thumbnailPath"),
                upload_source=data.get("uploadSource") or UploadSource.WEB,
            )
        except KeyError as e:
            raise ValueError(f"Media record is missing required field {e}") from e
        except TypeError as e:
            raise ValueError(f"Media record is malformed: {e}") from e

    def validate(self) -> list[str]:
        """
        Validate the record.

        Returns:
            List of problems, empty when the record is valid
        """
        errors = []
        if not self.id:
            errors.append("id is required")
        if not self.filename:
            errors.append("filename is required")
        if not self.original_filename:
            errors.append("original filename is required")
        if not self.path:
            errors.append("path is required")
        if not self.uploaded_by:
            errors.append("uploaded by is required")
        if self.metadata.size <= 0:
            errors.append("file size must be positive")
        if not self.metadata.content_hash:
            errors.append("content hash is required")

        location = self.metadata.gps_location
        if location is not None and location.has_coordinates:
            if not -90 <= location.latitude <= 90 or not -180 <= location.longitude <= 180:  # type: ignore[operator]
                errors.append("invalid GPS coordinates")
        return errors
