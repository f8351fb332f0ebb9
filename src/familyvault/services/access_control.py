"""
Permission-aware filtering, search and aggregation of media records.

The engine is stateless: callers load the candidate records and the engine
decides which of them a user may see. Query filters are parsed into typed
objects and compiled into predicate functions evaluated in memory, so user
supplied search text is only ever compared, never interpolated into a query.
"""

from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ..errors import ValidationError
from ..logging_config import get_logger
from ..models.media import MediaRecord, MediaType, Visibility, normalize_tags, parse_timestamp
from ..models.permissions import UserPermissions
from ..models.shard import sort_records

logger = get_logger(__name__)

Predicate = Callable[[MediaRecord], bool]

TOP_TAGS_LIMIT = 10
TAG_SUGGESTIONS_LIMIT = 20


def _invalid(message: str, field_name: str, value: Any) -> ValidationError:
    return ValidationError(
        message,
        code="invalid_query",
        details={"field": field_name, "value": repr(value)[:200]},
    )


def _parse_text(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise _invalid(f"{key} must be a string", key, value)
        return value.strip() or None
    return None


def _parse_bound(value: Any, field_name: str, end_of_day: bool) -> datetime:
    try:
        parsed = parse_timestamp(value)
    except (TypeError, ValueError) as e:
        raise _invalid(f"{field_name} is not a valid timestamp", field_name, value) from e
    # A bare date as the end bound covers that whole day
    if end_of_day and isinstance(value, str) and len(value.strip()) == 10:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


@dataclass(frozen=True)
class DateRange:
    """Inclusive capture time range."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "dateRange") -> "DateRange":
        if not isinstance(data, dict) or "start" not in data or "end" not in data:
            raise _invalid(f"{field_name} needs start and end", field_name, data)
        start = _parse_bound(data["start"], f"{field_name}.start", end_of_day=False)
        end = _parse_bound(data["end"], f"{field_name}.end", end_of_day=True)
        if start > end:
            raise _invalid(f"{field_name} starts after it ends", field_name, data)
        return cls(start=start, end=end)


def _reject_unknown_keys(data: dict[str, Any], allowed: set[str], kind: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(
            f"Unknown {kind} keys: {', '.join(unknown)}",
            code="invalid_query",
            details={"unknown_keys": unknown},
        )


@dataclass(frozen=True)
class QueryFilters:
    """Gallery query filters; every supplied filter must match."""

    tags: tuple[str, ...] = ()
    date_range: DateRange | None = None
    visibility: frozenset[Visibility] | None = None
    search: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "QueryFilters":
        """
        Parse filters from request data.

        Raises:
            ValidationError: If a filter is malformed
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise _invalid("filters must be an object", "filters", data)
        _reject_unknown_keys(data, {"tags", "dateRange", "date_range", "visibility", "search"}, "filter")

        tags = data.get("tags")
        if tags is not None and not isinstance(tags, (list, tuple, str)):
            raise _invalid("tags must be a list of strings", "tags", tags)
        if isinstance(tags, (list, tuple)) and not all(isinstance(t, str) for t in tags):
            raise _invalid("tags must be a list of strings", "tags", tags)

        raw_range = data.get("dateRange", data.get("date_range"))
        date_range = DateRange.from_dict(raw_range) if raw_range is not None else None

        raw_visibility = data.get("visibility")
        visibility = None
        if raw_visibility is not None:
            levels = [raw_visibility] if isinstance(raw_visibility, str) else raw_visibility
            try:
                visibility = frozenset(Visibility(level) for level in levels)
            except (TypeError, ValueError) as e:
                raise _invalid("visibility contains an unknown level", "visibility", raw_visibility) from e

        return cls(
            tags=tuple(normalize_tags(tags)),
            date_range=date_range,
            visibility=visibility,
            search=_parse_text(data, "search"),
        )


@dataclass(frozen=True)
class SearchParams:
    """Advanced search parameters."""

    text: str | None = None
    camera: str | None = None
    file_type: MediaType | None = None
    date_range: DateRange | None = None
    has_gps: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SearchParams":
        """
        Parse search parameters from request data.

        Raises:
            ValidationError: If a parameter is malformed
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise _invalid("search parameters must be an object", "params", data)
        _reject_unknown_keys(
            data,
            {"text", "camera", "fileType", "file_type", "dateRange", "date_range", "hasGps", "hasGPS", "has_gps"},
            "search parameter",
        )

        raw_type = data.get("fileType", data.get("file_type"))
        file_type = None
        if raw_type is not None:
            try:
                file_type = MediaType(raw_type)
            except ValueError as e:
                raise _invalid("fileType must be photo or video", "fileType", raw_type) from e

        raw_range = data.get("dateRange", data.get("date_range"))

        has_gps = None
        for key in ("hasGps", "hasGPS", "has_gps"):
            if data.get(key) is not None:
                has_gps = data[key]
                if not isinstance(has_gps, bool):
                    raise _invalid(f"{key} must be true or false", key, has_gps)
                break

        return cls(
            text=_parse_text(data, "text"),
            camera=_parse_text(data, "camera"),
            file_type=file_type,
            date_range=DateRange.from_dict(raw_range) if raw_range is not None else None,
            has_gps=has_gps,
        )


# Predicate builders


def has_all_tags(tags: Iterable[str]) -> Predicate:
    required = set(normalize_tags(list(tags)))
    return lambda record: required.issubset(record.tags)


def taken_within(date_range: DateRange) -> Predicate:
    return lambda record: date_range.contains(record.taken_at)


def visibility_in(levels: frozenset[Visibility]) -> Predicate:
    return lambda record: record.visibility in levels


def matches_text(text: str, include_camera: bool = True) -> Predicate:
    """Case-insensitive substring match on filenames, tags and optionally camera."""
    needle = text.lower()

    def predicate(record: MediaRecord) -> bool:
        if needle in record.filename.lower() or needle in record.original_filename.lower():
            return True
        if any(needle in tag for tag in record.tags):
            return True
        camera = record.metadata.camera
        return include_camera and camera is not None and needle in camera.lower()

    return predicate


def camera_contains(text: str) -> Predicate:
    needle = text.lower()
    return lambda record: record.metadata.camera is not None and needle in record.metadata.camera.lower()


def of_type(media_type: MediaType) -> Predicate:
    return lambda record: record.type is media_type


def gps_presence(expected: bool) -> Predicate:
    return lambda record: record.has_gps is expected


def all_of(predicates: list[Predicate]) -> Predicate:
    return lambda record: all(predicate(record) for predicate in predicates)


def compile_filters(filters: QueryFilters) -> Predicate:
    predicates: list[Predicate] = []
    if filters.tags:
        predicates.append(has_all_tags(filters.tags))
    if filters.date_range is not None:
        predicates.append(taken_within(filters.date_range))
    if filters.visibility is not None:
        predicates.append(visibility_in(filters.visibility))
    if filters.search:
        predicates.append(matches_text(filters.search))
    return all_of(predicates)


def compile_search(params: SearchParams) -> Predicate:
    predicates: list[Predicate] = []
    if params.text:
        predicates.append(matches_text(params.text, include_camera=False))
    if params.camera:
        predicates.append(camera_contains(params.camera))
    if params.file_type is not None:
        predicates.append(of_type(params.file_type))
    if params.date_range is not None:
        predicates.append(taken_within(params.date_range))
    if params.has_gps is not None:
        predicates.append(gps_presence(params.has_gps))
    return all_of(predicates)


@dataclass
class MediaAnalytics:
    total_accessible: int = 0
    by_visibility: dict[str, int] = field(default_factory=dict)
    by_year: dict[int, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    top_tags: list[tuple[str, int]] = field(default_factory=list)
    my_uploads: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalAccessible": self.total_accessible,
            "byVisibility": dict(self.by_visibility),
            "byYear": {str(year): count for year, count in self.by_year.items()},
            "byType": dict(self.by_type),
            "topTags": [{"tag": tag, "count": count} for tag, count in self.top_tags],
            "myUploads": self.my_uploads,
        }


def _ranked(counts: Counter[str], limit: int) -> list[tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]


class AccessControlEngine:
    """Decides which records a user may see and aggregates over them."""

    def is_accessible(self, user: UserPermissions, record: MediaRecord) -> bool:
        """
        Whether ``user`` may see ``record``.

        Record level user lists are checked first, then ownership and role
        visibility. The user's tag rules and uploader restrictions apply on
        top and can deny a record the earlier steps allowed.
        """
        user_id = user.user_id
        custom = user.custom_access

        if record.restricted_users and user_id in record.restricted_users:
            return False

        is_owner = record.uploaded_by == user_id
        allowed = (
            bool(record.allowed_users and user_id in record.allowed_users)
            or is_owner
            or record.uploaded_by in custom.allowed_users
            or record.visibility in user.permissions.can_view
        )
        if not allowed:
            return False

        tags = set(record.tags)
        if not tags.isdisjoint(custom.denied_tags):
            return False
        if not is_owner and record.uploaded_by in custom.restricted_users:
            return False
        if custom.allowed_tags and tags.isdisjoint(custom.allowed_tags):
            return False
        return True

    def accessible(self, user: UserPermissions, records: Iterable[MediaRecord]) -> list[MediaRecord]:
        return [record for record in records if self.is_accessible(user, record)]

    def query_accessible(
        self,
        user: UserPermissions,
        records: Iterable[MediaRecord],
        filters: QueryFilters | dict[str, Any] | None = None,
    ) -> list[MediaRecord]:
        """
        Accessible records matching every filter, newest first.

        Raises:
            ValidationError: If ``filters`` is a malformed dict
        """
        if not isinstance(filters, QueryFilters):
            filters = QueryFilters.from_dict(filters)
        predicate = compile_filters(filters)
        result = sort_records([r for r in records if self.is_accessible(user, r) and predicate(r)])
        logger.debug("query_accessible_completed", user_id=user.user_id, result_count=len(result))
        return result

    def advanced_search(
        self,
        user: UserPermissions,
        records: Iterable[MediaRecord],
        params: SearchParams | dict[str, Any] | None = None,
    ) -> list[MediaRecord]:
        """
        Accessible records matching the search parameters, newest first.

        Raises:
            ValidationError: If ``params`` is a malformed dict
        """
        if not isinstance(params, SearchParams):
            params = SearchParams.from_dict(params)
        predicate = compile_search(params)
        result = sort_records([r for r in records if self.is_accessible(user, r) and predicate(r)])
        logger.info("advanced_search_completed", user_id=user.user_id, result_count=len(result))
        return result

    def analytics(self, user: UserPermissions, records: Iterable[MediaRecord]) -> MediaAnalytics:
        """Counts over the records ``user`` can see."""
        visible = self.accessible(user, records)
        tag_counts: Counter[str] = Counter(tag for record in visible for tag in record.tags)
        by_year = Counter(record.year for record in visible)

        return MediaAnalytics(
            total_accessible=len(visible),
            by_visibility=dict(Counter(record.visibility.value for record in visible)),
            by_year=dict(sorted(by_year.items(), reverse=True)),
            by_type=dict(Counter(record.type.value for record in visible)),
            top_tags=_ranked(tag_counts, TOP_TAGS_LIMIT),
            my_uploads=sum(1 for record in visible if record.uploaded_by == user.user_id),
        )

    def tag_suggestions(
        self,
        user: UserPermissions,
        records: Iterable[MediaRecord],
        query: str | None = None,
        limit: int = TAG_SUGGESTIONS_LIMIT,
    ) -> list[tuple[str, int]]:
        """Most used tags among accessible records, optionally containing ``query``."""
        needle = query.strip().lower() if query else ""
        counts: Counter[str] = Counter(
            tag for record in self.accessible(user, records) for tag in record.tags if needle in tag
        )
        return _ranked(counts, limit)
