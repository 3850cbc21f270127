"""
Palindrome validation and collector statistics.

This module holds the pure logic behind the gallery:
- Normalizing license plates and deciding whether they are palindromes
- Aggregating per-collector statistics from their finds
- Ranking collectors into a leaderboard
- Joining, filtering and validating palindrome records for the API layer

Nothing here performs I/O or keeps state between calls. Find records may be
pydantic models or plain mappings; collectors are always models. Malformed
input degrades to an empty or zero result instead of raising.
"""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import (
    Collector,
    CollectorStats,
    CollectorWithStats,
    LeaderboardEntry,
    Palindrome,
    PalindromeWithCollector,
    UserProfile,
    ValidationResult,
)

# Anything outside ASCII letters and digits is ignored when comparing plates
NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")
WHITESPACE = re.compile(r"\s")

MIN_PALINDROME_LENGTH = 2
MAX_PLATE_LENGTH = 20
MAX_IMAGE_BYTES = 5 * 1024 * 1024
VALID_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")

UNKNOWN_COLLECTOR = "Unknown Collector"

# Stands in for upload times that cannot be parsed
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _as_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, str) and value:
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_plate(candidate: Any) -> str:
    """
    Reduce a plate to uppercase ASCII letters and digits.

    Example:
        >>> normalize_plate("a-1 a")
        'A1A'
    """
    if not isinstance(candidate, str):
        return ""
    return NON_ALPHANUMERIC.sub("", candidate).upper()


def is_palindrome(candidate: Any) -> bool:
    """
    Check whether a license plate reads the same in both directions.

    Spacing, punctuation and case are ignored. Plates that normalize to fewer
    than two characters are never palindromes.

    Args:
        candidate: Raw plate text as typed by an admin

    Returns:
        True if the normalized plate is a palindrome, False otherwise
        (including for empty or non-string input)
    """
    normalized = normalize_plate(candidate)
    if len(normalized) < MIN_PALINDROME_LENGTH:
        return False
    return normalized == normalized[::-1]


def format_license_plate(plate: str) -> str:
    """Strip whitespace and uppercase a plate for display."""
    return WHITESPACE.sub("", plate or "").upper()


def most_common(values: Iterable[Optional[str]]) -> Optional[str]:
    """
    Most frequent non-empty value.

    Ties go to the value that reached the winning count first while scanning
    the input in order, so ``["LA", "NY", "NY", "LA"]`` gives ``"NY"``.
    """
    counts: Counter = Counter()
    best, best_count = None, 0
    for value in values:
        if not value:
            continue
        counts[value] += 1
        if counts[value] > best_count:
            best, best_count = value, counts[value]
    return best


def calculate_collector_stats(finds: Sequence[Any]) -> CollectorStats:
    """
    Aggregate statistics for one collector's finds.

    The caller is responsible for passing only the finds belonging to a
    single collector. Dates come from ``date_found`` (the day the plate was
    spotted); finds without a usable date still count towards the total.

    Args:
        finds: Palindrome records (models or mappings) of one collector

    Returns:
        CollectorStats with totals, date range, favorites and distinct counts
    """
    if not finds:
        return CollectorStats()

    dates = sorted(d for d in (_as_date(_field(f, "date_found")) for f in finds) if d is not None)
    locations = [_field(f, "location_found") for f in finds]
    car_types = [_field(f, "car_type") for f in finds]

    return CollectorStats(
        total_finds=len(finds),
        earliest_find=dates[0] if dates else None,
        latest_find=dates[-1] if dates else None,
        favorite_location=most_common(locations),
        favorite_car_type=most_common(car_types),
        locations_count=len({value for value in locations if value}),
        car_types_count=len({value for value in car_types if value}),
    )


def group_by_collector(finds: Iterable[Any]) -> Dict[str, List[Any]]:
    grouped: Dict[str, List[Any]] = defaultdict(list)
    for find in finds:
        collector_id = _field(find, "collector_id")
        if collector_id:
            grouped[collector_id].append(find)
    return grouped


def generate_leaderboard(collectors: Sequence[Collector], finds: Sequence[Any]) -> List[LeaderboardEntry]:
    """
    Rank collectors by how many palindromes they have.

    Ranking uses upload time (``created_at``), not ``date_found``: among
    collectors with the same number of finds, the one whose first upload is
    oldest ranks higher. Collectors without finds are left out, and finds
    pointing at collectors not in ``collectors`` are ignored. A collector
    whose upload times are all unparseable still gets an entry, dated EPOCH.

    Args:
        collectors: Collector profiles to rank
        finds: Palindrome records of any collectors

    Returns:
        Leaderboard entries ordered by rank, starting at 1
    """
    grouped = group_by_collector(finds or [])

    ranked = []
    for collector in collectors or []:
        group = grouped.get(collector.id, [])
        uploads = sorted(ts for ts in (_as_utc(_field(f, "created_at")) for f in group) if ts is not None)
        if not group:
            continue
        if not uploads:
            uploads = [EPOCH]
        ranked.append((collector, len(group), uploads[0], uploads[-1]))

    ranked.sort(key=lambda item: (-item[1], item[2]))

    return [
        LeaderboardEntry(
            rank=position,
            collector=collector,
            total_finds=total,
            earliest_find=earliest,
            latest_find=latest,
        )
        for position, (collector, total, earliest, latest) in enumerate(ranked, start=1)
    ]


def collectors_with_stats(collectors: Sequence[Collector], finds: Sequence[Any]) -> List[CollectorWithStats]:
    """Every collector with a find count and ``date_found`` range, zero-find collectors included."""
    grouped = group_by_collector(finds or [])
    result = []
    for collector in collectors:
        stats = calculate_collector_stats(grouped.get(collector.id, []))
        result.append(
            CollectorWithStats(
                **collector.model_dump(),
                total_palindromes=stats.total_finds,
                earliest_find=stats.earliest_find,
                latest_find=stats.latest_find,
            )
        )
    return result


def join_palindromes_with_collectors(
    palindromes: Sequence[Palindrome],
    collectors: Sequence[Collector],
    admins: Sequence[UserProfile] = (),
) -> List[PalindromeWithCollector]:
    """
    Attach collector and uploader details to each palindrome.

    Palindromes whose collector is missing are kept and labelled
    "Unknown Collector".
    """
    collectors_by_id = {collector.id: collector for collector in collectors}
    admins_by_id = {admin.id: admin for admin in admins}

    joined = []
    for palindrome in palindromes:
        collector = collectors_by_id.get(palindrome.collector_id)
        admin = admins_by_id.get(palindrome.uploaded_by_admin_id)
        joined.append(
            PalindromeWithCollector(
                **palindrome.model_dump(),
                collector_name=collector.name if collector and collector.name else UNKNOWN_COLLECTOR,
                collector_location=collector.location if collector else None,
                collector_bio=collector.bio if collector else None,
                uploaded_by_admin_name=admin.name if admin else None,
                uploaded_by_admin_email=admin.email if admin else None,
            )
        )
    return joined


def filter_palindromes(
    palindromes: Sequence[PalindromeWithCollector],
    search: Optional[str] = None,
    collector_id: Optional[str] = None,
    location: Optional[str] = None,
    car_type: Optional[str] = None,
) -> List[PalindromeWithCollector]:
    """
    Filter gallery entries.

    ``search`` is a case-insensitive substring match over plate, location,
    car type and collector name. The other filters must match exactly.
    """
    term = search.lower() if search else None

    def matches(palindrome: PalindromeWithCollector) -> bool:
        if term:
            haystack = " ".join(
                value or ""
                for value in (
                    palindrome.license_plate,
                    palindrome.location_found,
                    palindrome.car_type,
                    palindrome.collector_name,
                )
            ).lower()
            if term not in haystack:
                return False
        if collector_id and palindrome.collector_id != collector_id:
            return False
        if location and palindrome.location_found != location:
            return False
        if car_type and palindrome.car_type != car_type:
            return False
        return True

    return [palindrome for palindrome in palindromes if matches(palindrome)]


def validate_palindrome_data(
    license_plate: Optional[str],
    collector_id: Optional[str],
    image_type: Optional[str] = None,
    image_size: Optional[int] = None,
    require_image: bool = False,
) -> ValidationResult:
    """
    Validate the fields of a new palindrome submission.

    Args:
        license_plate: Plate text as entered
        collector_id: Selected collector id
        image_type: MIME type of the attached photo, if any
        image_size: Size of the attached photo in bytes, if any
        require_image: Report a missing photo as an error

    Returns:
        ValidationResult whose ``errors`` maps field names to messages
    """
    errors: Dict[str, str] = {}

    plate = license_plate if isinstance(license_plate, str) else ""
    if not plate.strip():
        errors["license_plate"] = "License plate is required"
    elif len(plate) > MAX_PLATE_LENGTH:
        errors["license_plate"] = f"License plate must be {MAX_PLATE_LENGTH} characters or less"
    elif not is_palindrome(plate):
        errors["license_plate"] = "License plate must be a palindrome"

    if not isinstance(collector_id, str) or not collector_id.strip():
        errors["collector_id"] = "Collector must be selected"

    if image_type is None and image_size is None:
        if require_image:
            errors["image"] = "Image is required"
    elif image_type not in VALID_IMAGE_TYPES:
        errors["image"] = "Image must be JPEG, PNG, or WebP"
    elif image_size is not None and image_size > MAX_IMAGE_BYTES:
        errors["image"] = "Image must be less than 5MB"

    return ValidationResult(is_valid=not errors, errors=errors)
