"""Build the named metadata tree from a MetadataRecord."""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from metastamp.encoders import (
    encode_latitude,
    encode_longitude,
    encode_utf16le,
    format_exif_datetime,
)
from metastamp.models import (
    AssemblyReport,
    FieldStatus,
    MetadataRecord,
    MetadataTree,
    empty_tree,
    strip_extension,
)

logger = logging.getLogger(__name__)

DEFAULT_RATING = 5
MIN_RATING = 0
MAX_RATING = 5
MAX_LATITUDE = 90.0
MAX_LONGITUDE = 180.0

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


def parse_rating(value: Any) -> Optional[int]:
    """Integer-prefix parse ("4" -> 4, "4.7" -> 4); None when invalid or outside 0-5."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        rating = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        rating = int(value)
    else:
        match = _INT_PREFIX.match(str(value))
        if not match:
            return None
        rating = int(match.group(1))
    if rating < MIN_RATING or rating > MAX_RATING:
        return None
    return rating


def parse_coordinate(value: Any, limit: float = MAX_LONGITUDE) -> Optional[float]:
    """Finite number within [-limit, limit], else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or abs(number) > limit:
        return None
    return number


def _present(text: Optional[str]) -> bool:
    return bool(text and text.strip())


def assemble_with_report(
    record: MetadataRecord,
    now: Callable[[], datetime] = datetime.now,
) -> Tuple[MetadataTree, AssemblyReport]:
    """
    Map the record onto primary/capture/location/interoperability/thumbnail segments.

    Nothing here raises: empty values are omitted, a bad rating becomes 5, a
    missing capture time becomes now(), and GPS is written only when both
    coordinates parse.
    """
    tree = empty_tree()
    report: Dict[str, FieldStatus] = {}
    primary = tree["primary"]
    capture = tree["capture"]
    location = tree["location"]

    for field_name, tag in (
        ("author", "creator"),
        ("copyright_notice", "rights"),
        ("title", "description"),
    ):
        value = getattr(record, field_name)
        if _present(value):
            primary[tag] = value
            report[field_name] = FieldStatus.WRITTEN
        else:
            report[field_name] = FieldStatus.OMITTED

    if record.date_taken is not None:
        moment = record.date_taken
        report["date_taken"] = FieldStatus.WRITTEN
    else:
        moment = now()
        report["date_taken"] = FieldStatus.DEFAULTED
    stamp = format_exif_datetime(moment)
    capture["original-datetime"] = stamp
    capture["digitized-datetime"] = stamp

    rating = parse_rating(record.rating)
    if rating is None:
        primary["rating"] = DEFAULT_RATING
        report["rating"] = FieldStatus.DEFAULTED
    else:
        primary["rating"] = rating
        report["rating"] = FieldStatus.WRITTEN

    if _present(record.keywords):
        primary["keywords"] = encode_utf16le(record.keywords)
        report["keywords"] = FieldStatus.WRITTEN
    else:
        report["keywords"] = FieldStatus.OMITTED

    # UserComment carries its own character-code prefix, so it stays plain text here.
    if _present(record.comments):
        capture["user-comment"] = record.comments
        report["comments"] = FieldStatus.WRITTEN
    else:
        report["comments"] = FieldStatus.OMITTED

    if _present(record.subject):
        primary["subject"] = encode_utf16le(record.subject)
        report["subject"] = FieldStatus.WRITTEN
    else:
        report["subject"] = FieldStatus.OMITTED

    lat = parse_coordinate(record.latitude, MAX_LATITUDE)
    lng = parse_coordinate(record.longitude, MAX_LONGITUDE)
    if lat is not None and lng is not None:
        lat_dms = encode_latitude(lat)
        lng_dms = encode_longitude(lng)
        location["latitude-ref"] = lat_dms.ref
        location["latitude"] = lat_dms.rational()
        location["longitude-ref"] = lng_dms.ref
        location["longitude"] = lng_dms.rational()
        report["latitude"] = report["longitude"] = FieldStatus.WRITTEN
    else:
        if record.latitude not in (None, "") or record.longitude not in (None, ""):
            logger.debug(
                "Skipping GPS: latitude=%r longitude=%r", record.latitude, record.longitude
            )
        report["latitude"] = report["longitude"] = FieldStatus.OMITTED

    return tree, report


def assemble(record: MetadataRecord, now: Callable[[], datetime] = datetime.now) -> MetadataTree:
    tree, _ = assemble_with_report(record, now=now)
    return tree


def form_defaults(filename: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Initial form values offered when the first image of a batch is picked."""
    now = now or datetime.now()
    base = strip_extension(filename)
    return {
        "file_name_base": base,
        "title": re.sub(r"[-_]", " ", base),
        "date_taken": now.strftime("%Y-%m-%dT%H:%M"),
        "rating": DEFAULT_RATING,
        "copyright_notice": "© %d" % now.year,
    }
