"""
Value encoders for EXIF fields whose byte layout is not obvious.

- GPS coordinates become unsigned degree/minute/second rationals plus a hemisphere letter.
- Windows "XP" text tags (XPKeywords, XPSubject) hold null-terminated UTF-16LE bytes.
- EXIF timestamps use the fixed "YYYY:MM:DD HH:MM:SS" layout.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from datetime import datetime
from typing import List, Tuple

Rational = Tuple[int, int]
DMSRational = Tuple[Rational, Rational, Rational]

SECONDS_DENOMINATOR = 100

HIGH_SURROGATE_MIN = 0xD800
HIGH_SURROGATE_MAX = 0xDBFF
LOW_SURROGATE_MIN = 0xDC00
LOW_SURROGATE_MAX = 0xDFFF


@dataclass(frozen=True)
class CoordinateDMS:
    """Unsigned sexagesimal coordinate; seconds are stored in hundredths."""

    degrees: int
    minutes: int
    seconds_hundredths: int
    ref: str

    def rational(self) -> DMSRational:
        return (
            (self.degrees, 1),
            (self.minutes, 1),
            (self.seconds_hundredths, SECONDS_DENOMINATOR),
        )

    def to_degrees(self) -> float:
        return (
            self.degrees
            + self.minutes / 60.0
            + self.seconds_hundredths / SECONDS_DENOMINATOR / 3600.0
        )


def _round_half_up(value: float) -> int:
    # Inputs are never negative, so this is round-half-away-from-zero.
    return int(math.floor(value + 0.5))


def deg_to_dms_rational(value: float) -> DMSRational:
    """
    Convert a non-negative decimal degree value to ((d, 1), (m, 1), (s, 100)).

    Seconds are rounded half-up to hundredths and are not carried into minutes,
    so 59.995s and above come out as (6000, 100).
    """
    value = abs(value)
    degrees = int(math.floor(value))
    minutes_float = (value - degrees) * 60
    minutes = int(math.floor(minutes_float))
    seconds_float = (minutes_float - minutes) * 60
    seconds = _round_half_up(seconds_float * SECONDS_DENOMINATOR)
    return ((degrees, 1), (minutes, 1), (seconds, SECONDS_DENOMINATOR))


def encode_coordinate(value: float, positive_ref: str, negative_ref: str) -> CoordinateDMS:
    """Encode a signed coordinate; zero counts as non-negative."""
    ref = positive_ref if value >= 0 else negative_ref
    (d, _), (m, _), (s, _) = deg_to_dms_rational(abs(value))
    return CoordinateDMS(degrees=d, minutes=m, seconds_hundredths=s, ref=ref)


def encode_latitude(value: float) -> CoordinateDMS:
    return encode_coordinate(value, "N", "S")


def encode_longitude(value: float) -> CoordinateDMS:
    return encode_coordinate(value, "E", "W")


def _code_units(text: str) -> List[int]:
    raw = text.encode("utf-16-le", "surrogatepass")
    return list(struct.unpack("<%dH" % (len(raw) // 2), raw))


def encode_utf16le(text: str) -> bytes:
    """
    Encode text as UTF-16LE code units followed by a two-byte null terminator.

    A high surrogate followed by a low surrogate is written as a pair; a lone
    surrogate is written as-is. Output length is always 2 * code_units + 2.
    """
    units = _code_units(text)
    out = bytearray()
    i = 0
    while i < len(units):
        unit = units[i]
        if HIGH_SURROGATE_MIN <= unit <= HIGH_SURROGATE_MAX and i + 1 < len(units):
            low = units[i + 1]
            if LOW_SURROGATE_MIN <= low <= LOW_SURROGATE_MAX:
                out += struct.pack("<HH", unit, low)
                i += 2
                continue
        out += struct.pack("<H", unit)
        i += 1
    out += b"\x00\x00"
    return bytes(out)


def decode_utf16le(data: bytes) -> str:
    """Inverse of encode_utf16le; a missing terminator is tolerated."""
    if len(data) >= 2 and data[-2:] == b"\x00\x00":
        data = data[:-2]
    if len(data) % 2:
        data = data[:-1]
    return data.decode("utf-16-le", "surrogatepass")


def format_exif_datetime(moment: datetime) -> str:
    """Format the moment's own calendar fields as YYYY:MM:DD HH:MM:SS (no timezone conversion)."""
    return "%04d:%02d:%02d %02d:%02d:%02d" % (
        moment.year,
        moment.month,
        moment.day,
        moment.hour,
        moment.minute,
        moment.second,
    )
