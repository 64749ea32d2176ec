"""Low-level EXIF codec: turns a named metadata tree into an APP1 block and splices it into images."""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Any, Dict, List, Tuple

import piexif
from piexif.helper import UserComment

from metastamp.encoders import decode_utf16le
from metastamp.errors import CodecError, UnsupportedImageError
from metastamp.models import MetadataTree, empty_tree

logger = logging.getLogger(__name__)


JPEG_MAGIC = b"\xff\xd8"
# APP1 length field is 16-bit and counts itself
MAX_SEGMENT_PAYLOAD = 0xFFFF - 2

SEGMENT_TO_IFD = {
    "primary": "0th",
    "capture": "Exif",
    "location": "GPS",
    "interoperability": "Interop",
    "thumbnail": "1st",
}

# segment -> tag name -> EXIF tag id
TAGS: Dict[str, Dict[str, int]] = {
    "primary": {
        "creator": piexif.ImageIFD.Artist,
        "rights": piexif.ImageIFD.Copyright,
        "description": piexif.ImageIFD.ImageDescription,
        "rating": piexif.ImageIFD.Rating,
        "keywords": piexif.ImageIFD.XPKeywords,
        "subject": piexif.ImageIFD.XPSubject,
    },
    "capture": {
        "original-datetime": piexif.ExifIFD.DateTimeOriginal,
        "digitized-datetime": piexif.ExifIFD.DateTimeDigitized,
        "user-comment": piexif.ExifIFD.UserComment,
    },
    "location": {
        "latitude-ref": piexif.GPSIFD.GPSLatitudeRef,
        "latitude": piexif.GPSIFD.GPSLatitude,
        "longitude-ref": piexif.GPSIFD.GPSLongitudeRef,
        "longitude": piexif.GPSIFD.GPSLongitude,
    },
    "interoperability": {},
    "thumbnail": {},
}

TEXT_TAGS = {"creator", "rights", "description", "original-datetime", "digitized-datetime"}
UTF16_TAGS = {"keywords", "subject"}
# free-text tags dropped, largest first, when the block outgrows one APP1 segment
DROPPABLE_TAGS = (
    ("capture", "user-comment"),
    ("primary", "keywords"),
    ("primary", "subject"),
    ("primary", "description"),
    ("primary", "creator"),
    ("primary", "rights"),
)


def is_jpeg(data: bytes) -> bool:
    return data[:2] == JPEG_MAGIC


def is_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _scrub(text: str) -> str:
    """Replace lone surrogates, which neither UTF-8 nor UTF-16-BE can carry, with "?"."""
    return text.encode("utf-8", "replace").decode("utf-8")


def _user_comment_bytes(text: str) -> bytes:
    text = _scrub(text)
    encoding = UserComment.ASCII if text.isascii() else UserComment.UNICODE
    return UserComment.dump(text, encoding=encoding)


def _to_exif_value(tag: str, value: Any) -> Any:
    if tag in TEXT_TAGS:
        return value.encode("utf-8", "replace") if isinstance(value, str) else bytes(value)
    if tag in UTF16_TAGS:
        return bytes(value)
    if tag == "user-comment":
        return _user_comment_bytes(value) if isinstance(value, str) else bytes(value)
    if tag in ("latitude", "longitude"):
        # piexif only accepts tuples of (num, den) tuples here, never lists
        return tuple((int(num), int(den)) for num, den in value)
    return value


def _from_exif_value(tag: str, value: Any) -> Any:
    if tag in UTF16_TAGS:
        if isinstance(value, int):
            value = (value,)
        return decode_utf16le(bytes(value))
    if tag == "user-comment":
        try:
            return UserComment.load(value)
        except ValueError:
            return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ExifCodec:
    """Adapter over piexif for the five-segment metadata tree."""

    def to_exif_dict(self, tree: MetadataTree) -> Dict[str, Any]:
        exif_dict: Dict[str, Any] = {ifd: {} for ifd in SEGMENT_TO_IFD.values()}
        exif_dict["thumbnail"] = None
        for segment, fields in tree.items():
            if segment not in SEGMENT_TO_IFD:
                raise CodecError(f"Unknown metadata segment: {segment}")
            ifd = exif_dict[SEGMENT_TO_IFD[segment]]
            for tag, value in fields.items():
                tag_id = TAGS[segment].get(tag)
                if tag_id is None:
                    raise CodecError(f"Unknown tag {tag!r} in segment {segment!r}")
                ifd[tag_id] = _to_exif_value(tag, value)
        return exif_dict

    def serialize(self, tree: MetadataTree) -> bytes:
        """Dump the tree as an EXIF block (starting with b'Exif\\x00\\x00')."""
        return piexif.dump(self.to_exif_dict(tree))

    def fit(self, tree: MetadataTree) -> Tuple[bytes, List[str]]:
        """
        Serialize the tree so the block fits one APP1 segment.

        Free-text tags are dropped, largest first, until it does. Returns the block
        and the names of the dropped tags; the caller's tree is left untouched.
        """
        tree = {segment: dict(fields) for segment, fields in tree.items()}
        dropped: List[str] = []
        exif_bytes = self.serialize(tree)
        while len(exif_bytes) > MAX_SEGMENT_PAYLOAD:
            present = [(segment, tag) for segment, tag in DROPPABLE_TAGS if tag in tree.get(segment, {})]
            if not present:
                raise CodecError(f"EXIF block too large for one APP1 segment ({len(exif_bytes)} bytes)")
            segment, tag = max(present, key=lambda key: len(_to_exif_value(key[1], tree[key[0]][key[1]])))
            logger.warning("EXIF block too large (%d bytes); dropping %s", len(exif_bytes), tag)
            del tree[segment][tag]
            dropped.append(tag)
            exif_bytes = self.serialize(tree)
        return exif_bytes, dropped

    def splice(self, metadata_bytes: bytes, image_bytes: bytes) -> bytes:
        """Insert (or replace) the EXIF block in a JPEG or WebP stream."""
        if not (is_jpeg(image_bytes) or is_webp(image_bytes)):
            raise UnsupportedImageError("Image data is neither JPEG nor WebP")
        if len(metadata_bytes) > MAX_SEGMENT_PAYLOAD:
            raise CodecError(f"EXIF block too large for one APP1 segment ({len(metadata_bytes)} bytes)")
        output = BytesIO()
        piexif.insert(metadata_bytes, image_bytes, output)
        return output.getvalue()

    def deserialize(self, exif_dict: Dict[str, Any]) -> MetadataTree:
        tree = empty_tree()
        for segment, ifd in SEGMENT_TO_IFD.items():
            names = {tag_id: name for name, tag_id in TAGS[segment].items()}
            for tag_id, value in (exif_dict.get(ifd) or {}).items():
                name = names.get(tag_id)
                if name is not None:
                    tree[segment][name] = _from_exif_value(name, value)
        return tree

    def read(self, image_bytes: bytes) -> MetadataTree:
        """Parse the EXIF block of a JPEG/WebP (or a bare EXIF block) back into a named tree."""
        if not (is_jpeg(image_bytes) or is_webp(image_bytes) or image_bytes[:4] == b"Exif"):
            raise UnsupportedImageError("No EXIF container recognised")
        return self.deserialize(piexif.load(image_bytes))


def rational_to_float(value: Tuple[Tuple[int, int], ...]) -> float:
    d, m, s = (num / den for num, den in value)
    return d + m / 60.0 + s / 3600.0
