"""XMP packet for the fields EXIF has no home for (alt text, keyword bag), embedded as a JPEG APP1 segment."""

from __future__ import annotations

import logging
import struct
from datetime import datetime
from typing import List, Optional
from xml.sax.saxutils import escape

from metastamp.codec import MAX_SEGMENT_PAYLOAD, is_jpeg
from metastamp.errors import UnsupportedImageError
from metastamp.models import MetadataRecord

logger = logging.getLogger(__name__)

XMP_MARKER = b"\xff\xe1"
XMP_HEADER = b"http://ns.adobe.com/xap/1.0/\x00"


def _alt(tag: str, value: str) -> str:
    return f'''
            <{tag}>
                <rdf:Alt>
                    <rdf:li xml:lang="x-default">{escape(value)}</rdf:li>
                </rdf:Alt>
            </{tag}>'''


def split_keywords(keywords: str) -> List[str]:
    return [kw.strip() for kw in keywords.split(',') if kw.strip()]


def create_xmp_packet(
    record: MetadataRecord,
    rating: Optional[int] = None,
    date_created: Optional[datetime] = None,
) -> str:
    """
    Create XMP metadata packet as XML string.

    date_created is used when the record carries no date_taken, so the packet
    agrees with the capture time written to EXIF.
    """
    parts = []
    if record.title.strip():
        parts.append(_alt("dc:title", record.title))
    if record.subject.strip():
        parts.append(_alt("dc:description", record.subject))
    if record.author.strip():
        parts.append(f'''
            <dc:creator>
                <rdf:Seq>
                    <rdf:li>{escape(record.author)}</rdf:li>
                </rdf:Seq>
            </dc:creator>''')
    if record.copyright_notice.strip():
        parts.append(_alt("dc:rights", record.copyright_notice))
    keywords = split_keywords(record.keywords)
    if keywords:
        keywords_xml = '\n'.join(f'                    <rdf:li>{escape(kw)}</rdf:li>' for kw in keywords)
        parts.append(f'''
            <dc:subject>
                <rdf:Bag>
{keywords_xml}
                </rdf:Bag>
            </dc:subject>''')
    if record.alt_text.strip():
        parts.append(_alt("Iptc4xmpCore:AltTextAccessibility", record.alt_text))
    if rating is not None:
        parts.append(f'''
            <xmp:Rating>{rating}</xmp:Rating>''')
    moment = record.date_taken or date_created
    if moment is not None:
        # photoshop:DateCreated wants ISO 8601
        date_created_iso = moment.replace(microsecond=0).isoformat()
        parts.append(f'''
            <photoshop:DateCreated>{escape(date_created_iso)}</photoshop:DateCreated>''')

    body = ''.join(parts)
    xmp = f'''<?xpacket begin="" id="W5M0MpCehiHzreSzNTczkc9d"?>
<x:xmpmeta xmlns:x="adobe:ns:meta/" x:xmptk="metastamp">
    <rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">
        <rdf:Description rdf:about=""
            xmlns:dc="http://purl.org/dc/elements/1.1/"
            xmlns:xmp="http://ns.adobe.com/xap/1.0/"
            xmlns:photoshop="http://ns.adobe.com/photoshop/1.0/"
            xmlns:Iptc4xmpCore="http://iptc.org/std/Iptc4xmpCore/1.0/xmlns/">{body}
        </rdf:Description>
    </rdf:RDF>
</x:xmpmeta>
<?xpacket end="w"?>'''

    return xmp


def _app_segments_end(data: bytes) -> int:
    """Offset just past SOI and any leading APPn segments."""
    pos = 2
    while pos + 4 <= len(data) and data[pos] == 0xFF and 0xE0 <= data[pos + 1] <= 0xEF:
        length = struct.unpack(">H", data[pos + 2:pos + 4])[0]
        pos += 2 + length
    return min(pos, len(data))


def embed_xmp_in_jpeg(jpeg_data: bytes, xmp_data: str) -> bytes:
    """Insert an XMP APP1 segment after the existing APPn segments of a JPEG stream."""
    if not is_jpeg(jpeg_data):
        raise UnsupportedImageError("XMP can only be embedded in JPEG data")

    xmp_bytes = xmp_data.encode('utf-8', 'replace')
    payload = XMP_HEADER + xmp_bytes
    if len(payload) > MAX_SEGMENT_PAYLOAD:
        logger.warning("XMP packet too large for one APP1 segment (%d bytes); skipped", len(payload))
        return jpeg_data

    # Calculate the segment length (2 bytes for length + header + data)
    segment_length = 2 + len(payload)
    length_bytes = segment_length.to_bytes(2, 'big')
    xmp_segment = XMP_MARKER + length_bytes + payload

    insert_at = _app_segments_end(jpeg_data)
    return jpeg_data[:insert_at] + xmp_segment + jpeg_data[insert_at:]


def read_xmp_packet(jpeg_data: bytes) -> Optional[str]:
    """Return the first XMP packet found in the JPEG APPn segments, if any."""
    pos = 2
    while pos + 4 <= len(jpeg_data) and jpeg_data[pos] == 0xFF and 0xE0 <= jpeg_data[pos + 1] <= 0xEF:
        length = struct.unpack(">H", jpeg_data[pos + 2:pos + 4])[0]
        body = jpeg_data[pos + 4:pos + 2 + length]
        if jpeg_data[pos + 1] == 0xE1 and body.startswith(XMP_HEADER):
            return body[len(XMP_HEADER):].decode('utf-8')
        pos += 2 + length
    return None
