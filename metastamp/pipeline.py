"""
Per-image processing: decode -> assemble -> re-encode JPEG -> splice EXIF (+ XMP).

A BatchContext holds the uploaded images for one request. process_batch runs every
image's pipeline concurrently and only reports the batch done once each slot has
an outcome; a failing image never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from pathlib import PurePath
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from PIL import Image, ImageOps

from metastamp.assembler import assemble_with_report
from metastamp.codec import ExifCodec
from metastamp.errors import NoImagesError
from metastamp.models import (
    AssemblyReport,
    FieldStatus,
    ImageOutcome,
    ImageRecord,
    ImageStatus,
    MetadataRecord,
    strip_extension,
)
from metastamp.xmp import create_xmp_packet, embed_xmp_in_jpeg

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "jpg"

# tree tag -> form field it came from
TAG_FIELDS = {
    "creator": "author",
    "rights": "copyright_notice",
    "description": "title",
    "keywords": "keywords",
    "subject": "subject",
    "user-comment": "comments",
}


def validate_uploads(items: Iterable[Tuple[str, str, bytes]]) -> List[ImageRecord]:
    """Keep (filename, content_type, data) entries whose content type is image/*."""
    images = [
        ImageRecord(original_name=name or "image.jpg", source=data, content_type=content_type)
        for name, content_type, data in items
        if (content_type or "").startswith("image/")
    ]
    if not images:
        raise NoImagesError("Please upload valid image files")
    return images


def download_name(original_name: str, base: str, index: int) -> str:
    """'<base>_optimized_<index>.<original extension>'; index is 1-based."""
    name = PurePath(original_name).name
    ext = name.rsplit(".", 1)[1] if "." in name.lstrip(".") else DEFAULT_EXTENSION
    base = base.strip() or strip_extension(name) or "image"
    return f"{base}_optimized_{index}.{ext}"


class BatchContext:
    """Indexed slots for the images of one batch."""

    def __init__(self, images: Optional[Iterable[ImageRecord]] = None) -> None:
        self.slots: List[ImageRecord] = list(images or [])

    @classmethod
    def from_uploads(cls, items: Iterable[Tuple[str, str, bytes]]) -> "BatchContext":
        return cls(validate_uploads(items))

    def add(self, original_name: str, source: bytes, content_type: str = "image/jpeg") -> int:
        self.slots.append(
            ImageRecord(original_name=original_name, source=source, content_type=content_type)
        )
        return len(self.slots) - 1

    def remove(self, index: int) -> ImageRecord:
        return self.slots.pop(index)

    def reset(self) -> None:
        self.slots.clear()

    def __len__(self) -> int:
        return len(self.slots)

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(self.slots)


@dataclass
class BatchResult:
    outcomes: List[ImageOutcome] = field(default_factory=list)
    completed: int = 0

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)


class ImagePipeline:
    """
    Turns one uploaded image plus the batch's MetadataRecord into a downloadable JPEG.

    codec=None means no EXIF writer is available: images are still re-encoded
    and returned, just without metadata.
    """

    def __init__(
        self,
        codec: Optional[ExifCodec] = None,
        jpeg_quality: int = 95,
        embed_xmp: bool = True,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.codec = codec
        self.jpeg_quality = jpeg_quality
        self.embed_xmp = embed_xmp
        self.now = now

    def decode(self, source: bytes) -> Image.Image:
        img = Image.open(BytesIO(source))
        img.load()
        # pixels are stored upright; the new EXIF block carries no Orientation tag
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        return img

    def encode_jpeg(self, img: Image.Image) -> bytes:
        output = BytesIO()
        img.save(output, "JPEG", quality=self.jpeg_quality)
        return output.getvalue()

    def render(
        self, source: bytes, record: MetadataRecord
    ) -> Tuple[bytes, ImageStatus, AssemblyReport]:
        """
        Blocking part of the pipeline.

        Returns the output bytes, how they were produced and the per-field report.
        Text fields too large for the EXIF segment are dropped and reported as omitted.
        """
        img = self.decode(source)
        tree, report = assemble_with_report(record, now=self.now)
        jpeg_data = self.encode_jpeg(img)

        if self.codec is None:
            logger.warning("No EXIF codec configured; returning image without metadata")
            return jpeg_data, ImageStatus.WITHOUT_METADATA, {name: FieldStatus.OMITTED for name in report}

        exif_bytes, dropped = self.codec.fit(tree)
        for tag in dropped:
            report[TAG_FIELDS[tag]] = FieldStatus.OMITTED
        final_data = self.codec.splice(exif_bytes, jpeg_data)
        if self.embed_xmp:
            # same capture time as EXIF when the record has none
            date_created = datetime.strptime(tree["capture"]["original-datetime"], "%Y:%m:%d %H:%M:%S")
            xmp_data = create_xmp_packet(
                record, rating=tree["primary"].get("rating"), date_created=date_created
            )
            final_data = embed_xmp_in_jpeg(final_data, xmp_data)
        return final_data, ImageStatus.EMBEDDED, report

    async def process(self, image: ImageRecord, index: int, metadata: MetadataRecord) -> ImageOutcome:
        """Run the pipeline for the image in slot `index` (0-based); never raises."""
        record = metadata.with_image_defaults(image.original_name)
        name = download_name(image.original_name, record.file_name_base, index + 1)
        image.metadata = record
        try:
            data, status, fields = await asyncio.to_thread(self.render, image.source, record)
        except Exception as e:
            logger.exception("Error processing image %s", image.original_name)
            outcome = ImageOutcome(
                index=index,
                original_name=image.original_name,
                download_name=name,
                status=ImageStatus.FAILED,
                error=str(e) or e.__class__.__name__,
            )
        else:
            outcome = ImageOutcome(
                index=index,
                original_name=image.original_name,
                download_name=name,
                status=status,
                data=data,
                fields=fields,
            )
        image.output = outcome.data
        image.outcome = outcome
        return outcome


async def process_batch(
    batch: BatchContext,
    metadata: MetadataRecord,
    pipeline: ImagePipeline,
    item_timeout: Optional[float] = None,
) -> BatchResult:
    """Process every slot; outcomes come back in slot order whatever order they finish in."""
    result = BatchResult()

    async def run(index: int, image: ImageRecord) -> ImageOutcome:
        try:
            if item_timeout:
                outcome = await asyncio.wait_for(pipeline.process(image, index, metadata), item_timeout)
            else:
                outcome = await pipeline.process(image, index, metadata)
        except asyncio.TimeoutError:
            logger.error("Timed out after %ss processing %s", item_timeout, image.original_name)
            outcome = ImageOutcome(
                index=index,
                original_name=image.original_name,
                download_name=download_name(
                    image.original_name, metadata.file_name_base, index + 1
                ),
                status=ImageStatus.FAILED,
                error=f"timed out after {item_timeout}s",
            )
            image.output = None
            image.outcome = outcome
        result.completed += 1
        return outcome

    result.outcomes = list(await asyncio.gather(*(run(i, img) for i, img in enumerate(batch.slots))))
    logger.info(
        "Batch done: %d/%d completed, %d succeeded, %d failed",
        result.completed,
        len(batch),
        result.succeeded,
        result.failed,
    )
    return result
