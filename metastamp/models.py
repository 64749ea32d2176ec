"""Records exchanged between the web layer, the assembler and the image pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# segment name -> tag name -> value
MetadataTree = Dict[str, Dict[str, Any]]

SEGMENTS = ("primary", "capture", "location", "interoperability", "thumbnail")


def empty_tree() -> MetadataTree:
    return {name: {} for name in SEGMENTS}


def strip_extension(filename: str) -> str:
    """'holiday.photo.jpg' -> 'holiday.photo'."""
    name = PurePath(filename).name
    if "." in name.lstrip("."):
        return name.rsplit(".", 1)[0]
    return name


class MetadataRecord(BaseModel):
    """
    Flat form state shared by every image in a batch.

    rating, latitude and longitude keep whatever the form sent; the assembler
    decides whether they parse. Both snake_case names and the camelCase form
    names (fileNameBase, dateTaken, ...) are accepted.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_name_base: str = Field(default="", alias="fileNameBase")
    title: str = ""
    subject: str = ""
    author: str = ""
    date_taken: Optional[datetime] = Field(default=None, alias="dateTaken")
    copyright_notice: str = Field(default="", alias="copyrightNotice")
    alt_text: str = Field(default="", alias="altText")
    keywords: str = ""
    comments: str = ""
    rating: Union[int, float, str, None] = None
    latitude: Union[float, str, None] = None
    longitude: Union[float, str, None] = None

    @field_validator("date_taken", mode="before")
    @classmethod
    def lenient_date(cls, v: Any) -> Optional[datetime]:
        if v is None or isinstance(v, datetime):
            return v
        if isinstance(v, str):
            text = v.strip()
            if not text:
                return None
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                return datetime.fromisoformat(text)
            except ValueError:
                logger.debug("Ignoring unparseable date_taken %r", v)
                return None
        return None

    def with_image_defaults(self, original_name: str) -> "MetadataRecord":
        """Copy of this record with an empty file_name_base derived from the image's own name."""
        if self.file_name_base.strip():
            return self
        return self.model_copy(update={"file_name_base": strip_extension(original_name)})


class FieldStatus(str, Enum):
    WRITTEN = "written"
    DEFAULTED = "defaulted"
    OMITTED = "omitted"


AssemblyReport = Dict[str, FieldStatus]


class ImageStatus(str, Enum):
    EMBEDDED = "embedded"
    WITHOUT_METADATA = "without_metadata"
    FAILED = "failed"


@dataclass
class ImageOutcome:
    index: int
    original_name: str
    download_name: str
    status: ImageStatus
    data: Optional[bytes] = None
    error: Optional[str] = None
    # per-field outcome of the metadata actually written; empty for failed images
    fields: AssemblyReport = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != ImageStatus.FAILED


@dataclass
class ImageRecord:
    """One uploaded image and, once its pipeline ran, what came out of it."""

    original_name: str
    source: bytes
    content_type: str = "image/jpeg"
    output: Optional[bytes] = None
    metadata: Optional[MetadataRecord] = None
    outcome: Optional[ImageOutcome] = field(default=None, repr=False)
