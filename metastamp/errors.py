class MetadataToolError(Exception):
    """Base class for errors raised by the metadata tool."""


class NoImagesError(MetadataToolError):
    """Nothing usable was uploaded."""


class UnsupportedImageError(MetadataToolError):
    """The image bytes are not in a format the codec can splice into."""


class CodecError(MetadataToolError):
    """The metadata tree names a segment or tag the codec does not know."""
