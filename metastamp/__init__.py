"""Embed descriptive metadata (EXIF + XMP) into uploaded images."""

__version__ = "0.1.0"
