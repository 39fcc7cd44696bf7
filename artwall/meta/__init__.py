"""Metadata layer for artwall."""

from artwall.meta.library import Library, VariantTemplate, extract_base_name, thumbnail_path
from artwall.meta.models import (
    AI_FORM,
    AI_PAINTING_VARIANTS,
    COMPLETED,
    CORNER_DETECTION,
    FAILED,
    IN_PROGRESS,
    WANTED,
    Corner,
    JobSlot,
)
from artwall.meta.store import FileMetadataStore, MemoryMetadataStore, MetadataStore

__all__ = [
    "Library",
    "VariantTemplate",
    "extract_base_name",
    "thumbnail_path",
    "MetadataStore",
    "FileMetadataStore",
    "MemoryMetadataStore",
    "JobSlot",
    "Corner",
    "WANTED",
    "IN_PROGRESS",
    "COMPLETED",
    "FAILED",
    "CORNER_DETECTION",
    "AI_FORM",
    "AI_PAINTING_VARIANTS",
]
