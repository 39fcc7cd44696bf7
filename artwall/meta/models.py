"""Metadata document types: job statuses, job slots, corners."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# Job record statuses
WANTED = "wanted"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"
JOB_STATUSES = (WANTED, IN_PROGRESS, COMPLETED, FAILED)

# Top-level document keys owned by job kinds
CORNER_DETECTION = "corner_detection"
AI_FORM = "ai_form"
AI_PAINTING_VARIANTS = "ai_painting_variants"
JOB_KINDS = (CORNER_DETECTION, AI_FORM, AI_PAINTING_VARIANTS)

CORNER_LABELS = ("top-left", "top-right", "bottom-right", "bottom-left")


@dataclass(frozen=True)
class JobSlot:
    """Where one job record lives inside a metadata document.

    ``kind`` is the top-level key. Variant jobs additionally carry ``variant``
    and live at ``ai_painting_variants.variants[variant]``.
    """
    kind: str
    variant: Optional[str] = None

    @classmethod
    def for_variant(cls, name: str) -> "JobSlot":
        return cls(AI_PAINTING_VARIANTS, name)

    @property
    def label(self) -> str:
        return f"{self.kind}[{self.variant}]" if self.variant else self.kind

    def get(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of the record at this slot ({} if absent)."""
        if self.variant is None:
            record = doc.get(self.kind)
        else:
            section = doc.get(self.kind)
            variants = section.get("variants") if isinstance(section, dict) else None
            record = variants.get(self.variant) if isinstance(variants, dict) else None
        return dict(record) if isinstance(record, dict) else {}

    def put(self, doc: Dict[str, Any], record: Dict[str, Any]) -> None:
        """Write ``record`` into ``doc`` in place, creating parent sections as needed."""
        if self.variant is None:
            doc[self.kind] = record
            return
        section = variant_section(doc)
        section["variants"][self.variant] = record


def variant_section(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Return the ai_painting_variants section of ``doc``, normalizing it in place."""
    section = doc.get(AI_PAINTING_VARIANTS)
    if not isinstance(section, dict):
        section = {}
        doc[AI_PAINTING_VARIANTS] = section
    if not isinstance(section.get("variants"), dict):
        section["variants"] = {}
    if not isinstance(section.get("active_variants"), list):
        section["active_variants"] = []
    return section


@dataclass
class Corner:
    """One detected corner: percentage coordinates plus resolved pixels."""
    label: str
    x_percent: float
    y_percent: float
    x: int
    y: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "x_percent": self.x_percent,
            "y_percent": self.y_percent,
            "label": self.label,
        }

    @property
    def pixel(self) -> List[int]:
        return [self.x, self.y]
