"""Error taxonomy for artwall jobs.

Every error carries a stable ``code`` (the string persisted into job records
and printed by the CLI) and ``to_dict()`` with enough context to diagnose the
failure without re-running the prediction.
"""

from typing import Any, Dict, List, Optional


class ArtwallError(Exception):
    """Base class for all artwall errors."""

    code = "artwall_error"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": self.code, "detail": str(self)}
        data.update(self.context)
        return data


# =============================================================================
# Precondition failures (caller error, not retryable without new input)
# =============================================================================

class PreconditionFailed(ArtwallError):
    code = "precondition_failed"


class FinalImageNotFound(PreconditionFailed):
    code = "final_image_not_found"


class ImageNotFound(PreconditionFailed):
    code = "image_not_found"


class OriginalImageNotFound(PreconditionFailed):
    code = "original_image_not_found"


class UnsupportedImageType(PreconditionFailed):
    code = "unsupported_image_type"


class NoVariantTemplatesFound(PreconditionFailed):
    code = "no_variant_templates_found"


class NoMatchingVariantTemplates(PreconditionFailed):
    code = "no_matching_variant_templates"


class MetadataNotFound(PreconditionFailed):
    code = "metadata_not_found"


class InvalidVariantFile(PreconditionFailed):
    code = "invalid_variant_file"


class VariantFileNotFound(PreconditionFailed):
    code = "variant_file_not_found"


class CornersRequired(PreconditionFailed):
    code = "corners_required"


# =============================================================================
# Prediction service failures (retryable)
# =============================================================================

class MissingToken(ArtwallError):
    code = "missing_replicate_token"


class SubmissionFailed(ArtwallError):
    """Creating a prediction was rejected or never reached the service."""

    code = "replicate_failed"

    def __init__(self, message: str = "", detail: Optional[str] = None, http_code: Optional[int] = None):
        super().__init__(message, http_code=http_code)
        self.detail = detail
        self.http_code = http_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.detail:
            data["detail"] = self.detail
        return data


class PredictionTimedOut(ArtwallError):
    """The poll budget ran out before the prediction reached a terminal status."""

    code = "timed_out"


class PredictionFailed(ArtwallError):
    """The remote prediction ended as failed or canceled."""

    code = "prediction_not_completed"


class OutputDownloadFailed(ArtwallError):
    code = "output_download_failed"


# =============================================================================
# Extraction failures (retryable only by re-running the prediction)
# =============================================================================

class ExtractionFailed(ArtwallError):
    code = "extraction_failed"

    def __init__(self, message: str = "", output_text: str = "", limit: int = 1000, **context):
        super().__init__(message, **context)
        self.output_text = (output_text or "")[:limit]
        self.output_length = len(output_text or "")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["output_text"] = self.output_text
        data["output_length"] = self.output_length
        return data


class EmptyOutput(ExtractionFailed):
    code = "empty_output"


class NoJSONFound(ExtractionFailed):
    code = "no_json_found"


class InvalidCornersFormat(ExtractionFailed):
    code = "invalid_corners_format"


class InvalidCornerCount(ExtractionFailed):
    code = "invalid_corner_count"

    def __init__(self, count: int, raw_corners: List[Any], output_text: str = ""):
        super().__init__(
            f"expected 4 corners, got {count}",
            output_text=output_text,
            limit=500,
            count=count,
            raw_corners=raw_corners,
        )
        self.count = count
        self.raw_corners = raw_corners


class MissingCoordinate(ExtractionFailed):
    code = "missing_corner_coordinates"

    def __init__(self, corner: Any, all_corners: List[Any], output_text: str = ""):
        super().__init__(
            "corner is missing a numeric x or y",
            output_text=output_text,
            corner=corner,
            all_corners=all_corners,
        )
        self.corner = corner


# =============================================================================
# Storage
# =============================================================================

class StorageCorrupt(ArtwallError):
    """An existing metadata document could not be decoded."""

    code = "storage_corrupt"
