"""Exception taxonomy for the feed service.

Three tiers:
    RecordError  - one record is unusable, it gets dropped
    SourceError  - one feed failed, it contributes nothing
    RunError     - nothing usable is left, the run aborts
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from feedservice.diagnostics import Diagnostics

__all__ = [
    "FeedServiceError",
    "RecordError",
    "PriceMissingError",
    "GenderUnresolvedError",
    "CategoryUnresolvedError",
    "ColorUnresolvedError",
    "IdentityMissingError",
    "ValidationError",
    "StructuralError",
    "MergeError",
    "SourceError",
    "RunError",
    "EmptyQueueError",
    "NoProductsError",
]


class FeedServiceError(Exception):
    """Base class for all feed service errors."""
    pass


# =============================================================================
# Per-record errors
# =============================================================================

class RecordError(FeedServiceError):
    """A single record could not be converted, merged or validated."""
    pass


class PriceMissingError(RecordError):
    """No parseable, non-zero price in any price field."""
    pass


class GenderUnresolvedError(RecordError):
    """None of the gender keyword sets matched."""
    pass


class CategoryUnresolvedError(RecordError):
    """No category term could be mapped."""
    pass


class ColorUnresolvedError(RecordError):
    """Color could not be normalized into any color group."""
    pass


class IdentityMissingError(RecordError):
    """SKU-equivalent identifier or color is missing, so no key can be built."""
    pass


class ValidationError(RecordError):
    """A product failed the completeness contract.

    Attributes:
        field: Name of the failing field
    """

    def __init__(self, field: str, message: str = ""):
        self.field = field
        self.message = message or f"{field} missing"
        super().__init__(f"{field}: {self.message}")


class StructuralError(ValidationError):
    """An invariant is broken, which points at a converter defect."""
    pass


class MergeError(RecordError):
    """A product no longer passes refresh/validation after a merge."""
    pass


# =============================================================================
# Per-source errors
# =============================================================================

class SourceError(FeedServiceError):
    """A feed failed to deliver records."""

    def __init__(self, feed_name: str, message: str):
        self.feed_name = feed_name
        super().__init__(f"{feed_name}: {message}")


# =============================================================================
# Run-fatal errors
# =============================================================================

class RunError(FeedServiceError):
    """The run cannot continue. Carries the diagnostics collected so far."""

    def __init__(self, message: str, diagnostics: Optional["Diagnostics"] = None):
        self.message = message
        self.diagnostics = diagnostics
        super().__init__(message)

    def __str__(self) -> str:
        if self.diagnostics is None:
            return self.message
        return f"{self.message}\n{self.diagnostics.report()}"


class EmptyQueueError(RunError):
    """The fetch queue was started without any feeds."""
    pass


class NoProductsError(RunError):
    """No products survived fetching, merging or final evaluation."""
    pass
