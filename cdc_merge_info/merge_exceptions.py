"""
Merge Info Errors and Derivation Results

This module defines the exceptions raised while deriving merge info and the
explicit per-event result returned by MergeInfoDeriver.try_derive().

Error kinds:
    • UNMERGEABLE_EVENT  - no primary keys for the table, nothing emitted
    • DEGRADED_ORDERING  - no sort keys for the table, merge info still emitted
    • FORMAT_ERROR       - a name template references data the event does not carry
    • UNEXPECTED_FAILURE - anything else raised while deriving a single event

Usage:
    result = deriver.try_derive(event)
    if result.error and result.error.kind == DerivationErrorKind.FORMAT_ERROR:
        ...
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from .merge_info import MergeInfo


class MergeInfoError(Exception):
    """Base exception for all merge info errors."""
    pass


class TemplateFormatError(MergeInfoError):
    """
    Raised when a name template references a placeholder missing from the context.

    Attributes:
        template: The template that failed to format
        placeholder: The unresolved placeholder name (without braces)
        available: Placeholder names that were available in the context
    """
    def __init__(self, template: str, placeholder: str, available: Sequence[str] = ()):
        self.template = template
        self.placeholder = placeholder
        self.available = list(available)
        message = (
            f"Template '{template}' references '{{{placeholder}}}' "
            f"which is not available in the event context.\n"
            f"Available placeholders: {self.available}"
        )
        super().__init__(message)


class KeyResolutionError(MergeInfoError):
    """Raised when primary/sort keys cannot be looked up for a table."""

    def __init__(self, schema_name: str, table_name: str, reason: str):
        self.schema_name = schema_name
        self.table_name = table_name
        self.reason = reason
        super().__init__(f"Could not resolve keys for {schema_name}.{table_name}: {reason}")


class MergeConfigError(MergeInfoError):
    """Raised when the merge info configuration is missing required values."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        message = (
            f"Merge info configuration is invalid ({len(errors)} error(s)):\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
        super().__init__(message)


class DerivationErrorKind(str, Enum):
    """Why a change event produced no merge info (or a degraded one)."""
    UNMERGEABLE_EVENT = "unmergeable_event"
    DEGRADED_ORDERING = "degraded_ordering"
    FORMAT_ERROR = "format_error"
    UNEXPECTED_FAILURE = "unexpected_failure"


@dataclass(frozen=True)
class DerivationError:
    """
    Details of a skipped or degraded derivation.

    Attributes:
        kind: One of DerivationErrorKind
        message: Human readable description (same text that was logged)
        event_repr: Raw content of the offending event
        cause: Exception that caused the failure, if any
    """
    kind: DerivationErrorKind
    message: str
    event_repr: str = ""
    cause: Optional[BaseException] = None


@dataclass(frozen=True)
class DerivationResult:
    """
    Outcome of deriving merge info for one change event.

    merge_info is set whenever a descriptor was produced; error is set whenever
    the event was skipped, dropped, or produced a degraded descriptor. Both are
    set for DEGRADED_ORDERING.
    """
    merge_info: Optional["MergeInfo"] = None
    error: Optional[DerivationError] = None

    @property
    def emitted(self) -> bool:
        return self.merge_info is not None

    @property
    def kind(self) -> Optional[DerivationErrorKind]:
        return self.error.kind if self.error else None

    def to_list(self) -> list:
        """Zero or one merge info, the shape expected by flatMap."""
        return [self.merge_info] if self.merge_info is not None else []
