"""
Name Template Formatting

Staging and destination dataset/table names are configured as templates that
reference the change event's metadata, e.g.:

    "staging_{_metadata_schema}"   ->  "staging_sales"
    "{_metadata_table}"            ->  "orders"
    "{_metadata_stream}_log"       ->  "mystream_log"

format_template() is pure: same template + same context -> same string.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional

from .merge_event import METADATA_SCHEMA, METADATA_STREAM, METADATA_TABLE, ChangeEvent
from .merge_exceptions import TemplateFormatError

_PLACEHOLDER = re.compile(r"\{([^{}]*)\}")
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")


@dataclass(frozen=True)
class TemplateContext:
    """Values available to name templates. None means the event did not carry the value."""
    stream: Optional[str] = None
    schema: Optional[str] = None
    table: Optional[str] = None

    @classmethod
    def from_event(cls, event: ChangeEvent) -> "TemplateContext":
        return cls(
            stream=event.stream_name,
            schema=event.schema_name,
            table=event.table_name,
        )

    def as_placeholders(self) -> Dict[str, str]:
        """Placeholder name -> value, only for values that are present."""
        values = {
            METADATA_STREAM: self.stream,
            METADATA_SCHEMA: self.schema,
            METADATA_TABLE: self.table,
        }
        return {k: v for k, v in values.items() if v is not None}


def format_template(template: str, context: TemplateContext) -> str:
    """
    Substitute {_metadata_stream}, {_metadata_schema} and {_metadata_table} in a template.

    Args:
        template: Name template; a template without placeholders is returned unchanged
        context: Values to substitute

    Returns:
        The formatted string

    Raises:
        TemplateFormatError: If the template references a placeholder that is unknown
                             or has no value in the context

    Example:
        >>> format_template("staging_{_metadata_schema}", TemplateContext(schema="sales"))
        'staging_sales'
    """
    values = context.as_placeholders()

    def _substitute(match):
        name = match.group(1)
        if name not in values:
            raise TemplateFormatError(template, name, sorted(values))
        return values[name]

    return _PLACEHOLDER.sub(_substitute, template)


def clean_name(name: str) -> str:
    """Replace characters that are not valid in a dataset/table identifier with '_'."""
    return _INVALID_NAME_CHARS.sub("_", name)


def format_name(template: str, context: TemplateContext) -> str:
    """Format a dataset or table name template and clean the result into a valid identifier."""
    # "my-db.public" must still land in a single dataset: "my_db_public"
    return clean_name(format_template(template, context))
