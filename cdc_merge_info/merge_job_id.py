"""
Merge Job Identifiers

Format:
    <prefix>_<project>_<dataset>_<table>_<yyyy_MM_dd_HH_mm_ss>UTC_<uuid4>

    datastream_main_sales_orders_2024_05_01_13_45_09UTC_1b4e28ba-2fa1-11d2-883f-0016d3cca427

The timestamp orders ids for the same destination; the uuid4 (128 random bits)
keeps ids unique when several merges for one table start in the same second.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

JOB_ID_PREFIX = "datastream"
JOB_ID_TIME_FORMAT = "%Y_%m_%d_%H_%M_%SUTC"

JOB_ID_PATTERN = re.compile(
    r"^(?P<prefix>[^_]+)_(?P<target>.+)_"
    r"(?P<timestamp>\d{4}_\d{2}_\d{2}_\d{2}_\d{2}_\d{2}UTC)_"
    r"(?P<token>[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12})$"
)


def new_job_id(
    project: str,
    dataset: str,
    table: str,
    prefix: str = JOB_ID_PREFIX,
    now: Optional[datetime] = None,
) -> str:
    """
    Generate a unique merge job id for a destination table.

    Args:
        project: Destination project / catalog
        dataset: Destination dataset / schema
        table: Destination table
        prefix: Job id prefix (default: "datastream")
        now: Timestamp to embed (default: current UTC time); naive values are treated as UTC

    Returns:
        Job id string

    Example:
        >>> new_job_id("main", "sales", "orders")
        'datastream_main_sales_orders_2024_05_01_13_45_09UTC_1b4e28ba-...'
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)
    return f"{prefix}_{project}_{dataset}_{table}_{now.strftime(JOB_ID_TIME_FORMAT)}_{uuid.uuid4()}"


def is_job_id(value: str, prefix: Optional[str] = None) -> bool:
    match = JOB_ID_PATTERN.match(value or "")
    if not match:
        return False
    return prefix is None or match.group("prefix") == prefix
