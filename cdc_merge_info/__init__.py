"""
CDC Merge Info

Derives merge job descriptors (MergeInfo) from CDC change events: which staging
table to merge into which destination table, on which primary keys, ordered by
which sort keys, under which unique job id.
"""

# Change events and keys
from .merge_event import ChangeEvent, TableId, METADATA_DELETED
from .merge_keys import (
    KeySet,
    RowMetadataKeyResolver,
    StaticKeyResolver,
    CockroachDBKeyResolver,
)

# Derivation
from .merge_template import TemplateContext, format_template, format_name
from .merge_job_id import new_job_id, is_job_id, JOB_ID_PREFIX
from .merge_info import MergeInfo, MergeInfoDeriver
from .merge_exceptions import (
    MergeInfoError,
    TemplateFormatError,
    KeyResolutionError,
    MergeConfigError,
    DerivationError,
    DerivationErrorKind,
    DerivationResult,
)

# Metrics and configuration
from .merge_metrics import MergeMetrics, AccumulatorMergeMetrics
from .merge_config import (
    MergeInfoConfig,
    load_and_process_config,
    process_config,
    build_deriver,
)

__all__ = [
    # Events and keys
    'ChangeEvent',
    'TableId',
    'METADATA_DELETED',
    'KeySet',
    'RowMetadataKeyResolver',
    'StaticKeyResolver',
    'CockroachDBKeyResolver',

    # Derivation
    'TemplateContext',
    'format_template',
    'format_name',
    'new_job_id',
    'is_job_id',
    'JOB_ID_PREFIX',
    'MergeInfo',
    'MergeInfoDeriver',

    # Errors
    'MergeInfoError',
    'TemplateFormatError',
    'KeyResolutionError',
    'MergeConfigError',
    'DerivationError',
    'DerivationErrorKind',
    'DerivationResult',

    # Metrics and configuration
    'MergeMetrics',
    'AccumulatorMergeMetrics',
    'MergeInfoConfig',
    'load_and_process_config',
    'process_config',
    'build_deriver',
]

__version__ = '0.1.0'
