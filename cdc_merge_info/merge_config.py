"""
CDC Merge Info Configuration Loader

Loads the JSON configuration used to build a MergeInfoDeriver:

    {
      "project_id": "main",
      "staging": {"dataset": "staging_{_metadata_schema}", "table": "{_metadata_table}_log"},
      "destination": {"dataset": "{_metadata_schema}", "table": "{_metadata_table}"},
      "job_id_prefix": "datastream",
      "key_resolver": {
        "type": "static",
        "tables": {"sales.orders": {"primary_keys": ["order_id"], "sort_keys": ["update_ts"]}}
      },
      "cockroachdb": {"host": "...", "port": 26257, "user": "...", "password": "...", "database": "defaultdb"}
    }

key_resolver.type is one of "row_metadata" (default), "static" or "cockroachdb".
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .merge_exceptions import MergeConfigError
from .merge_info import MergeInfoDeriver
from .merge_job_id import JOB_ID_PREFIX
from .merge_keys import (
    CRDB_UPDATED_COLUMN,
    CockroachDBKeyResolver,
    RowMetadataKeyResolver,
    StaticKeyResolver,
)

KEY_RESOLVER_TYPES = ("row_metadata", "static", "cockroachdb")


@dataclass
class CockroachDBConfig:
    """CockroachDB connection configuration."""
    host: str
    port: int
    user: str
    password: str
    database: str


@dataclass
class NameTemplates:
    """Dataset and table name templates for one side of the merge."""
    dataset: str
    table: str


@dataclass
class KeyResolverConfig:
    """Which key resolver to use and its settings."""
    type: str = "row_metadata"
    tables: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    sort_keys: List[str] = field(default_factory=list)


@dataclass
class MergeInfoConfig:
    """Complete configuration for merge info derivation."""
    project_id: str
    staging: NameTemplates
    destination: NameTemplates
    job_id_prefix: str = JOB_ID_PREFIX
    key_resolver: KeyResolverConfig = field(default_factory=KeyResolverConfig)
    cockroachdb: Optional[CockroachDBConfig] = None


def load_config(config_file: str) -> Dict[str, Any]:
    """
    Load configuration from a JSON file.

    Args:
        config_file: Path to the JSON configuration file.

    Returns:
        Dictionary containing the configuration, or None if file cannot be loaded
    """
    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
        print(f"✅ Configuration loaded from: {config_file}")
        return config
    except (OSError, ValueError) as e:
        print(f"⚠️  Error loading config file: {e}")
        return None


def _templates(config: Dict[str, Any], section: str, errors: List[str]) -> NameTemplates:
    values = config.get(section) or {}
    for name in ("dataset", "table"):
        if not values.get(name):
            errors.append(f"'{section}.{name}' template is required")
    return NameTemplates(dataset=values.get("dataset", ""), table=values.get("table", ""))


def process_config(config: Dict[str, Any], verbose: bool = True) -> MergeInfoConfig:
    """
    Validate a raw configuration dictionary and convert it to dataclasses.

    Args:
        config: Raw configuration dictionary (e.g. from load_config)
        verbose: If True, print a configuration summary (default: True)

    Returns:
        MergeInfoConfig

    Raises:
        MergeConfigError: If required values are missing or invalid (all problems are reported at once)
    """
    errors: List[str] = []

    project_id = config.get("project_id")
    if not project_id:
        errors.append("'project_id' is required")

    staging = _templates(config, "staging", errors)
    destination = _templates(config, "destination", errors)

    resolver_raw = config.get("key_resolver") or {}
    resolver_type = resolver_raw.get("type", "row_metadata")
    if resolver_type not in KEY_RESOLVER_TYPES:
        errors.append(f"'key_resolver.type' must be one of {list(KEY_RESOLVER_TYPES)}, got '{resolver_type}'")
    default_sort = [CRDB_UPDATED_COLUMN] if resolver_type == "cockroachdb" else []
    key_resolver = KeyResolverConfig(
        type=resolver_type,
        tables=resolver_raw.get("tables") or {},
        sort_keys=resolver_raw.get("sort_keys", default_sort) or [],
    )
    if resolver_type == "static" and not key_resolver.tables:
        errors.append("'key_resolver.tables' is required for the static key resolver")

    cockroachdb = None
    if config.get("cockroachdb"):
        crdb = config["cockroachdb"]
        missing = [k for k in ("host", "user", "database") if not crdb.get(k)]
        if missing:
            errors.append(f"'cockroachdb' is missing {missing}")
        else:
            cockroachdb = CockroachDBConfig(
                host=crdb["host"],
                port=int(crdb.get("port", 26257)),
                user=crdb["user"],
                password=crdb.get("password", ""),
                database=crdb["database"],
            )

    if errors:
        raise MergeConfigError(errors)

    processed_config = MergeInfoConfig(
        project_id=project_id,
        staging=staging,
        destination=destination,
        job_id_prefix=config.get("job_id_prefix") or JOB_ID_PREFIX,
        key_resolver=key_resolver,
        cockroachdb=cockroachdb,
    )

    if verbose:
        print("✅ Configuration loaded")
        print(f"   Project: {project_id}")
        print(f"   Staging: {staging.dataset}.{staging.table}")
        print(f"   Destination: {destination.dataset}.{destination.table}")
        print(f"   Key Resolver: {resolver_type}")
        print(f"   Job Id Prefix: {processed_config.job_id_prefix}")

    return processed_config


def load_and_process_config(config_file: str, verbose: bool = True) -> MergeInfoConfig:
    """
    Load and process configuration in one step.

    Returns:
        MergeInfoConfig, or None if the file cannot be loaded
    """
    config = load_config(config_file)
    if config is None:
        return None
    return process_config(config, verbose=verbose)


def build_key_resolver(config: MergeInfoConfig, conn=None):
    """
    Create the key resolver selected in the configuration.

    Args:
        config: Processed MergeInfoConfig
        conn: Open CockroachDB connection for the "cockroachdb" resolver; when None a
              connection is opened from config.cockroachdb

    Raises:
        MergeConfigError: If the cockroachdb resolver has neither conn nor connection settings
    """
    settings = config.key_resolver
    if settings.type == "static":
        return StaticKeyResolver(settings.tables, default_sort_keys=settings.sort_keys)
    if settings.type == "cockroachdb":
        if conn is None:
            if config.cockroachdb is None:
                raise MergeConfigError(["'cockroachdb' connection settings are required for the cockroachdb key resolver"])
            from .cockroachdb_conn import get_cockroachdb_connection
            crdb = config.cockroachdb
            conn = get_cockroachdb_connection(crdb.host, crdb.port, crdb.user, crdb.password, crdb.database)
        return CockroachDBKeyResolver(conn, sort_keys=settings.sort_keys)
    return RowMetadataKeyResolver()


def build_deriver(config: MergeInfoConfig, metrics=None, conn=None, key_resolver=None):
    """
    Create a MergeInfoDeriver from configuration.

    Example:
        >>> config = load_and_process_config("merge_info.json")
        >>> metrics = MergeMetrics()
        >>> deriver = build_deriver(config, metrics=metrics)
    """
    if key_resolver is None:
        key_resolver = build_key_resolver(config, conn=conn)
    return MergeInfoDeriver.from_config(config, key_resolver=key_resolver, metrics=metrics)
