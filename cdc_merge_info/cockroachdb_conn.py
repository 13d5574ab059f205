"""
CockroachDB Connection Utilities

Connection used by CockroachDBKeyResolver to read primary keys from
information_schema. Uses the pg8000 DBAPI 2.0 (cursor) API.
"""

import logging
import ssl

import pg8000

logger = logging.getLogger(__name__)


def _check_connection(conn) -> str:
    """
    Run SELECT version() on a new connection; close it and re-raise on failure.

    Returns:
        Server version string
    """
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT version()")
            version = cur.fetchone()[0]
    except Exception:
        conn.close()
        logger.error("CockroachDB connection check failed", exc_info=True)
        raise
    print("✅ Connected to CockroachDB")
    print(f"   Version: {version[:50]}...")
    return version


def _insecure_tls() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def get_cockroachdb_connection(host: str, port: int, user: str, password: str, database: str, test: bool = True):
    """
    Open the pg8000 connection CockroachDBKeyResolver reads primary keys through.

    A ":port" suffix on the host is ignored; TLS is used without certificate verification.
    """
    host = host.partition(":")[0]
    conn = pg8000.connect(
        user=user, password=password, host=host, port=port, database=database, ssl_context=_insecure_tls()
    )
    logger.info("Opened CockroachDB connection to %s:%s/%s", host, port, database)
    if test:
        _check_connection(conn)
    return conn
