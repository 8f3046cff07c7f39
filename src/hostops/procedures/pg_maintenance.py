"""
postgresql-maintenance: routine upkeep of the local PostgreSQL cluster.

Every statement runs through ``psql`` as the database owner account. The
connection check is critical; everything after it keeps going past a
database that fails.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from hostops.executor import CommandResult
from hostops.platform import OSFamily
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure, as_user, prune_older_than
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import SUBPROCESS_LONG_TIMEOUT_S

PG_LOG_DIR = Path("/var/log/postgresql")

LOG_COMPRESS_AFTER_DAYS = 7
LONG_QUERY_MINUTES = 5
CACHE_HIT_MIN_PERCENT = 90.0

DATABASES_SQL = "SELECT datname FROM pg_database WHERE datistemplate = false;"

LONG_QUERIES_SQL = (
    "SELECT pid, usename, datname, now() - query_start, left(query, 100) "
    "FROM pg_stat_activity "
    "WHERE state = 'active' "
    f"AND query_start < now() - interval '{LONG_QUERY_MINUTES} minutes' "
    "AND pid <> pg_backend_pid() "
    "ORDER BY query_start;"
)

CACHE_HIT_SQL = (
    "SELECT round(sum(blks_hit) * 100.0 / nullif(sum(blks_hit) + sum(blks_read), 0), 2) "
    "FROM pg_stat_database WHERE datname NOT IN ('template0', 'template1');"
)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def psql(
    context: StepContext,
    sql: str,
    database: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """Run one statement with unaligned, tuples-only output."""
    args = ["-At"]
    if database:
        args += ["-d", database]
    args += ["-c", sql]
    argv = as_user(context.config.postgres_user, "psql", args)
    return context.run(argv[0], argv[1:], timeout=timeout)


def _databases(context: StepContext) -> List[str]:
    return psql(context, DATABASES_SQL).check("Listing PostgreSQL databases").lines()


def _for_each_database(context: StepContext, action: str, sql_for) -> Outcome:
    done, failed = [], []
    for db in _databases(context):
        result = psql(context, sql_for(db), database=db, timeout=SUBPROCESS_LONG_TIMEOUT_S)
        if result.ok:
            done.append(db)
        else:
            context.warning("%s failed for %s: %s", action, db, result.stderr.strip())
            failed.append(db)
    if failed:
        return Failure(
            error=f"{action}: {len(failed)} of {len(done) + len(failed)} database(s) failed",
            detail=", ".join(failed),
        )
    return Success(f"{action}: {len(done)} database(s)")


def check_connection(context: StepContext) -> Outcome:
    psql(context, "SELECT 1;").check("Connecting to PostgreSQL")
    return Success("connected to PostgreSQL")


def vacuum_analyze(context: StepContext) -> Outcome:
    return _for_each_database(context, "vacuum analyze", lambda db: "VACUUM ANALYZE;")


def reindex(context: StepContext) -> Outcome:
    return _for_each_database(context, "reindex", lambda db: f"REINDEX DATABASE {quote_ident(db)};")


def long_running_queries(context: StepContext) -> Outcome:
    rows = psql(context, LONG_QUERIES_SQL).check("Reading pg_stat_activity").lines()
    for row in rows:
        context.warning("  long-running: %s", row)
    if not rows:
        return Success(f"no queries running longer than {LONG_QUERY_MINUTES} minutes")
    return Success(f"{len(rows)} query(ies) running longer than {LONG_QUERY_MINUTES} minutes")


def connections(context: StepContext) -> Outcome:
    current = psql(context, "SELECT count(*) FROM pg_stat_activity;").check(
        "Counting connections"
    ).stdout.strip()
    limit = psql(context, "SHOW max_connections;").check("Reading max_connections").stdout.strip()
    return Success(f"{current or '?'} / {limit or '?'} connections")


def cache_hit_ratio(context: StepContext) -> Outcome:
    raw = psql(context, CACHE_HIT_SQL).check("Reading cache statistics").stdout.strip()
    if not raw:
        return Skipped("no block reads recorded yet")
    ratio = float(raw)
    if ratio < CACHE_HIT_MIN_PERCENT:
        return Failure(
            error=f"cache hit ratio {ratio:.2f}% is below {CACHE_HIT_MIN_PERCENT:.0f}%",
            detail="consider increasing shared_buffers",
        )
    return Success(f"cache hit ratio {ratio:.2f}%")


def clean_server_logs(context: StepContext) -> Outcome:
    if not PG_LOG_DIR.is_dir():
        return Skipped(f"{PG_LOG_DIR} does not exist")
    context.run(
        "find",
        [str(PG_LOG_DIR), "-type", "f", "-name", "*.log",
         "-mtime", f"+{LOG_COMPRESS_AFTER_DAYS}", "-exec", "gzip", "-f", "{}", "+"],
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    ).check("Compressing old PostgreSQL logs")
    return prune_older_than(context, PG_LOG_DIR, ["*.log.gz"], context.config.retention_days)


def build(context: StepContext) -> List[Step]:
    return [
        Step("check-connection", check_connection, critical=True),
        Step("vacuum-analyze", vacuum_analyze),
        Step("reindex", reindex),
        Step("long-running-queries", long_running_queries),
        Step("connections", connections),
        Step("cache-hit-ratio", cache_hit_ratio),
        Step("clean-server-logs", clean_server_logs),
    ]


PROCEDURE = Procedure(
    name="postgresql-maintenance",
    description="Vacuum, analyze and reindex PostgreSQL and report on its health",
    requirements=Requirements(
        privileged=True,
        binaries=["psql", "find", "gzip"],
        os_families=[OSFamily.LINUX],
    ),
    build=build,
    lock="postgresql-maintenance",
)
