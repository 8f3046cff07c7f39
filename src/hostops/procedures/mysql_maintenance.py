"""
mysql-maintenance: optimize, analyze and check the local MySQL server.

The password is resolved once when the run starts and handed to every
step through ``MYSQL_PWD``.
"""

from __future__ import annotations

from functools import partial
from typing import Dict, List, Optional

from hostops.executor import CommandResult
from hostops.platform import OSFamily
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure
from hostops.procedures.database import mysql_databases, mysql_env
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import SUBPROCESS_LONG_TIMEOUT_S

Env = Optional[Dict[str, str]]

FRAGMENTATION_SQL = (
    "SELECT TABLE_SCHEMA, TABLE_NAME, ROUND(DATA_FREE / 1024 / 1024, 2) "
    "FROM information_schema.TABLES "
    "WHERE TABLE_SCHEMA NOT IN ('information_schema', 'performance_schema', 'mysql', 'sys') "
    "AND DATA_FREE > 0 ORDER BY DATA_FREE DESC LIMIT 10;"
)


def mysql(context: StepContext, sql: str, env: Env) -> CommandResult:
    return context.run("mysql", ["-u", context.config.mysql_user, "-N", "-B", "-e", sql], env=env)


def _mysqlcheck(context: StepContext, env: Env, action: str, *options: str) -> Outcome:
    databases = mysql_databases(context, env)
    if not databases:
        return Skipped("no user databases found")
    result = context.run(
        "mysqlcheck",
        ["-u", context.config.mysql_user, *options, "--databases", *databases],
        env=env,
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    )
    problems = [line for line in result.lines() if line.lower().startswith(("error", "warning"))]
    for line in problems:
        context.warning("  %s", line)
    if not result.ok:
        return Failure(error=f"{action} failed", detail=result.stderr.strip() or "; ".join(problems))
    return Success(f"{action}: {len(databases)} database(s)")


def check_connection(context: StepContext, env: Env) -> Outcome:
    mysql(context, "SELECT 1;", env).check("Connecting to MySQL (check credentials)")
    return Success("connected to MySQL")


def optimize_tables(context: StepContext, env: Env) -> Outcome:
    return _mysqlcheck(context, env, "optimize", "--optimize")


def analyze_tables(context: StepContext, env: Env) -> Outcome:
    return _mysqlcheck(context, env, "analyze", "--analyze")


def check_tables(context: StepContext, env: Env) -> Outcome:
    return _mysqlcheck(context, env, "check", "--check", "--auto-repair")


def purge_binary_logs(context: StepContext, env: Env) -> Outcome:
    variable = mysql(context, "SHOW VARIABLES LIKE 'log_bin';", env).check("Reading log_bin")
    if "ON" not in variable.stdout.split():
        return Skipped("binary logging is not enabled")
    days = context.config.retention_days
    mysql(context, f"PURGE BINARY LOGS BEFORE DATE_SUB(NOW(), INTERVAL {days} DAY);", env).check(
        "Purging binary logs"
    )
    return Success(f"binary logs older than {days} day(s) purged")


def fragmentation_report(context: StepContext, env: Env) -> Outcome:
    rows = mysql(context, FRAGMENTATION_SQL, env).check("Reading table fragmentation").lines()
    for row in rows:
        context.info("  %s", row)
    if not rows:
        return Success("no fragmented tables")
    return Success(f"{len(rows)} fragmented table(s) reported")


def build(context: StepContext) -> List[Step]:
    env = mysql_env(context)
    return [
        Step("check-connection", partial(check_connection, env=env), critical=True),
        Step("optimize-tables", partial(optimize_tables, env=env)),
        Step("analyze-tables", partial(analyze_tables, env=env)),
        Step("check-tables", partial(check_tables, env=env)),
        Step("purge-binary-logs", partial(purge_binary_logs, env=env)),
        Step("fragmentation-report", partial(fragmentation_report, env=env)),
    ]


PROCEDURE = Procedure(
    name="mysql-maintenance",
    description="Optimize, analyze and check MySQL tables and purge old binary logs",
    requirements=Requirements(
        binaries=["mysql", "mysqlcheck"],
        os_families=[OSFamily.LINUX],
    ),
    build=build,
    lock="mysql-maintenance",
)
