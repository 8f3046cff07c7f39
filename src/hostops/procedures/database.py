"""
database-backup: dumps of local MySQL, PostgreSQL, MongoDB and Redis servers.

Each engine whose client tools are absent is skipped. A dump failure for
one database does not stop the others; the engine's step fails
(non-critically) listing what could not be dumped.

Credentials never appear in an argument vector: MySQL reads
``MYSQL_PWD``, Redis reads ``REDISCLI_AUTH`` and mongodump reads a
private YAML file passed with ``--config``.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional

import yaml

from hostops.platform import OSFamily
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure, as_user, ensure_directory, prune_older_than
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import SUBPROCESS_LONG_TIMEOUT_S

MYSQL_SYSTEM_DATABASES = {"information_schema", "performance_schema", "mysql", "sys"}

POSTGRES_LIST_SQL = (
    "SELECT datname FROM pg_database "
    "WHERE datistemplate = false AND datname != 'postgres';"
)

OPTIONAL_TOOLS = ["mysql", "mysqldump", "psql", "pg_dump", "pg_dumpall", "mongodump", "redis-cli"]


def _backup_root(context: StepContext) -> Path:
    return Path(context.config.db_backup_dir)


def _engine_dir(context: StepContext, engine: str) -> Path:
    return _backup_root(context) / f"{engine}_{context.timestamp}"


def _dump_report(engine: str, done: List[str], failed: List[str]) -> Outcome:
    if failed:
        return Failure(
            error=f"{engine}: {len(failed)} of {len(done) + len(failed)} database(s) failed",
            detail=", ".join(failed),
        )
    return Success(f"{engine}: {len(done)} database(s) dumped")


def create_backup_dir(context: StepContext) -> Outcome:
    return ensure_directory(context, _backup_root(context))


def mysql_env(context: StepContext) -> Optional[Dict[str, str]]:
    """Environment carrying the MySQL password, asking for it if unset."""
    secret = context.config.mysql_password
    if secret is not None:
        password = secret.get_secret_value()
    else:
        password = context.inputs.ask(
            "mysql_password",
            f"MySQL password for {context.config.mysql_user}",
            secret=True,
            default="",
        )
    return {"MYSQL_PWD": password} if password else None


def mysql_databases(context: StepContext, env: Optional[Dict[str, str]]) -> List[str]:
    """User databases on the local MySQL server, system schemas excluded."""
    listing = context.run(
        "mysql", ["-u", context.config.mysql_user, "-N", "-B", "-e", "SHOW DATABASES;"], env=env
    ).check("Listing MySQL databases (check credentials)")
    return [db for db in listing.lines() if db not in MYSQL_SYSTEM_DATABASES]


def backup_mysql(context: StepContext) -> Outcome:
    if not context.platform.has("mysql") or not context.platform.has("mysqldump"):
        return Skipped("MySQL client tools not installed")

    user = context.config.mysql_user
    env = mysql_env(context)
    databases = mysql_databases(context, env)
    if not databases:
        return Skipped("no user databases found")

    target = _engine_dir(context, "mysql")
    ensure_directory(context, target)
    done, failed = [], []
    for db in databases:
        dump = target / f"{db}.sql"
        result = context.run(
            "mysqldump",
            ["-u", user, "--single-transaction", "--routines", "--triggers",
             f"--result-file={dump}", db],
            env=env,
            timeout=SUBPROCESS_LONG_TIMEOUT_S,
        )
        if result.ok and context.run("gzip", ["-f", str(dump)]).ok:
            context.info("Backed up MySQL database %s", db)
            done.append(db)
        else:
            context.warning("Failed to back up MySQL database %s", db)
            failed.append(db)
    return _dump_report("mysql", done, failed)


def _pg_dump_to(context: StepContext, program: str, args: List[str], dump: Path) -> bool:
    # The dump tool runs as the database owner and writes to stdout; this
    # process writes the file, since the owner cannot enter the 0700 directory.
    argv = as_user(context.config.postgres_user, program, args)
    result = context.run(argv[0], argv[1:], timeout=SUBPROCESS_LONG_TIMEOUT_S)
    if not result.ok:
        return False
    context.write_text(dump, result.stdout, compress=True)
    return True


def backup_postgresql(context: StepContext) -> Outcome:
    if not context.platform.has("psql") or not context.platform.has("pg_dump"):
        return Skipped("PostgreSQL client tools not installed")

    argv = as_user(context.config.postgres_user, "psql", ["-At", "-c", POSTGRES_LIST_SQL])
    databases = context.run(argv[0], argv[1:]).check("Listing PostgreSQL databases").lines()

    target = _engine_dir(context, "postgresql")
    ensure_directory(context, target)
    done, failed = [], []
    for db in databases:
        if _pg_dump_to(context, "pg_dump", [db], target / f"{db}.sql.gz"):
            context.info("Backed up PostgreSQL database %s", db)
            done.append(db)
        else:
            context.warning("Failed to back up PostgreSQL database %s", db)
            failed.append(db)

    if _pg_dump_to(context, "pg_dumpall", [], target / "all_databases.sql.gz"):
        done.append("(all)")
    else:
        failed.append("(all)")
    return _dump_report("postgresql", done, failed)


@contextlib.contextmanager
def mongo_credentials_file(context: StepContext, password: str) -> Generator[Path, None, None]:
    """
    A mongodump ``--config`` file holding ``password``, removed afterwards.

    The file is created with mode 0600. Dry runs get a placeholder path
    and nothing is written.
    """
    if context.dry_run:
        yield Path(tempfile.gettempdir()) / "hostops-mongodump.yaml"
        return
    fd, name = tempfile.mkstemp(prefix="hostops-mongodump-", suffix=".yaml")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump({"password": password}, f)
        yield Path(name)
    finally:
        os.unlink(name)


def backup_mongodb(context: StepContext) -> Outcome:
    if not context.platform.has("mongodump"):
        return Skipped("mongodump not installed")

    target = _engine_dir(context, "mongodb")
    user = context.config.mongo_user
    secret = context.config.mongo_password
    with contextlib.ExitStack() as stack:
        args = [f"--out={target}"]
        if user and secret is not None:
            config_file = stack.enter_context(
                mongo_credentials_file(context, secret.get_secret_value())
            )
            args = [f"--username={user}", f"--config={config_file}", *args]
        context.run("mongodump", args, timeout=SUBPROCESS_LONG_TIMEOUT_S).check("Running mongodump")

    archive = target.with_name(target.name + ".tar.gz")
    context.run(
        "tar", ["-czf", str(archive), "-C", str(target.parent), target.name],
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    ).check("Compressing MongoDB dump")
    context.run("rm", ["-rf", str(target)]).check("Removing uncompressed MongoDB dump")
    return Success(f"mongodb: {archive}")


def backup_redis(context: StepContext) -> Outcome:
    if not context.platform.has("redis-cli"):
        return Skipped("redis-cli not installed")

    config = context.config
    env = None
    if config.redis_password is not None:
        env = {"REDISCLI_AUTH": config.redis_password.get_secret_value()}

    target = _engine_dir(context, "redis")
    ensure_directory(context, target)
    snapshot = target / "dump.rdb"
    context.run(
        "redis-cli",
        ["-h", config.redis_host, "-p", str(config.redis_port), "--rdb", str(snapshot)],
        env=env,
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    ).check("Fetching Redis snapshot")
    context.run("gzip", ["-f", str(snapshot)]).check("Compressing Redis snapshot")
    return Success(f"redis: {snapshot}.gz")


def prune_old_backups(context: StepContext) -> Outcome:
    return prune_older_than(
        context,
        _backup_root(context),
        ["*.sql.gz", "*.tar.gz", "*.rdb.gz"],
        context.config.retention_days,
        remove_empty_dirs=True,
    )


def build(context: StepContext) -> List[Step]:
    return [
        Step("create-backup-dir", create_backup_dir, critical=True),
        Step("backup-mysql", backup_mysql),
        Step("backup-postgresql", backup_postgresql),
        Step("backup-mongodb", backup_mongodb),
        Step("backup-redis", backup_redis),
        Step("prune-old-backups", prune_old_backups),
    ]


PROCEDURE = Procedure(
    name="database-backup",
    description="Dump MySQL, PostgreSQL, MongoDB and Redis with compression and rotation",
    requirements=Requirements(
        binaries=["gzip", "tar", "find", "install"],
        optional_binaries=OPTIONAL_TOOLS,
        os_families=[OSFamily.LINUX],
    ),
    build=build,
    lock="database-backup",
)
