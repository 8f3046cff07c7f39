"""
Built-in procedure catalog.

Procedures are looked up by their CLI name::

    from hostops.procedures import get_procedure

    procedure = get_procedure("backup-system")
"""

from __future__ import annotations

from typing import Dict, List

from hostops.procedures import (
    backup,
    cleanup,
    database,
    disk,
    hardening,
    health,
    mysql_maintenance,
    pg_maintenance,
    services,
)
from hostops.procedures.base import Procedure

__all__ = ["Procedure", "PROCEDURES", "get_procedure", "list_procedures", "register"]

PROCEDURES: Dict[str, Procedure] = {}


def register(procedure: Procedure) -> Procedure:
    """
    Add a procedure to the catalog.

    Raises:
        ValueError: If the name is already taken
    """
    if procedure.name in PROCEDURES:
        raise ValueError(f"procedure already registered: {procedure.name}")
    PROCEDURES[procedure.name] = procedure
    return procedure


def get_procedure(name: str) -> Procedure:
    """
    Raises:
        KeyError: If no procedure has that name
    """
    try:
        return PROCEDURES[name]
    except KeyError:
        raise KeyError(f"unknown procedure: {name}") from None


def list_procedures() -> List[Procedure]:
    return sorted(PROCEDURES.values(), key=lambda p: p.name)


for _module in (
    backup,
    database,
    cleanup,
    disk,
    services,
    health,
    hardening,
    pg_maintenance,
    mysql_maintenance,
):
    register(_module.PROCEDURE)
