"""Versioned envelopes for persisted documents.

Every document written to a store is wrapped as::

    {"schema": "transaction", "version": 2, "payload": {...}}

Reading unwraps and walks the payload forward through pure migration
functions, one version step at a time. The format is never guessed from
the payload's shape.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Dict, Tuple

from .errors import MigrationError

Migration = Callable[[Dict[str, Any]], Dict[str, Any]]

CURRENT_VERSIONS: Dict[str, int] = {
    "transaction": 2,
    "snapshot": 1,
    "holding": 1,
    "quote_cache": 1,
    "ledger_state": 1,
}

_MIGRATIONS: Dict[Tuple[str, int], Migration] = {}


def migration(schema: str, from_version: int) -> Callable[[Migration], Migration]:
    """Register ``fn`` as the step ``from_version -> from_version + 1`` of ``schema``."""

    def register(fn: Migration) -> Migration:
        _MIGRATIONS[(schema, from_version)] = fn
        return fn

    return register


def wrap(schema: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if schema not in CURRENT_VERSIONS:
        raise MigrationError(f"Unknown document schema: {schema}")
    return {"schema": schema, "version": CURRENT_VERSIONS[schema], "payload": payload}


def unwrap(document: Dict[str, Any], schema: str) -> Dict[str, Any]:
    """Return the payload of ``document`` migrated to the current version of ``schema``."""
    if document.get("schema") != schema:
        raise MigrationError(f"Expected a {schema!r} document, got {document.get('schema')!r}")
    try:
        version = int(document["version"])
        payload = dict(document["payload"])
    except (KeyError, TypeError, ValueError) as exc:
        raise MigrationError(f"Malformed {schema} envelope") from exc

    target = CURRENT_VERSIONS[schema]
    if version > target:
        raise MigrationError(f"{schema} version {version} is newer than supported version {target}")
    while version < target:
        step = _MIGRATIONS.get((schema, version))
        if step is None:
            raise MigrationError(f"No migration registered for {schema} v{version}")
        try:
            payload = step(payload)
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise MigrationError(f"Cannot migrate {schema} v{version}: {exc}") from exc
        version += 1
    return payload


@migration("transaction", 1)
def _transaction_v1_to_v2(payload: Dict[str, Any]) -> Dict[str, Any]:
    # v1 stored etf_id/type/date and kept the commission outside total_amount.
    migrated = dict(payload)
    migrated["instrument_id"] = migrated.pop("etf_id")
    migrated["kind"] = migrated.pop("type")
    migrated["occurred_at"] = migrated.pop("date")
    commission = migrated.pop("commission", "0") or "0"
    migrated["fees"] = str(commission)
    if migrated["kind"] in ("buy", "sell"):
        migrated["total_amount"] = str(Decimal(str(migrated["total_amount"])) + Decimal(str(commission)))
    migrated.setdefault("sequence", 0)
    migrated.setdefault("currency", "COP")
    return migrated
