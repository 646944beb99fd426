"""Primary insert of an entity record with a single schema-drift fallback."""

from __future__ import annotations

import logging

from capability_probe import CapabilityProber
from pawlog.entities import EntityDefinition
from pawlog.errors import BackendError, SchemaDriftError, TransportError, classify_backend_error


logger = logging.getLogger("pawlog.insert")


async def insert_entity(
    store,
    definition: EntityDefinition,
    fields: dict,
    owner_id: str | None,
    prober: CapabilityProber | None = None,
) -> dict:
    """Insert and return the persisted row.

    Raises a WorkflowError subclass on terminal failure. Only an undefined-column
    error naming one of the definition's strippable columns is retried, once,
    with that column removed; required fields are never dropped.
    """
    relation = definition.relation
    record = dict(fields)
    if owner_id and definition.owner_column:
        record[definition.owner_column] = owner_id

    try:
        row = await store.insert(relation, record)
    except BackendError as exc:
        err = classify_backend_error(exc, relation)
        if prober is not None:
            prober.observe_error(relation, exc)
        column = err.column if isinstance(err, SchemaDriftError) else None
        if column is None or column not in record or column not in definition.strippable_columns():
            logger.warning("insert_failed relation=%s code=%s error=%s", relation, exc.code, exc.message)
            raise err from exc

        logger.warning("insert_retry_without_column relation=%s column=%s", relation, column)
        retry_record = {k: v for k, v in record.items() if k != column}
        try:
            row = await store.insert(relation, retry_record)
        except BackendError as retry_exc:
            if prober is not None:
                prober.observe_error(relation, retry_exc)
            logger.warning(
                "insert_retry_failed relation=%s code=%s error=%s", relation, retry_exc.code, retry_exc.message
            )
            raise classify_backend_error(retry_exc, relation) from retry_exc

    if not isinstance(row, dict) or row.get("id") in (None, ""):
        raise TransportError(code="INSERT_NO_ID", message=f"insert into {relation} returned no id")
    if prober is not None:
        prober.observe_row(relation, row)
    logger.info("insert_ok relation=%s id=%s", relation, row.get("id"))
    return row
