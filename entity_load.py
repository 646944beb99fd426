"""Reads of existing entities, tolerant of a missing owner or ordering column."""

from __future__ import annotations

import logging

from capability_probe import CapabilityProber
from pawlog.entities import EntityDefinition
from pawlog.errors import BackendError, classify_backend_error, undefined_column


logger = logging.getLogger("pawlog.load")

ORDER_COLUMN = "created_at"


async def load_owned_entities(
    store,
    definition: EntityDefinition,
    owner_id: str | None,
    prober: CapabilityProber | None = None,
) -> list[dict]:
    """Return the owner's rows, newest first.

    When the relation has no owner column every row is returned, matching what
    a shared table without per-user scoping looks like. A missing ordering column
    drops the ordering. Any other failure raises a WorkflowError subclass.
    """
    relation = definition.relation
    prober = prober or CapabilityProber()
    filters = {}
    if owner_id and definition.owner_column and prober.has_column(relation, definition.owner_column):
        filters[definition.owner_column] = owner_id
    order_by = ORDER_COLUMN if prober.has_column(relation, ORDER_COLUMN) else None

    # Each retry removes one of at most two optional query parts.
    for _ in range(3):
        try:
            rows = await store.select_rows(relation, filters, order_by=order_by, descending=True)
            break
        except BackendError as exc:
            column = prober.observe_error(relation, exc)
            if column is not None and column in filters:
                logger.warning("load_without_owner_filter relation=%s column=%s", relation, column)
                filters.pop(column)
                continue
            if column is not None and column == order_by:
                logger.warning("load_without_order relation=%s column=%s", relation, column)
                order_by = None
                continue
            logger.warning("load_failed relation=%s code=%s error=%s", relation, exc.code, exc.message)
            raise classify_backend_error(exc, relation) from exc

    for row in rows:
        prober.observe_row(relation, row)
    logger.info("load_ok relation=%s count=%s scoped=%s", relation, len(rows), bool(filters))
    return rows


async def check_column(store, relation: str, column: str, prober: CapabilityProber) -> bool | None:
    """Learn whether `column` exists with a one-row read of just that column.

    Returns None when the read fails for a reason other than the column itself;
    the answer is advisory and never blocks a submit.
    """
    if prober.is_known(relation, column):
        return prober.has_column(relation, column)
    try:
        await store.select_rows(relation, columns=[column], limit=1)
    except BackendError as exc:
        if undefined_column(exc) == column:
            prober.observe_error(relation, exc)
            logger.warning("column_missing relation=%s column=%s", relation, column)
            return False
        logger.warning("column_check_failed relation=%s column=%s code=%s", relation, column, exc.code)
        return None
    prober.mark_present(relation, column)
    return True
