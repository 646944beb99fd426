"""In-memory outbox of uploaded-but-unlinked media references."""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import List

from capability_probe import CapabilityProber
from pawlog.errors import BackendError


logger = logging.getLogger("pawlog.links")

PendingLink = dict


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class LinkOutbox:
    def __init__(self) -> None:
        self._links: List[PendingLink] = []

    def enqueue(self, relation: str, entity_id: str, column: str, url: str, owner_id: str | None = None) -> PendingLink:
        for link in self._links:
            if link["relation"] == relation and link["entity_id"] == entity_id and link["column"] == column:
                link["url"] = url
                return copy.deepcopy(link)
        link = {
            "link_id": str(uuid.uuid4()),
            "relation": relation,
            "entity_id": entity_id,
            "column": column,
            "url": url,
            "owner_id": owner_id,
            "attempts": 0,
            "last_error": None,
            "queued_at": _now(),
        }
        self._links.append(link)
        return copy.deepcopy(link)

    def pending(self, owner_id: str | None = None) -> list[PendingLink]:
        return copy.deepcopy([link for link in self._links if owner_id is None or link["owner_id"] == owner_id])

    def ack(self, link_id: str) -> bool:
        for idx, link in enumerate(self._links):
            if link.get("link_id") == link_id:
                del self._links[idx]
                return True
        return False

    def clear(self) -> None:
        self._links.clear()

    async def retry_pending(self, store, prober: CapabilityProber | None = None, owner_id: str | None = None) -> dict:
        """One pass over pending links; each is attempted once. Never touches view state.

        With `owner_id`, only that owner's links are attempted, so `store` may carry
        the owner's credentials.
        """
        linked: list[str] = []
        failed: list[str] = []
        for link in [item for item in self._links if owner_id is None or item["owner_id"] == owner_id]:
            link["attempts"] += 1
            try:
                row = await store.update(link["relation"], link["entity_id"], {link["column"]: link["url"]})
            except BackendError as exc:
                if prober is not None:
                    prober.observe_error(link["relation"], exc)
                link["last_error"] = exc.code
                failed.append(link["link_id"])
                logger.info(
                    "link_retry_failed relation=%s id=%s code=%s attempts=%s",
                    link["relation"],
                    link["entity_id"],
                    exc.code,
                    link["attempts"],
                )
                continue
            if not isinstance(row, dict) or row.get(link["column"]) != link["url"]:
                link["last_error"] = "LINK_NOT_APPLIED"
                failed.append(link["link_id"])
                continue
            if prober is not None:
                prober.mark_present(link["relation"], link["column"])
            self.ack(link["link_id"])
            linked.append(link["link_id"])
            logger.info("link_retry_ok relation=%s id=%s", link["relation"], link["entity_id"])
        return {"linked": linked, "failed": failed, "pending": len(self.pending(owner_id))}
