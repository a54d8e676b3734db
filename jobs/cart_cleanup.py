"""
Cart / Story Cleanup Job

Deletes cart items whose reservation deadline has passed and stories past
their expiry. Deletes are grouped into one batch per owning user so a
failure for one user leaves everyone else's cleanup intact.

completed_count in the summary is the number of deleted documents.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Tuple

from jobs.base import ReconciliationJob, JobRunSummary
from services.ledger_store import LedgerStore, Collection

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


class CartCleanupJob(ReconciliationJob):
    """Remove expired cart reservations and stories"""

    job_id = "cart_cleanup"
    description = "Delete expired cart items and stories"

    def __init__(self, store: LedgerStore, page_size: int = DEFAULT_PAGE_SIZE):
        self.store = store
        self.page_size = page_size

    async def _execute(self, summary: JobRunSummary) -> None:
        now = await self.store.server_now()

        cart_items = await self.store.find_expired_cart_items(now, self.page_size)
        stories = await self.store.find_expired_stories(now, self.page_size)
        summary.candidate_count = len(cart_items) + len(stories)

        if not summary.candidate_count:
            logger.info("CART_CLEANUP_SCAN: nothing expired")
            return

        by_user: Dict[str, List[Tuple[Collection, str]]] = defaultdict(list)
        for item in cart_items:
            by_user[item.user_id].append((Collection.CART_ITEMS, item.id))
        for story in stories:
            by_user[story.user_id].append((Collection.STORIES, story.id))

        logger.info(
            f"🧹 CART_CLEANUP_SCAN: {len(cart_items)} cart items, {len(stories)} stories "
            f"across {len(by_user)} users"
        )

        for user_id, targets in by_user.items():
            batch = self.store.batch()
            for collection, doc_id in targets:
                batch.delete(collection, doc_id)
            try:
                await batch.commit()
            except Exception as e:
                summary.error_count += 1
                logger.error(f"❌ CART_CLEANUP_ERROR: user {user_id}: {e}", exc_info=True)
                continue
            summary.completed_count += len(targets)
