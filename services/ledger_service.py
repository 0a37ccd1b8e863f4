"""
Dedup Ledger Service

Append-only record of source URLs that have been turned into cards. The
ledger is the single authority on "already processed" for manual runs,
cron passes and background loops alike. A commit that loses a race is
reported as None, never as an exception.
"""

from typing import Optional

from data.models import PostedLink
from data.protocols import LinkLedgerStorage
from utils.logger import get_logger

logger = get_logger(__name__)


class DedupLedger:
    """Ledger bound to one news source."""

    def __init__(self, storage: LinkLedgerStorage, source: str):
        """
        Args:
            storage: Backing store with an atomic conditional insert.
            source: Source id every URL in this ledger belongs to.
        """
        self.storage = storage
        self.source = source

    def is_processed(self, url: str) -> bool:
        return self.storage.is_link_processed(self.source, url)

    def commit(self, url: str, title: str) -> Optional[PostedLink]:
        """
        Record url as processed.

        Returns:
            Optional[PostedLink]: The new ledger row, or None when another
            trigger already committed the same URL.
        """
        link = self.storage.insert_posted_link(self.source, url, title)
        if link is None:
            logger.info(f"Skipping {url}: already committed to the {self.source} ledger")
        return link
