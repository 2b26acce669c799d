"""Idempotent ingestion: remembers which provider events were already seen."""

import logging
import threading
from collections import OrderedDict
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError

from issue_dispatch.models.common import Issue
from issue_dispatch.models.database import SeenEvent


class EventDeduplicator:
    """Tracks seen ``(source type, provider id)`` keys.

    The in-memory set is bounded; when a database manager is supplied the
    keys are also persisted in ``seen_events`` so restarts do not re-dispatch
    old events.
    """

    def __init__(self, db_manager=None, max_entries: int = 100000):
        self.db_manager = db_manager
        self.max_entries = max_entries
        self.logger = logging.getLogger(__name__)
        self._seen: "OrderedDict[Tuple[str, str], None]" = OrderedDict()
        self._lock = threading.Lock()

    def check_and_mark(self, issue: Issue) -> bool:
        """Atomically mark an issue's event as seen.

        Returns:
            True the first time a key is seen, False for every repeat
        """
        key = issue.dedup_key
        with self._lock:
            if key in self._seen:
                return False
            if self.db_manager is not None and not self._persist(key, issue.id):
                self._remember(key)
                return False
            self._remember(key)
            return True

    def is_seen(self, source_type: str, provider_id: str) -> bool:
        with self._lock:
            return (source_type, provider_id) in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def _remember(self, key: Tuple[str, str]) -> None:
        self._seen[key] = None
        while len(self._seen) > self.max_entries:
            self._seen.popitem(last=False)

    def _persist(self, key: Tuple[str, str], issue_id: str) -> bool:
        """Insert the key; False when another process or a past run already did."""
        source_type, provider_id = key
        try:
            with self.db_manager.get_session() as session:
                existing = session.query(SeenEvent).filter_by(
                    source_type=source_type, provider_id=provider_id
                ).first()
                if existing is not None:
                    return False
                session.add(SeenEvent(source_type=source_type, provider_id=provider_id, issue_id=issue_id))
            return True
        except IntegrityError:
            self.logger.debug(f"Seen event {key} inserted concurrently")
            return False

    def load_recent(self, limit: Optional[int] = None) -> int:
        """Warm the in-memory set from the database."""
        if self.db_manager is None:
            return 0
        limit = limit or self.max_entries
        with self.db_manager.get_session() as session:
            rows = (session.query(SeenEvent.source_type, SeenEvent.provider_id)
                    .order_by(SeenEvent.id.desc()).limit(limit).all())
        with self._lock:
            for source_type, provider_id in reversed(rows):
                self._remember((source_type, provider_id))
        self.logger.info(f"Loaded {len(rows)} seen events")
        return len(rows)
