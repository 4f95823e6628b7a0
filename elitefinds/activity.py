"""
activity.py — Records who-did-what entries in the logs collection.

Recording an action must never break the action itself, so every failure
here is logged and swallowed.
"""

import logging
import threading

from elitefinds.clocks import timestamps
from elitefinds.models import LogEntry
from elitefinds.repositories import LogRepository

logger = logging.getLogger(__name__)


class ActivityLogger:
    def __init__(self, session):
        self.session = session
        self._repository = None
        self._lock = threading.Lock()

    @property
    def repository(self):
        """LogRepository, created on first use; None while disconnected."""
        with self._lock:
            if self._repository is None and self.session.is_connected():
                self._repository = LogRepository(self.session)
            return self._repository

    def log(self, action_type, module, entity_type, entity_identifier, details, now=None):
        """
        Args:
            action_type: "Added", "Edited" or "Deleted"
            module: "Stock" or "Revenue"
            entity_type: "Product" or "Sale"
            entity_identifier: SKU or transaction ID
            details: short description shown in the log table
        """
        try:
            repository = self.repository
            if repository is None:
                return False
            instant, pkt, gmt = timestamps(now)
            entry = LogEntry(
                action_type=action_type,
                module=module,
                entity_type=entity_type,
                entity_identifier=entity_identifier,
                details=details,
                timestamp=instant,
                timestamp_pkt=pkt,
                timestamp_gmt=gmt,
            )
            return repository.add(entry)
        except Exception as e:
            logger.error("Error logging action %s %s %s: %s", action_type, entity_type, entity_identifier, e)
            return False
