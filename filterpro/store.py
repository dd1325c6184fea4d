# filterpro/store.py
import threading
from typing import Set

class Store:
    """
    Process-local runtime state: readiness of the scheduler and the set of
    datasources with a sync currently running.
    """
    def __init__(self):
        self.syncing: Set[str] = set()
        self.lock = threading.Lock()
        self.is_ready: bool = False

    def try_begin_sync(self, datasource_id: str) -> bool:
        """
        Moves a datasource from idle to syncing. Returns False, leaving the
        state untouched, when a sync for it is already running.
        """
        with self.lock:
            if datasource_id in self.syncing:
                return False
            self.syncing.add(datasource_id)
            return True

    def end_sync(self, datasource_id: str) -> None:
        """Moves a datasource back to idle."""
        with self.lock:
            self.syncing.discard(datasource_id)

    def is_syncing(self, datasource_id: str) -> bool:
        with self.lock:
            return datasource_id in self.syncing

    def mark_ready(self) -> None:
        with self.lock:
            self.is_ready = True

    def mark_loading(self) -> None:
        with self.lock:
            self.is_ready = False
