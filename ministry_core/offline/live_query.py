# =============================================================================
# ministry_core/offline/live_query.py
# Reactive standing queries over the Local Mirror
# =============================================================================
"""
LiveQuery - a standing query that re-runs whenever its collection is written.

Screens subscribe once and receive fresh results after every committed write
to the collection, without explicit invalidation calls.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Callable, List, Optional, Union

from ministry_core.data.filters import Filter, RowPredicate
from ministry_core.data.models import Profile, Record
from ministry_core.logging import get_logger

if TYPE_CHECKING:
    from ministry_core.offline.local_mirror import LocalMirror

logger = get_logger(__name__)

ResultCallback = Callable[[List[Record]], None]


class LiveQuery:
    """
    Usage:
        members = mirror.query("members", Filter.eq("unit_id", unit_id))
        unsubscribe = members.subscribe(render_members)
        ...
        unsubscribe()   # screen unmounted; render_members is never called again
        members.close()
    """

    def __init__(
        self,
        mirror: LocalMirror,
        collection: str,
        where: Union[Filter, RowPredicate, None] = None,
        scope: Optional[Profile] = None,
    ):
        self._mirror = mirror
        self.collection = collection
        self.where = where
        self.scope = scope
        self._callbacks: List[ResultCallback] = []
        self._results: List[Record] = []
        self.closed = False
        self.refresh_count = 0
        self.refresh()

    @property
    def results(self) -> List[Record]:
        return list(self._results)

    def refresh(self) -> List[Record]:
        """Re-evaluate against the mirror and push results to subscribers."""
        if self.closed:
            return self.results
        self._results = self._mirror.select(self.collection, self.where, scope=self.scope)
        self.refresh_count += 1
        self._notify_callbacks()
        return self.results

    def subscribe(self, callback: ResultCallback, emit_current: bool = True) -> Callable[[], None]:
        """
        Register a callback for fresh results.

        Returns:
            A function that detaches the callback
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)
        if emit_current:
            self._invoke(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _invoke(self, callback: ResultCallback) -> None:
        try:
            callback(self.results)
        except Exception as e:
            logger.error(f"Error in live query callback for {self.collection}: {e}")

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            self._invoke(callback)

    def close(self) -> None:
        """Detach from the mirror; no further refreshes."""
        if self.closed:
            return
        self.closed = True
        self._callbacks.clear()
        self._mirror._detach(self)

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self):
        return iter(self.results)
