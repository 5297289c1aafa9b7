from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Type

from pymongo.errors import PyMongoError

from jobsync.errors import SyncError
from jobsync.schemas.actor import Actor
from jobsync.utils.logger import get_logger


logger = get_logger(__name__)

Listener = Callable[[str], None]


@contextmanager
def collaborator_call(error_cls: Type[SyncError], action: str) -> Iterator[None]:
    """Convert storage failures raised inside the block into ``error_cls``."""
    try:
        yield
    except PyMongoError as exc:
        raise error_cls(f"{action} failed: {exc}") from exc


class ObservableStore:
    """Single-writer in-memory cache with change listeners and a last-error slot.

    While a collection fetch is in flight, rows written from any other source
    are stamped so the page can be merged without regressing them.
    """

    name = "store"

    def __init__(self) -> None:
        self.actor: Optional[Actor] = None
        self.error: Optional[str] = None
        self._listeners: List[Listener] = []
        self._fetches = 0
        self._clock = 0
        self._observed: Dict[str, int] = {}

    def init(self, actor: Actor) -> None:
        self.actor = actor
        self.error = None

    def dispose(self) -> None:
        self.actor = None
        self.error = None
        self._listeners.clear()
        self._observed.clear()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _require_actor(self) -> Actor:
        if self.actor is None:
            raise RuntimeError(f"{self.name} store used before init()")
        return self.actor

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self.name)

    def _succeeded(self) -> None:
        self.error = None

    def record_error(self, exc: SyncError) -> SyncError:
        self.error = str(exc)
        logger.warning("%s store: %s", self.name, exc)
        return exc

    # -- fetch interleaving

    @contextmanager
    def _fetching(self) -> Iterator[int]:
        """Yield a mark; rows observed after it were written during the fetch."""
        self._fetches += 1
        try:
            yield self._clock
        finally:
            self._fetches -= 1
            if not self._fetches:
                self._observed.clear()

    def _observe(self, key: str) -> None:
        if self._fetches:
            self._clock += 1
            self._observed[key] = self._clock

    def _observed_since(self, key: str, mark: int) -> bool:
        return self._observed.get(key, 0) > mark
