import weakref

from loguru import logger

from config import TrackerSettings
from detection import Detection
from tracked_object import TrackedObject


class PoolMisuseError(RuntimeError):
    """Raised on double release or on releasing an object from another pool."""


class ObjectPool:
    """
    Bounded free list of retired TrackedObject instances.

    Ownership moves with the object: `acquire` hands an instance to the caller
    and `release` hands it back. Each instance carries a `pooled` flag, so a
    second release or an update after release fails loudly instead of
    corrupting a live track.
    """

    def __init__(self, settings: TrackerSettings | None = None) -> None:
        self.settings = settings or TrackerSettings()
        self.capacity = self.settings.pool_capacity
        self._free: list[TrackedObject] = []
        self._owned: weakref.WeakSet[TrackedObject] = weakref.WeakSet()

        # Statistics
        self.created = 0
        self.reused = 0
        self.discarded = 0

    def __len__(self) -> int:
        return len(self._free)

    def acquire(self, detection: Detection, now: float) -> TrackedObject:
        """
        Get a tracked object initialized from `detection`.

        A free instance is reset and reused when available, otherwise a new
        one is constructed.
        """
        if self._free:
            obj = self._free.pop()
            obj.pooled = False
            obj.reset(detection, now)
            self.reused += 1
            return obj

        obj = TrackedObject(detection, now, self.settings)
        self._owned.add(obj)
        self.created += 1
        return obj

    def release(self, obj: TrackedObject) -> None:
        """
        Hand an object back to the pool.

        The caller must not touch `obj` afterwards. When the free list is full
        the object is dropped and left to the garbage collector.

        Raises:
            PoolMisuseError: If `obj` is already released or was not acquired here.
        """
        if obj.pooled:
            raise PoolMisuseError(f"track {obj.id} released twice")
        if obj not in self._owned:
            raise PoolMisuseError(f"track {obj.id} was not acquired from this pool")

        obj.pooled = True

        if len(self._free) >= self.capacity:
            self._owned.discard(obj)
            self.discarded += 1
            logger.trace(f"Pool full ({self.capacity}), discarding track #{obj.id}")
            return

        self._free.append(obj)
