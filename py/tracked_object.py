import itertools
from collections import deque
from dataclasses import dataclass

from config import TrackerSettings
from detection import Detection

# Process-wide source of track ids, never reused
_track_ids = itertools.count(1)


def next_track_id() -> int:
    return next(_track_ids)


class TrackLifecycleError(RuntimeError):
    """Raised when a track is used after being handed back to its pool."""


@dataclass(frozen=True)
class TrackSnapshot:
    """Immutable view of a tracked object, handed to renderers and callers."""

    id: int
    class_name: str
    score: float
    bbox: tuple[float, float, float, float]
    smoothed_bbox: tuple[float, float, float, float]
    last_seen: float
    hits: int


class TrackedObject:
    """
    Represents one object persisted across video frames.

    The raw box of the latest detection is kept for matching, while an
    exponentially smoothed box and score are kept for merging and display.
    """

    def __init__(
        self, detection: Detection, now: float, settings: TrackerSettings | None = None
    ) -> None:
        """
        Initialize a tracked object from its first detection.

        Args:
            detection (Detection): Detection that starts the track.
            now (float): Timestamp of the frame, in seconds.
            settings (TrackerSettings): Smoothing, history and removal parameters.
        """
        self.settings = settings or TrackerSettings()
        self.pooled = False  # True while owned by an ObjectPool free list
        self.reset(detection, now)

    def reset(self, detection: Detection, now: float) -> None:
        """Reinitialize every field as if freshly created from `detection`."""
        self.id = next_track_id()
        self.class_name = detection.class_name
        self.score = detection.score
        self.bbox = tuple(detection.bbox)  # Latest raw box, used for matching
        self.smoothed_bbox = list(detection.bbox)  # Moving average, used for merging/display
        self.last_seen = now
        self.history = deque([detection], maxlen=self.settings.buffer_size)
        self.hits = 1

    def update(self, detection: Detection, now: float) -> None:
        """
        Fold a matched detection into the track with an exponential moving average.

        Args:
            detection (Detection): Detection matched to this track.
            now (float): Timestamp of the frame, in seconds.
        """
        if self.pooled:
            raise TrackLifecycleError(f"track {self.id} was updated after release")

        alpha = self.settings.smoothing_factor

        self.last_seen = now
        self.history.append(detection)  # deque drops the oldest entry on overflow
        self.hits += 1

        self.score = alpha * self.score + (1 - alpha) * detection.score
        for i in range(4):
            self.smoothed_bbox[i] = alpha * self.smoothed_bbox[i] + (1 - alpha) * detection.bbox[i]

        self.bbox = tuple(detection.bbox)

    def should_remove(self, now: float) -> bool:
        return (
            self.score < self.settings.removal_threshold
            or now - self.last_seen > self.settings.max_prediction_age
        )

    def snapshot(self) -> TrackSnapshot:
        return TrackSnapshot(
            id=self.id,
            class_name=self.class_name,
            score=self.score,
            bbox=self.bbox,
            smoothed_bbox=tuple(self.smoothed_bbox),
            last_seen=self.last_seen,
            hits=self.hits,
        )

    def __repr__(self) -> str:
        return (
            f"TrackedObject(id={self.id}, class_name={self.class_name!r}, "
            f"score={self.score:.3f}, smoothed_bbox={self.smoothed_bbox})"
        )
