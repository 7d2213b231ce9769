import time
from typing import Any, Callable, Iterable, Optional

import numpy as np
from loguru import logger
from scipy.optimize import linear_sum_assignment

from config import TrackerSettings
from detection import Detection, InvalidDetectionError
from object_pool import ObjectPool
from tracked_object import TrackedObject, TrackSnapshot
from utils import box_iou, union_box


class ObjectTracker:
    """
    Per-frame tracking-by-detection pipeline.

    Each call to `update` expires stale tracks, associates the frame's
    detections with live tracks (creating tracks for unmatched ones), merges
    overlapping tracks of the same class and returns snapshots of the live set.

    The tracker and its pool are not thread-safe: one worker must feed it
    frames in arrival order with non-decreasing timestamps.
    """

    def __init__(
        self,
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], float] = time.monotonic,
        on_invalid_detection: Optional[Callable[[Any, InvalidDetectionError], None]] = None,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            settings (TrackerSettings): Thresholds and association strategy.
            clock (callable): Timestamp source in seconds, used when `update`
                is called without `now`.
            on_invalid_detection (callable): Called with the raw input and the
                error for every malformed detection that gets skipped.
        """
        self.settings = settings or TrackerSettings()
        self.clock = clock
        self.on_invalid_detection = on_invalid_detection

        self.pool = ObjectPool(self.settings)
        # Live tracks in creation order
        self._tracks: list[TrackedObject] = []
        self._last_frame_time: Optional[float] = None

        # Statistics
        self.frames_processed = 0
        self.invalid_detections = 0
        self.total_tracks_created = 0
        self.total_tracks_expired = 0
        self.total_tracks_merged = 0

        logger.info(
            f"ObjectTracker initialized with association={self.settings.association}, "
            f"iou_threshold={self.settings.iou_threshold}, "
            f"merge_threshold={self.settings.merge_threshold}"
        )

    def __len__(self) -> int:
        return len(self._tracks)

    @property
    def tracked_objects(self) -> list[TrackedObject]:
        """Copy of the live track list (the records themselves stay owned by the tracker)."""
        return list(self._tracks)

    def snapshots(self) -> list[TrackSnapshot]:
        return [track.snapshot() for track in self._tracks]

    def update(
        self, detections: Optional[Iterable[Any]], now: Optional[float] = None
    ) -> list[TrackSnapshot]:
        """
        Process one frame of detections.

        Args:
            detections (iterable): Raw detections for this frame, as `Detection`
                objects or mappings with "class", "score" and "bbox". None is
                treated as an empty frame (for example after a detector failure).
            now (float): Frame timestamp in seconds (defaults to the clock).

        Returns:
            list[TrackSnapshot]: Immutable snapshots of the live tracks.
        """
        if now is None:
            now = self.clock()

        if self._last_frame_time is not None and now < self._last_frame_time:
            logger.warning(
                f"Dropping out-of-order frame (t={now:.3f} < last t={self._last_frame_time:.3f})"
            )
            return self.snapshots()
        self._last_frame_time = now

        self._expire(now)

        valid = self._validate(detections or [])
        accepted = [d for d in valid if d.score >= self.settings.detection_threshold]

        if self.settings.association == "hungarian":
            self._associate_hungarian(accepted, now)
        else:
            self._associate_greedy(accepted, now, self._tracks)

        self._merge()

        self.frames_processed += 1
        interval = self.settings.stats_log_interval
        if interval and self.frames_processed % interval == 0:
            logger.info(
                f"Tracker stats: frames={self.frames_processed}, live={len(self._tracks)}, "
                f"created={self.total_tracks_created}, expired={self.total_tracks_expired}, "
                f"merged={self.total_tracks_merged}, invalid={self.invalid_detections}"
            )

        return self.snapshots()

    def reset(self) -> None:
        """Release every live track and clear the frame clock."""
        for track in self._tracks:
            self.pool.release(track)
        self._tracks = []
        self._last_frame_time = None
        logger.info("Object tracker reset")

    def _expire(self, now: float) -> None:
        # Decide on the pre-expiry state before releasing anything
        expired = [track for track in self._tracks if track.should_remove(now)]
        if not expired:
            return

        expired_ids = {track.id for track in expired}
        self._tracks = [track for track in self._tracks if track.id not in expired_ids]
        for track in expired:
            logger.debug(
                f"Expired track #{track.id} ({track.class_name}, score={track.score:.2f})"
            )
            self.pool.release(track)
        self.total_tracks_expired += len(expired)

    def _validate(self, detections: Iterable[Any]) -> list[Detection]:
        valid = []
        for raw in detections:
            try:
                valid.append(Detection.from_raw(raw))
            except InvalidDetectionError as error:
                self.invalid_detections += 1
                logger.debug(f"Skipping malformed detection {raw!r}: {error}")
                if self.on_invalid_detection is not None:
                    self.on_invalid_detection(raw, error)
        return valid

    def _find_match(
        self, detection: Detection, candidates: list[TrackedObject]
    ) -> Optional[TrackedObject]:
        # First match wins; order of `candidates` decides ties
        for track in candidates:
            if (
                track.class_name == detection.class_name
                and box_iou(track.bbox, detection.bbox) > self.settings.iou_threshold
            ):
                return track
        return None

    def _spawn(self, detection: Detection, now: float) -> TrackedObject:
        track = self.pool.acquire(detection, now)
        self._tracks.append(track)
        self.total_tracks_created += 1
        logger.debug(f"Created new track #{track.id} for {track.class_name}")
        return track

    def _associate_greedy(
        self, detections: list[Detection], now: float, candidates: list[TrackedObject]
    ) -> None:
        """
        Match each detection to the first compatible track, in input order.

        `candidates` is extended with the tracks spawned here, so a later
        detection in the same frame can match a track created moments before.
        """
        for detection in detections:
            track = self._find_match(detection, candidates)
            if track is not None:
                track.update(detection, now)
                continue

            new_track = self._spawn(detection, now)
            if candidates is not self._tracks:
                candidates.append(new_track)

    def _associate_hungarian(self, detections: list[Detection], now: float) -> None:
        """
        Optimal one-to-one assignment of detections to pre-existing tracks.

        Detections left without a pair fall back to greedy matching against the
        tracks created during this frame.
        """
        existing = list(self._tracks)
        unmatched = list(detections)

        if existing and detections:
            iou_matrix = np.zeros((len(existing), len(detections)), dtype=np.float64)
            for i, track in enumerate(existing):
                for j, detection in enumerate(detections):
                    if track.class_name == detection.class_name:
                        iou_matrix[i][j] = box_iou(track.bbox, detection.bbox)

            # Maximize total IoU
            rows, cols = linear_sum_assignment(-iou_matrix)

            matched_detections = set()
            for i, j in zip(rows, cols):
                if iou_matrix[i, j] > self.settings.iou_threshold:
                    existing[i].update(detections[j], now)
                    matched_detections.add(j)

            unmatched = [d for j, d in enumerate(detections) if j not in matched_detections]

        self._associate_greedy(unmatched, now, [])

    def _merge(self) -> None:
        """
        Fold overlapping same-class tracks into the first track of each group.

        The anchor keeps its id, takes the union of the group's smoothed boxes
        and the highest score; the other members go back to the pool.
        """
        merged: list[TrackedObject] = []
        consumed: set[int] = set()

        for anchor in self._tracks:
            if anchor.id in consumed:
                continue

            anchor_box = tuple(anchor.smoothed_bbox)
            group = [
                other
                for other in self._tracks
                if other is not anchor
                and other.id not in consumed
                and other.class_name == anchor.class_name
                and box_iou(other.smoothed_bbox, anchor_box) > self.settings.merge_threshold
            ]

            if group:
                box = anchor_box
                score = anchor.score
                for other in group:
                    box = union_box(box, other.smoothed_bbox)
                    score = max(score, other.score)
                    consumed.add(other.id)
                anchor.smoothed_bbox = list(box)
                anchor.score = score
                logger.debug(
                    f"Merged tracks {[other.id for other in group]} into #{anchor.id}"
                )

            consumed.add(anchor.id)
            merged.append(anchor)

        dropped = [track for track in self._tracks if track not in merged]
        self._tracks = merged
        for track in dropped:
            self.pool.release(track)
        self.total_tracks_merged += len(dropped)
