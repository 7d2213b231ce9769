import math

import pytest

from config import TrackerSettings
from detection import Detection
from object_tracker import ObjectTracker


def person(x, y=10, w=50, h=50, score=0.9):
    return {"class": "person", "score": score, "bbox": [x, y, w, h]}


@pytest.fixture
def tracker(settings):
    return ObjectTracker(settings)


def test_end_to_end_example(tracker):
    tracks = tracker.update([person(10)], now=0.0)
    assert len(tracks) == 1
    first = tracks[0]
    assert first.smoothed_bbox == (10.0, 10.0, 50.0, 50.0)

    tracks = tracker.update([person(12)], now=0.1)
    assert len(tracks) == 1
    assert tracks[0].id == first.id
    assert tracks[0].smoothed_bbox[0] == pytest.approx(10.6)
    assert tracks[0].bbox == (12.0, 10.0, 50.0, 50.0)


def test_steady_stream_keeps_one_track(tracker):
    ids = set()
    for frame in range(30):
        tracks = tracker.update([person(10)], now=frame * 0.1)
        assert len(tracks) == 1
        assert len(tracker) == 1
        ids.add(tracks[0].id)

    assert len(ids) == 1
    assert tracker.total_tracks_created == 1
    assert tracker.tracked_objects[0].hits == 30


def test_low_confidence_detections_are_ignored(tracker):
    assert tracker.update([person(10, score=0.29)], now=0.0) == []

    tracker.update([person(10, score=0.9)], now=0.1)
    tracker.update([person(10, score=0.2)], now=0.2)
    track = tracker.tracked_objects[0]
    assert track.score == 0.9
    assert track.hits == 1


def test_low_score_track_is_removed_on_next_pass(tracker):
    tracker.update([person(10)], now=0.0)
    track = tracker.tracked_objects[0]
    weak = Detection("person", 0.0, (10.0, 10.0, 50.0, 50.0))
    while track.score >= 0.1:
        track.update(weak, now=0.0)

    assert tracker.update([], now=0.1) == []
    assert tracker.total_tracks_expired == 1


def test_stale_track_is_removed(tracker):
    tracker.update([person(10)], now=0.0)

    assert len(tracker.update([], now=0.5)) == 1
    assert tracker.update([], now=0.51) == []


def test_expired_slot_is_reused_by_new_track(tracker):
    tracker.update([person(10)], now=0.0)
    expired = tracker.tracked_objects[0]
    old_id = expired.id

    tracks = tracker.update([person(200)], now=1.0)

    assert len(tracks) == 1
    assert tracks[0].id != old_id
    assert tracker.tracked_objects[0] is expired
    assert tracker.pool.reused == 1


def test_same_frame_overlapping_detections_fold_into_first_track(tracker):
    # Greedy, in input order: the second detection matches the track that the
    # first one created moments before, so no duplicate is spawned.
    tracks = tracker.update([person(10, score=0.8), person(12, score=0.9)], now=0.0)

    assert len(tracks) == 1
    assert tracks[0].smoothed_bbox[0] == pytest.approx(10.6)
    assert tracks[0].score == pytest.approx(0.7 * 0.8 + 0.3 * 0.9)
    assert tracker.tracked_objects[0].hits == 2


def test_greedy_association_uses_first_matching_track(tracker):
    tracker.update([person(0, w=100, h=100), person(50, w=100, h=100)], now=0.0)
    # IoU 1/3 keeps them apart and below the merge threshold
    assert len(tracker) == 2
    left, right = tracker.tracked_objects

    # Overlaps both tracks by more than 0.5; the older one wins
    tracker.update([person(20, w=100, h=100)], now=0.1)
    assert left.hits == 2
    assert right.hits == 1


def test_different_classes_do_not_match_or_merge(tracker):
    dog = {"class": "dog", "score": 0.9, "bbox": [10, 10, 50, 50]}
    tracks = tracker.update([person(10), dog], now=0.0)

    assert sorted(t.class_name for t in tracks) == ["dog", "person"]


def test_overlapping_same_class_tracks_are_merged(tracker):
    # IoU 0.43: too low to match, high enough to merge
    tracks = tracker.update(
        [person(0, 0, 100, 100, score=0.8), person(40, 0, 100, 100, score=0.9)], now=0.0
    )

    assert len(tracks) == 1
    assert tracks[0].score == 0.9
    assert tracks[0].smoothed_bbox == (0.0, 0.0, 140.0, 100.0)
    assert tracker.total_tracks_created == 2
    assert tracker.total_tracks_merged == 1
    assert len(tracker.pool) == 1


def test_merge_keeps_the_first_track_as_anchor(tracker):
    tracker.update([person(0, 0, 100, 100, score=0.8)], now=0.0)
    anchor_id = tracker.tracked_objects[0].id

    tracks = tracker.update(
        [person(0, 0, 100, 100, score=0.8), person(40, 0, 100, 100, score=0.9)], now=0.1
    )

    assert [t.id for t in tracks] == [anchor_id]


def test_loosely_overlapping_tracks_are_not_merged(tracker):
    # IoU 0.25
    tracks = tracker.update([person(0, 0, 100, 100), person(60, 0, 100, 100)], now=0.0)
    assert len(tracks) == 2


def test_emitted_order_is_creation_order(tracker):
    tracks = tracker.update([person(0), person(100), person(200)], now=0.0)
    assert [t.bbox[0] for t in tracks] == [0.0, 100.0, 200.0]
    assert [t.id for t in tracks] == sorted(t.id for t in tracks)


def test_malformed_detections_are_skipped_and_reported(settings):
    skipped = []
    tracker = ObjectTracker(settings, on_invalid_detection=lambda raw, error: skipped.append(raw))

    bad = [
        {"class": "person"},
        {"class": "person", "score": 0.9, "bbox": [0, 0, math.nan, 10]},
        "garbage",
    ]
    tracks = tracker.update(bad[:2] + [person(10)] + bad[2:], now=0.0)

    assert len(tracks) == 1
    assert tracker.invalid_detections == 3
    assert skipped == bad


def test_none_detections_behave_like_an_empty_frame(tracker):
    assert tracker.update(None, now=0.0) == []

    tracker.update([person(10)], now=0.1)
    assert len(tracker.update(None, now=0.2)) == 1
    assert tracker.update(None, now=1.0) == []


def test_out_of_order_frame_is_dropped(tracker):
    tracker.update([person(10)], now=1.0)
    before = tracker.snapshots()

    tracks = tracker.update([person(200)], now=0.5)

    assert tracks == before
    assert tracker.frames_processed == 1


def test_snapshots_do_not_change_after_next_frame(tracker):
    tracks = tracker.update([person(10)], now=0.0)
    tracker.update([person(20)], now=0.1)
    assert tracks[0].smoothed_bbox == (10.0, 10.0, 50.0, 50.0)


def test_default_clock_is_used_without_timestamp(settings):
    times = iter([0.0, 0.2, 2.0])
    tracker = ObjectTracker(settings, clock=lambda: next(times))

    tracker.update([person(10)])
    assert len(tracker.update([])) == 1
    assert tracker.update([]) == []


def test_reset_returns_tracks_to_pool(tracker):
    tracker.update([person(0), person(100)], now=0.0)
    tracker.reset()

    assert len(tracker) == 0
    assert len(tracker.pool) == 2
    # The frame clock restarts as well
    assert len(tracker.update([person(0)], now=0.0)) == 1


def _hungarian_scene(association):
    settings = TrackerSettings(
        association=association, iou_threshold=0.6, merge_threshold=0.9, stats_log_interval=0
    )
    tracker = ObjectTracker(settings)
    tracker.update([person(0, 0, 100, 100), person(30, 0, 100, 100)], now=0.0)
    first, second = tracker.tracked_objects
    tracker.update([person(20, 0, 100, 100), person(35, 0, 100, 100)], now=0.1)
    return tracker, first, second


def test_greedy_association_can_starve_a_track():
    tracker, first, second = _hungarian_scene("greedy")

    assert len(tracker) == 2
    assert first.hits == 3
    assert second.hits == 1


def test_hungarian_association_assigns_one_to_one():
    tracker, first, second = _hungarian_scene("hungarian")

    assert len(tracker) == 2
    assert first.hits == 2
    assert second.hits == 2
    assert first.bbox == (20.0, 0.0, 100.0, 100.0)
    assert second.bbox == (35.0, 0.0, 100.0, 100.0)


def test_hungarian_folds_same_frame_duplicates():
    tracker = ObjectTracker(TrackerSettings(association="hungarian", stats_log_interval=0))
    tracks = tracker.update([person(10), person(12)], now=0.0)

    assert len(tracks) == 1
    assert tracker.tracked_objects[0].hits == 2


def test_out_of_range_score_is_rejected_before_tracking(tracker):
    tracks = tracker.update([{"class": "person", "score": 7.5, "bbox": [10, 10, 50, 50]}], now=0.0)

    assert tracks == []
    assert tracker.invalid_detections == 1
    assert tracker.total_tracks_created == 0


@pytest.mark.parametrize("association", ["greedy", "hungarian"])
def test_association_just_above_iou_threshold_matches(association):
    # IoU is 0.5 plus a few billionths, which float32 would round to 0.5
    tracker = ObjectTracker(TrackerSettings(association=association, stats_log_interval=0))
    tracker.update([person(0, 0, 100, 100)], now=0.0)
    tracker.update([person(100 / 3 - 1e-6, 0, 100, 100)], now=0.1)

    assert len(tracker) == 1
    assert tracker.tracked_objects[0].hits == 2
