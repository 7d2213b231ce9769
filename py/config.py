"""
Tracking configuration.

Module-level constants hold the default tuning of the tracker. Every value can
be overridden through environment variables prefixed with ``TRACKER_`` (for
example ``TRACKER_IOU_THRESHOLD=0.6``) or by passing keyword arguments to
``TrackerSettings``.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Detector tensor space
TENSOR_WIDTH = 300
TENSOR_HEIGHT = 300

DETECTION_THRESHOLD = 0.3  # Minimum detection score accepted by the tracker
REMOVAL_THRESHOLD = 0.1  # Smoothed score below which a track is dropped
BUFFER_SIZE = 15  # Raw detections kept per track
IOU_THRESHOLD = 0.5  # Minimum IoU to match a detection to a track
SMOOTHING_FACTOR = 0.7  # Weight of the previous value in the moving average
MERGE_THRESHOLD = 0.4  # Minimum IoU between smoothed boxes to merge tracks
MAX_PREDICTION_AGE = 0.5  # Seconds without an update before a track expires
POOL_CAPACITY = 50  # Retired tracks kept for reuse
FRAME_SKIP = 2  # Run the detector on every Nth frame


class TrackerSettings(BaseSettings):
    """
    Tunable parameters of the tracking pipeline.

    All settings can be overridden via environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRACKER_", env_file=".env", extra="ignore"
    )

    detection_threshold: float = Field(default=DETECTION_THRESHOLD, ge=0.0, le=1.0)
    removal_threshold: float = Field(default=REMOVAL_THRESHOLD, ge=0.0, le=1.0)
    buffer_size: int = Field(default=BUFFER_SIZE, ge=1)
    iou_threshold: float = Field(default=IOU_THRESHOLD, ge=0.0, le=1.0)
    smoothing_factor: float = Field(default=SMOOTHING_FACTOR, ge=0.0, le=1.0)
    merge_threshold: float = Field(default=MERGE_THRESHOLD, ge=0.0, le=1.0)
    max_prediction_age: float = Field(
        default=MAX_PREDICTION_AGE,
        gt=0.0,
        description="Seconds a track survives without being matched",
    )
    pool_capacity: int = Field(default=POOL_CAPACITY, ge=0)

    association: Literal["greedy", "hungarian"] = Field(
        default="greedy",
        description="Detection-to-track assignment strategy",
    )

    tensor_width: int = Field(default=TENSOR_WIDTH, ge=1)
    tensor_height: int = Field(default=TENSOR_HEIGHT, ge=1)
    frame_skip: int = Field(default=FRAME_SKIP, ge=1)

    stats_log_interval: int = Field(
        default=100,
        ge=0,
        description="Frames between statistics log lines (0 disables them)",
    )

    @model_validator(mode="after")
    def check_thresholds(self) -> "TrackerSettings":
        if self.removal_threshold > self.detection_threshold:
            raise ValueError(
                "removal_threshold must not exceed detection_threshold, "
                "otherwise fresh tracks would expire on creation"
            )
        return self
