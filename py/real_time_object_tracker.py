import copy
from typing import Optional

import cv2 as cv
import numpy as np
from loguru import logger
from ultralytics import YOLO

from config import TrackerSettings
from detection import Detection
from object_tracker import ObjectTracker
from tracked_object import TrackSnapshot
from utils import id_to_color, to_display_box


class RealTimeObjectTracker:
    """
    Connects a YOLO detector and an OpenCV overlay to the ObjectTracker.

    Frames are resized to the detector tensor size before inference, so every
    box the tracker compares lives in tensor space. Boxes are mapped back to
    the image size only when drawn.
    """

    def __init__(
        self,
        model: YOLO,
        image_width: int,
        image_height: int,
        conf: float = 0.25,
        mirror: bool = False,
        settings: Optional[TrackerSettings] = None,
        tracker: Optional[ObjectTracker] = None,
    ) -> None:
        """
        Initialize the real-time object tracking system.

        Args:
            model (YOLO): Pre-trained YOLO model for object detection.
            image_width (int): Width of the displayed images in pixels.
            image_height (int): Height of the displayed images in pixels.
            conf (float): Confidence threshold passed to the detector (default: 0.25).
                The tracker applies its own detection threshold on top of it.
            mirror (bool): Draw boxes horizontally flipped, for selfie cameras.
            settings (TrackerSettings): Tracker settings (default: from environment).
            tracker (ObjectTracker): Tracker to feed (default: a new one built from `settings`).
        """
        self.settings = settings or TrackerSettings()
        self.tracker = tracker or ObjectTracker(self.settings)

        # YOLO model configuration
        self.model = model
        self.conf = conf

        self.image_width = image_width
        self.image_height = image_height
        self.mirror = mirror
        self.tensor_size = (self.settings.tensor_width, self.settings.tensor_height)

        self.frame_count = 0
        self.detector_failures = 0
        self.tracks: list[TrackSnapshot] = []  # Last emitted tracks

    def inference(self, input_image) -> tuple[np.ndarray, list[TrackSnapshot]]:
        """
        Run detection (on every `frame_skip`-th frame), tracking and drawing.

        Args:
            input_image: RGB image of size (image_height, image_width).

        Returns:
            tuple: (annotated_image, tracks)
                - annotated_image (np.ndarray): Copy of the input with boxes drawn.
                - tracks (list[TrackSnapshot]): Currently tracked objects.
        """
        # Create a copy to avoid modifying the original image
        image = copy.deepcopy(input_image)

        self.frame_count += 1
        if self.frame_count % self.settings.frame_skip == 0:
            try:
                detections = self.predict(image)
            except Exception:
                # A failed detector call is an empty frame: tracks still age out
                self.detector_failures += 1
                logger.exception("Detection error")
                detections = None

            self.tracks = self.tracker.update(detections)

        self.draw(image, self.tracks)

        return image, self.tracks

    def predict(self, input_image: np.ndarray) -> list[Detection]:
        """
        Run object detection inference on the input image.

        Args:
            input_image (np.ndarray): Input image for object detection.

        Returns:
            list[Detection]: Detections in tensor space as [x, y, width, height].
        """
        tensor = cv.resize(input_image, self.tensor_size)

        # Run YOLO model prediction on the resized image
        results = self.model.predict(tensor, conf=self.conf, verbose=False)

        # Extract the first (and typically only) result
        result = results[0]
        if not result.boxes:
            return []

        names = result.names
        detections = []
        for xyxy, score, category in zip(
            result.boxes.xyxy.tolist(), result.boxes.conf.tolist(), result.boxes.cls.tolist()
        ):
            detections.append(
                Detection(
                    class_name=names[int(category)],
                    score=float(score),
                    bbox=self.convert_box_from_xyxy_to_xywh(xyxy),
                )
            )

        return detections

    def convert_box_from_xyxy_to_xywh(
        self, bounding_box
    ) -> tuple[float, float, float, float]:
        """
        Convert bounding boxes from [x1, y1, x2, y2] format to [x, y, width, height] format.
        """
        left, top, right, bottom = (float(v) for v in bounding_box)
        return (left, top, right - left, bottom - top)

    def draw(self, image: np.ndarray, tracks: list[TrackSnapshot]) -> None:
        """Draw the smoothed box and a "class (score%)" label for every track."""
        for track in tracks:
            x, y, width, height = to_display_box(
                track.smoothed_bbox,
                self.tensor_size,
                (self.image_width, self.image_height),
                mirror=self.mirror,
            )
            left, top = int(x), int(y)
            right, bottom = int(x + width), int(y + height)
            color = id_to_color(track.id * 10)  # Color based on track ID

            # Draw bounding box
            cv.rectangle(image, (left, top), (right, bottom), color, thickness=3)
            # Draw class and smoothed score label
            cv.putText(
                image,
                f"{track.class_name} ({track.score * 100:.1f}%)",
                (left, max(top - 10, 0)),
                cv.FONT_HERSHEY_SIMPLEX,
                0.6,
                color,
                thickness=2,
            )
