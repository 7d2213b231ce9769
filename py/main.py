import argparse
import glob
import os
import sys
from pathlib import Path
from typing import Optional

import cv2 as cv
from loguru import logger
from ultralytics import YOLO

from config import TrackerSettings
from real_time_object_tracker import RealTimeObjectTracker
from utils import visualize_images


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    logger.remove()  # Remove default handler

    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}",
            rotation="10 MB",
        )


def read_frames(source: str):
    """Yield RGB frames from a directory of .png images or a webcam index."""
    if source.isdigit():
        capture = cv.VideoCapture(int(source))
        try:
            while True:
                ok, frame = capture.read()
                if not ok:
                    logger.warning("Camera stream ended")
                    break
                yield cv.cvtColor(frame, cv.COLOR_BGR2RGB)
        finally:
            capture.release()
        return

    images_path = sorted(glob.glob(os.path.join(source, "*.png")))
    if not images_path:
        logger.error(f"No .png images found in {source}")
    for image_file in images_path:
        image = cv.imread(image_file)
        if image is None:
            logger.warning(f"Could not read {image_file}, skipping")
            continue
        yield cv.cvtColor(image, cv.COLOR_BGR2RGB)


def track(
    source: str,
    model_path: str,
    settings: TrackerSettings,
    display: bool = True,
    grid: int = 0,
    mirror: bool = False,
):
    model = YOLO(model_path)

    tracker: Optional[RealTimeObjectTracker] = None
    snapshots = []

    for image in read_frames(source):
        if tracker is None:
            height, width = image.shape[:2]
            tracker = RealTimeObjectTracker(model, width, height, mirror=mirror, settings=settings)

        output_image, tracks = tracker.inference(image)
        logger.debug(f"Frame {tracker.frame_count}: {len(tracks)} tracked objects")

        if len(snapshots) < grid:
            snapshots.append(output_image)

        if display:
            new_image = cv.cvtColor(output_image, cv.COLOR_RGB2BGR)
            cv.imshow("Object Tracking", new_image)

            # Break the loop if 'q' is pressed
            if cv.waitKey(1) & 0xFF == ord("q"):
                break

    # Clean up OpenCV windows
    if display:
        cv.destroyAllWindows()

    if tracker is not None:
        logger.info(
            f"Processed {tracker.frame_count} frames, "
            f"{tracker.tracker.total_tracks_created} tracks created, "
            f"{tracker.tracker.invalid_detections} invalid detections, "
            f"{tracker.detector_failures} detector failures"
        )

    if snapshots:
        visualize_images(snapshots)


def parse_args(argv=None):
    script_dir = os.path.dirname(os.path.abspath(__file__))
    parser = argparse.ArgumentParser(description="Track objects across frames with YOLO detections")
    parser.add_argument(
        "--source",
        default=os.path.join(script_dir, "..", "data"),
        help="Directory of .png frames, or a webcam index such as 0",
    )
    parser.add_argument("--model", default="yolo11s.pt", help="YOLO weights")
    parser.add_argument("--association", choices=["greedy", "hungarian"], default=None)
    parser.add_argument("--frame-skip", type=int, default=None)
    parser.add_argument("--grid", type=int, default=0, help="Show the first N annotated frames in a grid at the end")
    parser.add_argument("--mirror", action="store_true", help="Flip boxes horizontally for a mirrored preview")
    parser.add_argument("--no-display", action="store_true")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default=None)
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    setup_logging(args.log_level, args.log_file)

    overrides = {}
    if args.association:
        overrides["association"] = args.association
    if args.frame_skip:
        overrides["frame_skip"] = args.frame_skip
    settings = TrackerSettings(**overrides)

    track(
        args.source,
        args.model,
        settings,
        display=not args.no_display,
        grid=args.grid,
        mirror=args.mirror,
    )
