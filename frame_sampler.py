import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np

from detection import ShotDetectionError

logger = logging.getLogger(__name__)


class NoVideoTrackError(ShotDetectionError):
    """The source could not be opened or holds no decodable frames"""


class FrameDecodeError(ShotDetectionError):
    """Decoding failed part way through the requested interval"""


@dataclass
class SampledFrame:
    image: np.ndarray  # BGR, as decoded by OpenCV
    timestamp: float
    index: int


class VideoFrameSampler:
    """
    Decodes a video with OpenCV and sub-samples it to a target rate

    Frames between sample points are read and discarded, so memory stays
    constant regardless of the source frame rate.
    """

    def duration(self, source):
        """Length of the video in seconds"""
        cap = self._open(source)
        try:
            native_fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
            frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
        finally:
            cap.release()
        if native_fps <= 0:
            return 0.0
        return frame_count / native_fps

    def frames(self, source, fps=12.0, start_seconds=0.0, max_seconds=None):
        """
        Yield SampledFrame values at `fps` over [start, start + max_seconds]

        Args:
            source: Video file path (anything cv2.VideoCapture accepts)
            fps: Target sampling rate
            start_seconds: Offset of the first sampled frame
            max_seconds: Length of the interval; None runs to the end of the video
        """
        cap = self._open(source)
        try:
            native_fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
            if start_seconds > 0:
                cap.set(cv2.CAP_PROP_POS_MSEC, start_seconds * 1000.0)

            end_seconds = math.inf if max_seconds is None else start_seconds + max_seconds
            interval = 1.0 / fps
            next_sample_time = start_seconds
            index = 0
            native_index = 0
            decoded_any = False

            while True:
                try:
                    ret, image = cap.read()
                except cv2.error as e:
                    raise FrameDecodeError(f"Failed to decode frame {native_index} of {source}: {e}") from e
                if not ret:
                    break
                decoded_any = True

                timestamp = self._frame_time(cap, native_fps, native_index, start_seconds)
                native_index += 1
                if timestamp > end_seconds:
                    break
                # Sub-sample: skip native frames between target timestamps
                if timestamp < next_sample_time:
                    continue

                yield SampledFrame(image=image, timestamp=timestamp, index=index)
                index += 1
                next_sample_time = start_seconds + index * interval

            if not decoded_any:
                raise NoVideoTrackError(f"No decodable frames in {source}")
            expected_end = min(end_seconds, self._length(cap, native_fps))
            # Container frame counts are often approximate, so an early stop is only reported
            if math.isfinite(expected_end) and next_sample_time + interval < expected_end - 1.0:
                logger.warning(f"Decoding stopped at {next_sample_time:.2f}s, "
                               f"expected frames until {expected_end:.2f}s")
        finally:
            cap.release()

    def _open(self, source):
        cap = cv2.VideoCapture(str(source))
        if not cap.isOpened():
            cap.release()
            raise NoVideoTrackError(f"Cannot open video {source}")
        return cap

    @staticmethod
    def _frame_time(cap, native_fps, native_index, start_seconds):
        pos_msec = cap.get(cv2.CAP_PROP_POS_MSEC)
        if pos_msec and pos_msec > 0:
            return pos_msec / 1000.0
        # Some backends do not report positions; fall back to the frame counter
        if native_fps > 0:
            return start_seconds + native_index / native_fps
        return start_seconds

    @staticmethod
    def _length(cap, native_fps):
        frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
        if native_fps <= 0 or frame_count <= 0:
            return math.inf
        return frame_count / native_fps
