import logging
import os

import torch
from ultralytics import YOLO

from detection import Detection, Label, NormBox, ShotDetectionError
from geometry import clamp, to_global

logger = logging.getLogger(__name__)

# Observations below these floors never reach the rule engine
MIN_CONFIDENCE = {
    Label.BALL: 0.15,
    Label.HOOP: 0.35,
}


class ModelUnavailableError(ShotDetectionError):
    """The detector weights are missing or could not be loaded"""


def get_device():
    """Automatically select devices -> cuda -> mps（Mac） -> cpu"""
    if torch.cuda.is_available():
        device = 'cuda'
    elif torch.backends.mps.is_available():
        device = 'mps'
    else:
        device = 'cpu'
    return device


def label_for_class(class_name):
    """Map a model class name onto Label, or None for classes we ignore"""
    name = class_name.lower()
    if "hoop" in name or name == "rim":
        return Label.HOOP
    if name in ("basketball", "sports ball") or "ball" in name:
        return Label.BALL
    return None


class YoloInferenceEngine:
    """
    Runs a ball + hoop YOLO model on single frames

    When a region is given, only that crop of the frame is passed to the model
    and the crop-relative boxes are mapped back to full-frame coordinates, so
    returned detections are always in full-frame normalized coordinates.
    """

    def __init__(self, model_path="Yolo-Weights/best.pt", device=None, min_confidence=None):
        if not os.path.exists(model_path):
            raise ModelUnavailableError(f"Model weights not found: {model_path}")
        try:
            self.model = YOLO(model_path)
        except Exception as e:
            raise ModelUnavailableError(f"Failed to load model {model_path}: {e}") from e

        self.model_path = model_path
        self.device = device or get_device()
        self.min_confidence = dict(MIN_CONFIDENCE)
        for label, floor in (min_confidence or {}).items():
            self.min_confidence[Label(label)] = float(floor)
        self.class_names = getattr(self.model, 'names', None) or {0: "Basketball", 1: "Basketball Hoop"}
        self._logged_labels = False
        print(f"🏀 Loaded detector model: {model_path} on {self.device}")

    def detect(self, frame, timestamp, region=None):
        """
        Detect ball and hoop boxes in one frame

        Args:
            frame: BGR image (numpy array)
            timestamp: Presentation time stamped onto every Detection
            region: Optional NormBox restricting inference to a crop

        Returns:
            list[Detection]: Boxes in full-frame normalized coordinates
        """
        height, width = frame.shape[:2]
        effective_region = clamp(region) if region is not None else None

        image = frame
        if effective_region is not None:
            x1 = int(round(effective_region.min_x * width))
            y1 = int(round(effective_region.min_y * height))
            x2 = int(round(effective_region.max_x * width))
            y2 = int(round(effective_region.max_y * height))
            if x2 - x1 < 2 or y2 - y1 < 2:
                return []
            image = frame[y1:y2, x1:x2]
            # Region snapped to whole pixels, so the mapping back matches the crop
            effective_region = NormBox(x1 / width, y1 / height, (x2 - x1) / width, (y2 - y1) / height)

        results = self.model(image, device=self.device, verbose=False)

        detections = []
        for r in results:
            boxes = r.boxes
            if boxes is None:
                continue
            for box in boxes:
                cls = int(box.cls[0])
                class_name = self.class_names.get(cls, f"Unknown_{cls}")
                label = label_for_class(class_name)
                conf = float(box.conf[0])
                if label is None or conf < self.min_confidence.get(label, 0.0):
                    continue

                x1, y1, x2, y2 = (float(v) for v in box.xyxyn[0])
                norm_box = NormBox.from_xyxy(x1, y1, x2, y2)
                if effective_region is not None:
                    norm_box = to_global(norm_box, effective_region)
                detections.append(Detection(label=label, confidence=conf, box=norm_box, timestamp=timestamp))

        if not self._logged_labels:
            labels = sorted({d.label.value for d in detections})
            logger.info(f"First inference: {len(detections)} detections, labels={labels}")
            if not detections:
                logger.warning("No detections on the first frame - check model / input")
            self._logged_labels = True

        return detections
