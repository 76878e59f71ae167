"""
Detection value types shared by the detector, the rule engine and the exporter.

All boxes are normalized to [0, 1] with the origin at the top-left corner of
the frame: x grows to the right, y grows downward.
"""

from dataclasses import dataclass
from enum import Enum


class ShotDetectionError(Exception):
    """Base class for errors that abort a detection session"""


class Label(str, Enum):
    BALL = "Basketball"
    HOOP = "Basketball Hoop"


@dataclass(frozen=True)
class NormBox:
    """Axis-aligned rectangle in normalized frame coordinates (top-left origin)"""
    x: float
    y: float
    width: float
    height: float

    @property
    def min_x(self):
        return self.x

    @property
    def min_y(self):
        return self.y

    @property
    def max_x(self):
        return self.x + self.width

    @property
    def max_y(self):
        return self.y + self.height

    @property
    def mid_x(self):
        return self.x + 0.5 * self.width

    @property
    def mid_y(self):
        return self.y + 0.5 * self.height

    @property
    def center(self):
        return (self.mid_x, self.mid_y)

    @property
    def area(self):
        return max(0.0, self.width) * max(0.0, self.height)

    def intersects(self, other):
        """True if the two boxes share a region of positive area"""
        return (self.min_x < other.max_x and other.min_x < self.max_x and
                self.min_y < other.max_y and other.min_y < self.max_y)

    @classmethod
    def from_xyxy(cls, x1, y1, x2, y2):
        return cls(float(x1), float(y1), float(x2 - x1), float(y2 - y1))

    def to_xyxy(self):
        return (self.min_x, self.min_y, self.max_x, self.max_y)


@dataclass(frozen=True)
class Detection:
    """A single labeled detection from one sampled frame"""
    label: Label
    confidence: float
    box: NormBox
    timestamp: float

    @property
    def is_ball(self):
        return self.label == Label.BALL

    @property
    def is_hoop(self):
        return self.label == Label.HOOP


@dataclass(frozen=True)
class MakeEvent:
    """A confirmed made basket, in seconds from the start of the video"""
    time: float
    type: str = "make"

    def to_dict(self):
        return {"time": self.time, "type": self.type}

    @classmethod
    def from_dict(cls, data):
        return cls(time=float(data["time"]), type=str(data.get("type", "make")))
