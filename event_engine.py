"""
Make-event files and clip-range planning for the highlight exporter.

Clip-range rules:
    - each make produces [t - pre, t + post] clamped to [0, video_duration]
    - event times beyond the video are clamped first, so they still yield a clip
    - consecutive ranges whose gap <= merge_gap are merged into one
"""

import json
from dataclasses import dataclass

from detection import MakeEvent

DEFAULT_PRE = 4.0
DEFAULT_POST = 2.0
DEFAULT_MERGE_GAP = 2.0

# Clip timing presets (pre, post, merge_gap) in seconds
EXPORT_PRESETS = {
    "quick": {"pre": 3.0, "post": 1.5, "merge_gap": 1.5},
    "standard": {"pre": 4.0, "post": 2.0, "merge_gap": 2.0},
    "cinematic": {"pre": 5.0, "post": 3.0, "merge_gap": 2.5},
}


@dataclass(frozen=True)
class ClipRange:
    start: float
    end: float

    @property
    def duration(self):
        return self.end - self.start


def load_events(path):
    """Read a JSON list of {"time", "type"} objects"""
    with open(path, 'r', encoding='utf-8') as f:
        items = json.load(f)
    return [MakeEvent.from_dict(item) for item in items]


def save_events(events, path):
    ordered = sorted(events, key=lambda e: e.time)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump([e.to_dict() for e in ordered], f, indent=2)
    return path


def filter_valid(events, video_duration):
    """Keep only make events inside [0, video_duration]"""
    return [e for e in events if e.type == "make" and 0 <= e.time <= video_duration]


def _clamped_make_times(events, video_duration):
    return sorted(max(0.0, min(video_duration, e.time)) for e in events if e.type == "make")


def compute_clip_ranges(events, video_duration, pre=DEFAULT_PRE, post=DEFAULT_POST,
                        merge_gap=DEFAULT_MERGE_GAP):
    """
    Convert make events into merged, clamped clip ranges

    Example (pre=4, post=2, merge_gap=2):
        make at 35.2 s -> [31.2, 37.2]
        make at 37.8 s -> [33.8, 39.8], overlaps, merged -> [31.2, 39.8]

    Args:
        events: MakeEvent list; non-make types are ignored
        video_duration: Total video length in seconds (upper clamp bound)
        pre: Seconds kept before each make
        post: Seconds kept after each make
        merge_gap: Ranges separated by at most this gap are merged

    Returns:
        list[ClipRange]: Non-empty ranges in ascending order
    """
    merged = []
    for t in _clamped_make_times(events, video_duration):
        clip = ClipRange(max(0.0, t - pre), min(video_duration, t + post))
        if merged and clip.start <= merged[-1].end + merge_gap:
            last = merged[-1]
            merged[-1] = ClipRange(last.start, max(last.end, clip.end))
        else:
            merged.append(clip)
    return [c for c in merged if c.duration > 0]


def compute_raw_clip_ranges(events, video_duration, pre=DEFAULT_PRE, post=DEFAULT_POST):
    """One clip per make, no merging (each shot exported as its own file)"""
    clips = [ClipRange(max(0.0, t - pre), min(video_duration, t + post))
             for t in _clamped_make_times(events, video_duration)]
    return [c for c in clips if c.duration > 0]
