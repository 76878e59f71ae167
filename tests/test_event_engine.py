import json

import pytest

from detection import MakeEvent
from event_engine import (
    EXPORT_PRESETS,
    compute_clip_ranges,
    compute_raw_clip_ranges,
    filter_valid,
    load_events,
    save_events,
)


def _makes(*times):
    return [MakeEvent(time=t) for t in times]


def _bounds(clips):
    return [(pytest.approx(c.start), pytest.approx(c.end)) for c in clips]


def test_overlapping_clips_are_merged():
    clips = compute_clip_ranges(_makes(35.2, 37.8), video_duration=120.0)
    assert _bounds(clips) == [(31.2, 39.8)]


def test_clips_within_merge_gap_are_merged():
    # [10, 16] and [17.5, 23.5]: 1.5 s apart
    clips = compute_clip_ranges(_makes(14.0, 21.5), video_duration=60.0)
    assert len(clips) == 1
    assert clips[0].start == pytest.approx(10.0)
    assert clips[0].end == pytest.approx(23.5)


def test_distant_clips_stay_separate():
    clips = compute_clip_ranges(_makes(10.0, 30.0), video_duration=60.0)
    assert _bounds(clips) == [(6.0, 12.0), (26.0, 32.0)]


def test_clips_are_clamped_to_video():
    clips = compute_clip_ranges(_makes(1.0, 59.5), video_duration=60.0)
    assert _bounds(clips) == [(0.0, 3.0), (55.5, 60.0)]


def test_unsorted_input_and_other_types():
    events = [MakeEvent(time=30.0), MakeEvent(time=5.0), MakeEvent(time=15.0, type="miss")]
    clips = compute_clip_ranges(events, video_duration=60.0)
    assert _bounds(clips) == [(1.0, 7.0), (26.0, 32.0)]


def test_preset_values_apply():
    preset = EXPORT_PRESETS["quick"]
    clips = compute_clip_ranges(_makes(10.0), 60.0, **preset)
    assert _bounds(clips) == [(7.0, 11.5)]


def test_raw_clip_ranges_do_not_merge():
    clips = compute_raw_clip_ranges(_makes(35.2, 37.8), video_duration=120.0)
    assert _bounds(clips) == [(31.2, 37.2), (33.8, 39.8)]


def test_filter_valid():
    events = [MakeEvent(time=-1.0), MakeEvent(time=5.0), MakeEvent(time=70.0), MakeEvent(time=6.0, type="miss")]
    assert filter_valid(events, 60.0) == [MakeEvent(time=5.0)]


def test_save_events_writes_sorted_make_list(tmp_path):
    path = tmp_path / "events.json"
    save_events(_makes(12.5, 3.25), path)

    assert json.loads(path.read_text(encoding="utf-8")) == [
        {"time": 3.25, "type": "make"},
        {"time": 12.5, "type": "make"},
    ]
    assert load_events(path) == _makes(3.25, 12.5)
