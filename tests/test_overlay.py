import numpy as np

from detection import Detection, Label, NormBox
from overlay import draw_debug_snapshot, render_preview
from shot_rule_engine import DebugSnapshot


def _blank():
    return np.zeros((360, 640, 3), dtype=np.uint8)


def _detections():
    return [
        Detection(label=Label.HOOP, confidence=0.91, box=NormBox(0.45, 0.30, 0.10, 0.08), timestamp=1.0),
        Detection(label=Label.BALL, confidence=0.62, box=NormBox(0.20, 0.60, 0.04, 0.04), timestamp=1.0),
    ]


def test_render_preview_returns_annotated_copy():
    frame = _blank()
    snapshot = DebugSnapshot(
        smoothed_hoop=NormBox(0.45, 0.30, 0.10, 0.08),
        selected_ball=NormBox(0.20, 0.60, 0.04, 0.04),
        rim_y=0.364,
        hoop_locked=True,
        cooldown_remaining=2.5,
        makes_count=1,
    )

    preview = render_preview(frame, _detections(), snapshot)

    assert preview.shape == frame.shape
    assert preview.any()
    assert not frame.any()


def test_draw_debug_snapshot_without_hoop_only_draws_status():
    frame = _blank()
    draw_debug_snapshot(frame, DebugSnapshot())
    # Nothing above the status badge at the bottom of the frame
    assert not frame[:300].any()
    assert frame[300:].any()
