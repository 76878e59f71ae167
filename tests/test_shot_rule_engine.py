import pytest

from detection import Detection, Label, NormBox
from geometry import center_distance
from shot_rule_engine import (
    CONFIRM_VIA_BELOW_HOOP,
    CONFIRM_VIA_DISAPPEAR,
    CONFIRM_VIA_IOU_RIM,
    HoopTrack,
    ShotRuleConfig,
    ShotRuleEngine,
)

# Hoop centered at (0.50, 0.34); zone spans y 0.276-0.476 and x 0.43-0.57
HOOP = NormBox(0.45, 0.30, 0.10, 0.08)
OUTSIDE = (0.20, 0.60)
AT_RIM = (0.50, 0.34)
FRAME = 1 / 12


def _hoop(box=HOOP, confidence=0.9):
    return Detection(label=Label.HOOP, confidence=confidence, box=box, timestamp=0.0)


def _ball(cx, cy, confidence=0.8, size=0.04):
    box = NormBox(cx - size / 2, cy - size / 2, size, size)
    return Detection(label=Label.BALL, confidence=confidence, box=box, timestamp=0.0)


def _frame(ball=None, hoop=HOOP):
    detections = []
    if hoop is not None:
        detections.append(_hoop(hoop))
    if ball is not None:
        detections.append(_ball(*ball))
    return detections


def _feed(engine, frames):
    """Feed (timestamp, ball position or None) pairs; returns the emitted events"""
    events = []
    for t, ball in frames:
        event = engine.consume_frame(t, _frame(ball))
        if event is not None:
            events.append(event)
    return events


def _open_gap_candidate(engine, start=0.5):
    """Outside, two missing frames, then arrival at the rim: opens a PatternA candidate at start + 0.5"""
    _feed(engine, [
        (start, OUTSIDE),
        (start + 0.1, None),
        (start + 0.2, None),
        (start + 0.5, AT_RIM),
    ])
    assert engine.debug_snapshot().pending_candidate == "PatternA"


class _ListSink:
    def __init__(self):
        self.lines = []

    def debug(self, message):
        self.lines.append(message)


def test_gap_arrival_then_rim_overlap_emits_make():
    """
    Outside, two missing frames, arrival at the rim on frame 3, make on frame 4

    The arrival frame only opens the candidate; confirmation needs the next
    in-zone frame. A "fires on the arrival frame at 0.25 s" reading of this
    sequence is intentionally not followed, see DESIGN.md.
    """
    engine = ShotRuleEngine()
    events = _feed(engine, [
        (0 * FRAME, OUTSIDE),
        (1 * FRAME, None),
        (2 * FRAME, None),
        (3 * FRAME, AT_RIM),
    ])
    assert events == []
    assert engine.debug_snapshot().pending_candidate == "PatternA"

    event = engine.consume_frame(4 * FRAME, _frame(AT_RIM))

    assert event is not None
    assert event.time == pytest.approx(4 * FRAME)
    assert event.type == "make"
    snapshot = engine.debug_snapshot()
    assert snapshot.last_trigger_reason.startswith("PatternA")
    assert snapshot.last_confirmation == CONFIRM_VIA_IOU_RIM
    assert snapshot.pending_candidate is None
    assert snapshot.makes_count == 1
    assert engine.detected_makes == [event]


def test_disappearance_confirms_after_three_missing_frames():
    engine = ShotRuleEngine()
    _open_gap_candidate(engine)

    events = _feed(engine, [(1.1, None), (1.2, None)])
    assert events == []

    event = engine.consume_frame(1.3, _frame(None))

    assert event is not None
    assert event.time == pytest.approx(1.3)
    assert engine.debug_snapshot().last_confirmation == CONFIRM_VIA_DISAPPEAR


def test_ball_below_net_confirms():
    engine = ShotRuleEngine()
    _open_gap_candidate(engine)

    event = engine.consume_frame(1.1, _frame((0.50, 0.50)))

    assert event is not None
    assert engine.debug_snapshot().last_confirmation == CONFIRM_VIA_BELOW_HOOP


def test_outside_streak_invalidates_candidate():
    engine = ShotRuleEngine()
    _open_gap_candidate(engine)

    _feed(engine, [(1.1, OUTSIDE), (1.2, OUTSIDE)])
    assert engine.debug_snapshot().pending_candidate == "PatternA"
    _feed(engine, [(1.3, OUTSIDE)])
    assert engine.debug_snapshot().pending_candidate is None

    # Re-entry right after does not revive it
    events = _feed(engine, [
        (1.4, AT_RIM),
        (1.5, AT_RIM),
        (1.6, None),
        (1.7, None),
        (1.8, None),
    ])
    assert events == []
    assert engine.detected_makes == []


def test_candidate_expires():
    engine = ShotRuleEngine()
    _open_gap_candidate(engine)

    events = _feed(engine, [(3.1, None), (3.2, None), (3.3, None)])

    assert events == []
    assert engine.debug_snapshot().pending_candidate is None
    assert any("expired" in line for line in engine.diagnostic_lines)


def test_confirmation_inside_dedup_window_is_dropped():
    engine = ShotRuleEngine(ShotRuleConfig(cooldown_seconds=0.0))
    first = _feed(engine, [(0.0, OUTSIDE), (0.1, None), (0.2, None), (0.3, AT_RIM), (0.4, AT_RIM)])
    assert len(first) == 1

    second = _feed(engine, [(0.5, OUTSIDE), (0.6, None), (0.7, None), (0.8, AT_RIM), (0.9, AT_RIM)])

    assert second == []
    assert len(engine.detected_makes) == 1
    assert engine.debug_snapshot().last_trigger_reason.startswith("DEDUP")


def test_cooldown_blocks_new_candidates():
    engine = ShotRuleEngine()
    first = _feed(engine, [(0.0, OUTSIDE), (0.1, None), (0.2, None), (0.3, AT_RIM), (0.4, AT_RIM)])
    assert len(first) == 1
    assert engine.debug_snapshot().cooldown_remaining == pytest.approx(6.0)

    blocked = _feed(engine, [(2.0, OUTSIDE), (2.1, None), (2.2, None), (2.3, AT_RIM), (2.4, AT_RIM),
                             (2.5, None), (2.6, None), (2.7, None)])
    assert blocked == []

    later = _feed(engine, [(7.0, OUTSIDE), (7.1, None), (7.2, None), (7.3, AT_RIM), (7.4, AT_RIM)])
    assert [e.time for e in later] == [pytest.approx(7.4)]

    times = [e.time for e in engine.detected_makes]
    assert times[1] - times[0] >= 6.0


def test_hoop_jump_resets_track_and_drops_candidate():
    engine = ShotRuleEngine()
    _open_gap_candidate(engine)
    moved = NormBox(0.05, 0.30, 0.10, 0.08)

    engine.consume_frame(1.1, _frame(None, hoop=moved))

    snapshot = engine.debug_snapshot()
    assert snapshot.smoothed_hoop == moved
    assert snapshot.pending_candidate is None
    # The old candidate would have confirmed by disappearance here
    events = _feed(engine, [(1.2, None), (1.3, None)])
    assert events == []
    assert engine.detected_makes == []


def test_hoop_reset_cooldown_blocks_arrivals():
    engine = ShotRuleEngine()
    moved = NormBox(0.05, 0.30, 0.10, 0.08)
    engine.consume_frame(0.0, _frame(None))
    engine.consume_frame(0.1, _frame(None, hoop=moved))
    engine.consume_frame(0.2, _frame(None))  # back to HOOP: second reset at t=0.2

    _feed(engine, [(1.0, OUTSIDE), (1.1, None), (1.2, None), (1.5, AT_RIM)])

    assert engine.debug_snapshot().pending_candidate is None


def test_hoop_ema_converges_monotonically():
    engine = ShotRuleEngine()
    target = NormBox(0.47, 0.31, 0.12, 0.09)
    engine.consume_frame(0.0, _frame(None))

    distances = []
    for i in range(1, 8):
        engine.consume_frame(i * FRAME, _frame(None, hoop=target))
        smoothed = engine.debug_snapshot().smoothed_hoop
        distances.append(center_distance(smoothed, target) + abs(smoothed.width - target.width))

    assert all(later < earlier for earlier, later in zip(distances, distances[1:]))
    assert distances[-1] < 0.001


def test_hoop_track_initializes_from_first_observation():
    track = HoopTrack()
    assert track.observe(HOOP, 0.0, 0.5, 0.30) is None
    assert track.smoothed == HOOP

    shifted = NormBox(0.55, 0.30, 0.10, 0.08)
    assert track.observe(shifted, 0.1, 0.5, 0.30) is None
    assert track.smoothed.x == pytest.approx(0.50)

    far = NormBox(0.05, 0.70, 0.10, 0.08)
    jump = track.observe(far, 0.2, 0.5, 0.30)
    assert jump > 0.30
    assert track.smoothed == far
    assert track.last_reset_time == 0.2


def test_displacement_arrival_without_gap():
    engine = ShotRuleEngine()
    _feed(engine, [(0.0, (0.50, 0.52)), (0.1, (0.50, 0.40))])
    assert engine.debug_snapshot().pending_candidate == "PatternB"


def test_short_gap_large_jump_is_not_an_arrival():
    engine = ShotRuleEngine()
    _feed(engine, [(0.0, OUTSIDE), (0.1, AT_RIM)])
    assert engine.debug_snapshot().pending_candidate is None


def test_iou_arrival_wins_over_descent():
    engine = ShotRuleEngine()
    # Ball drops from above the zone onto the rim in small steps
    _feed(engine, [(0.0, (0.50, 0.22)), (0.1, (0.50, 0.26)), (0.2, (0.50, 0.30))])
    assert engine.debug_snapshot().pending_candidate == "PatternC"


def test_descent_arrival():
    engine = ShotRuleEngine()
    # Offset to the side of the rim, so neither displacement nor IoU qualifies
    _feed(engine, [(0.0, (0.56, 0.21)), (0.1, (0.56, 0.25)), (0.2, (0.56, 0.29))])
    assert engine.debug_snapshot().pending_candidate == "PatternD"


def test_no_hoop_never_emits():
    engine = ShotRuleEngine()
    for i in range(10):
        assert engine.consume_frame(i * FRAME, [_ball(*AT_RIM)]) is None
    snapshot = engine.debug_snapshot()
    assert snapshot.hoop_locked is False
    assert snapshot.smoothed_hoop is None
    assert snapshot.rim_y is None


def test_ball_near_hoop_preferred_over_far_ball():
    engine = ShotRuleEngine()
    far = _ball(0.10, 0.80, confidence=0.8)
    near = _ball(0.52, 0.36, confidence=0.8)
    engine.consume_frame(0.0, [_hoop(), far, near])
    assert engine.debug_snapshot().selected_ball == near.box


def test_out_of_order_frame_is_ignored():
    engine = ShotRuleEngine()
    engine.consume_frame(1.0, _frame(OUTSIDE))
    before = engine.debug_snapshot()

    assert engine.consume_frame(0.5, _frame(AT_RIM)) is None

    assert engine.debug_snapshot() is before
    assert "out-of-order" in engine.diagnostic_lines[-1]


def test_snapshot_reports_armed_state_and_rim():
    engine = ShotRuleEngine()
    engine.consume_frame(0.0, _frame(OUTSIDE))
    engine.consume_frame(0.5, _frame(None))
    snapshot = engine.debug_snapshot()
    assert snapshot.armed is True
    assert snapshot.last_outside_age == pytest.approx(0.5)
    assert snapshot.rim_y == pytest.approx(0.30 + 0.8 * 0.08)
    assert snapshot.selected_hoop == HOOP
    assert snapshot.selected_ball is None


def test_reset_clears_session():
    engine = ShotRuleEngine()
    _feed(engine, [(0.0, OUTSIDE), (0.1, None), (0.2, None), (0.3, AT_RIM), (0.4, AT_RIM)])
    assert len(engine.detected_makes) == 1

    engine.reset()

    assert engine.detected_makes == []
    assert engine.debug_snapshot().makes_count == 0
    assert len(engine.diagnostic_lines) == 0
    # Earlier timestamps are accepted again after a reset
    assert engine.consume_frame(0.0, _frame(OUTSIDE)) is None
    assert engine.debug_snapshot().armed is True


def test_engines_do_not_share_state():
    first = ShotRuleEngine()
    second = ShotRuleEngine()
    _feed(first, [(0.0, OUTSIDE), (0.1, None), (0.2, None), (0.3, AT_RIM), (0.4, AT_RIM)])
    assert len(first.detected_makes) == 1
    assert second.detected_makes == []
    assert second.debug_snapshot().hoop_locked is False


def test_detected_makes_is_a_copy():
    engine = ShotRuleEngine()
    _feed(engine, [(0.0, OUTSIDE), (0.1, None), (0.2, None), (0.3, AT_RIM), (0.4, AT_RIM)])
    engine.detected_makes.clear()
    assert len(engine.detected_makes) == 1


def test_diagnostics_go_to_sink_and_trail_is_bounded():
    sink = _ListSink()
    engine = ShotRuleEngine(diagnostics=sink, max_diagnostic_lines=5)
    for i in range(10):
        engine.consume_frame(i * FRAME, _frame(None))

    assert len(sink.lines) >= 10
    assert sink.lines[0].startswith("FRAME t=0.00")
    assert len(engine.diagnostic_lines) == 5
    assert list(engine.diagnostic_lines) == sink.lines[-5:]
