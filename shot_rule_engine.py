"""
Per-frame rule engine that turns ball/hoop detections into made-basket events.

The detector rarely sees the ball in flight near the rim (too fast, too small)
but reliably sees it in players' hands. The engine therefore watches for the
ball to *arrive* in a zone around the hoop after being observed elsewhere:

    A  gap arrival          ball seen outside, undetected >= 2 frames, then inside
    B  displacement arrival ball jumps >= arrival_displacement on the transition
    C  IoU arrival          ball box overlaps the hoop box on the transition
    D  descent arrival      ball was above the hoop recently and dropped into the zone

An arrival only opens a candidate. A make is emitted when the candidate is
confirmed by rim overlap/proximity, by the ball reappearing below the net, or
by the ball disappearing (occluded by the net) for a few frames.

The hoop is followed with an exponential moving average so a panning camera
does not leave a stale reference; a large jump is treated as a scene cut.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Optional

from detection import MakeEvent, NormBox
from geometry import center_distance, compute_iou, point_distance

logger = logging.getLogger(__name__)

CONFIRM_VIA_IOU_RIM = "iou/rim"
CONFIRM_VIA_BELOW_HOOP = "below-hoop"
CONFIRM_VIA_DISAPPEAR = "disappear"


@dataclass(frozen=True)
class ShotRuleConfig:
    # Hoop EMA smoothing factor (0 = frozen, 1 = follow raw box)
    hoop_ema_alpha: float = 0.5
    # Hoop center jump (normalized) treated as a scene cut
    hoop_jump_reset_threshold: float = 0.30
    # Ball-hoop IoU counted as "ball at rim"
    iou_threshold: float = 0.08
    # Zone extent above hoop.min_y / below hoop.max_y, in hoop heights
    hoop_zone_above_ratio: float = 0.30
    hoop_zone_below_ratio: float = 1.20
    # Horizontal tolerance beyond half the hoop width, in hoop widths
    x_margin_ratio: float = 0.20
    # Max time from the last outside sighting to an arrival
    shot_window_seconds: float = 8.0
    # Min jump counted as an arrival
    arrival_displacement: float = 0.05
    # Missing frames that confirm a candidate by disappearance
    disappear_frames: int = 3
    # Min time between two makes
    cooldown_seconds: float = 6.0
    # Quiet period after a hoop reset
    hoop_reset_cooldown: float = 2.5
    # Re-entry within this window continues the previous inside run
    inside_grace_period: float = 0.5
    # Candidate lifetime
    confirm_window_seconds: float = 2.0
    # IoU confirming a pending candidate
    confirm_iou_threshold: float = 0.05
    # Ball y within this many hoop heights of the rim line confirms
    confirm_rim_y_ratio: float = 1.5
    # Arrivals after a 0-1 frame gap must not jump further than this
    max_short_gap_displacement: float = 0.20
    # Consecutive outside frames that invalidate a candidate
    candidate_outside_max: int = 3
    # Confirmations closer than this to the previous event are dropped
    dedup_seconds: float = 1.0
    # Ball score = confidence - weight * distance to hoop center
    ball_distance_weight: float = 0.8
    # Rim line position below hoop.min_y, in hoop heights
    rim_height_ratio: float = 0.80
    # Descent arrival: how far back an above-hoop sighting may be, and the min drop
    descent_lookback_seconds: float = 1.5
    descent_min_drop: float = 0.03
    # Ball positions kept for descent detection
    ball_history_seconds: float = 2.0


@dataclass
class HoopTrack:
    smoothed: Optional[NormBox] = None
    last_reset_time: float = -math.inf

    def observe(self, raw, timestamp, alpha, jump_threshold):
        """
        Fold one raw hoop box into the track

        Returns:
            float or None: Center jump when the track was hard-reset, else None
        """
        current = self.smoothed
        if current is None:
            self.smoothed = raw
            return None

        jump = center_distance(raw, current)
        if jump > jump_threshold:
            self.smoothed = raw
            self.last_reset_time = timestamp
            return jump

        self.smoothed = NormBox(
            current.x * (1 - alpha) + raw.x * alpha,
            current.y * (1 - alpha) + raw.y * alpha,
            current.width * (1 - alpha) + raw.width * alpha,
            current.height * (1 - alpha) + raw.height * alpha,
        )
        return None


@dataclass
class Candidate:
    opened_at: float
    reason_tag: str
    detail: str
    expires_at: float
    seen_in_zone: bool = True
    missing_streak: int = 0
    outside_streak: int = 0

    @property
    def reason(self):
        return f"{self.reason_tag}: {self.detail}"


@dataclass(frozen=True)
class DebugSnapshot:
    smoothed_hoop: Optional[NormBox] = None
    selected_hoop: Optional[NormBox] = None
    selected_ball: Optional[NormBox] = None
    rim_y: Optional[float] = None
    hoop_locked: bool = False
    cooldown_remaining: float = 0.0
    makes_count: int = 0
    armed: bool = False
    last_outside_age: float = 0.0
    pending_candidate: Optional[str] = None
    last_trigger_reason: str = ""
    last_confirmation: str = ""


@dataclass(frozen=True)
class _BallSighting:
    t: float
    bx: float
    by: float


class ShotRuleEngine:
    """
    Stateful make detector for one video session

    Feed frames in timestamp order through consume_frame(); the engine is not
    thread-safe and owns all of its state. Create one instance per video.

    Args:
        config: ShotRuleConfig with the tunable thresholds
        diagnostics: Sink for the per-frame reasoning trail; any object with a
            debug(message) method. Defaults to this module's logger.
        max_diagnostic_lines: Size of the in-memory reasoning trail
    """

    def __init__(self, config=None, diagnostics=None, max_diagnostic_lines=5000):
        self.config = config or ShotRuleConfig()
        self.diagnostics = diagnostics if diagnostics is not None else logger
        self.diagnostic_lines = deque(maxlen=max_diagnostic_lines)
        self.reset()

    def reset(self):
        self.hoop_track = HoopTrack()
        self.candidate = None

        # Arrival tracking
        self._last_outside_time = None
        self._last_outside_pos = None
        self._was_inside_last_frame = False
        self._gap_frames = 0
        self._last_inside_time = None
        self._ball_history = deque()

        self._last_make_time = -math.inf
        self._last_timestamp = None
        self._makes = []

        self._selected_hoop = None
        self._selected_ball = None
        self._last_trigger_reason = ""
        self._last_confirmation = ""
        self._snapshot = DebugSnapshot()
        self.diagnostic_lines.clear()

    @property
    def detected_makes(self):
        return list(self._makes)

    def debug_snapshot(self):
        return self._snapshot

    def consume_frame(self, timestamp, detections):
        """
        Process the detections of one sampled frame

        Args:
            timestamp: Frame time in seconds; must not go backwards within a session
            detections: All Detection values reported for this frame

        Returns:
            MakeEvent or None: The make confirmed on this frame, if any
        """
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            self._log(f"SKIP t={timestamp:.2f}  out-of-order (last t={self._last_timestamp:.2f})")
            return None
        self._last_timestamp = timestamp

        event = self._step(timestamp, detections)
        self._refresh_snapshot(timestamp)
        return event

    # ------------------------------------------------------------------

    def _step(self, t, detections):
        cfg = self.config

        if self.candidate is not None and t > self.candidate.expires_at:
            self._log(f"DROP t={t:.2f}  reason=expired  cand={self.candidate.reason}")
            self.candidate = None

        hoops = [d for d in detections if d.is_hoop]
        hoop_det = max(hoops, key=lambda d: d.confidence) if hoops else None
        self._selected_hoop = hoop_det.box if hoop_det else None
        self._selected_ball = None

        if hoop_det is not None:
            jump = self.hoop_track.observe(hoop_det.box, t, cfg.hoop_ema_alpha,
                                           cfg.hoop_jump_reset_threshold)
            if jump is not None:
                # A scene cut invalidates whatever the old scene was building up
                if self.candidate is not None:
                    self._log(f"t={t:.2f}  HOOP RESET invalidated cand={self.candidate.reason}")
                    self.candidate = None
                self._log(f"t={t:.2f}  *** HOOP RESET (jump={jump:.3f})")

        hoop = self.hoop_track.smoothed
        if hoop is None:
            self._gap_frames += 1
            self._was_inside_last_frame = False
            return None

        balls = [d for d in detections if d.is_ball]
        ball_det = self._select_ball(balls, hoop)
        if ball_det is not None:
            self._selected_ball = ball_det.box

        cd_remaining = self._cooldown_remaining(t)
        reset_cd_remaining = max(0.0, cfg.hoop_reset_cooldown - (t - self.hoop_track.last_reset_time))

        cand_str = f"{self.candidate.opened_at:.2f}" if self.candidate else "nil"
        b_conf = f"{ball_det.confidence:.2f}" if ball_det else "-"
        b_pos = f"({ball_det.box.mid_x:.3f},{ball_det.box.mid_y:.3f})" if ball_det else "(-,-)"
        h_conf = hoop_det.confidence if hoop_det else 0.0
        self._log(f"FRAME t={t:.2f} bN={len(balls)} bConf={b_conf} bPos={b_pos} hConf={h_conf:.2f} "
                  f"hMid=({hoop.mid_x:.3f},{hoop.mid_y:.3f}) gap={self._gap_frames} "
                  f"cand={cand_str} cd={cd_remaining:.1f}")

        if ball_det is None:
            return self._ball_missing(t, hoop, cd_remaining)

        ball = ball_det.box
        bx, by = ball.center
        iou = compute_iou(ball, hoop)
        if self.candidate is not None:
            self.candidate.missing_streak = 0

        self._ball_history.append(_BallSighting(t, bx, by))
        while self._ball_history and t - self._ball_history[0].t > cfg.ball_history_seconds:
            self._ball_history.popleft()

        if self._in_zone(ball, hoop, iou):
            return self._ball_in_zone(t, ball, hoop, iou, cd_remaining, reset_cd_remaining)
        return self._ball_outside_zone(t, ball, hoop, cd_remaining)

    def _select_ball(self, balls, hoop):
        """Prefer a confident ball near the hoop over an equally confident one far away"""
        if not balls:
            return None
        weight = self.config.ball_distance_weight
        return max(balls, key=lambda d: d.confidence - weight * center_distance(d.box, hoop))

    def _in_zone(self, ball, hoop, iou):
        cfg = self.config
        bx, by = ball.center
        zone_top = hoop.min_y - cfg.hoop_zone_above_ratio * hoop.height
        zone_bottom = hoop.max_y + cfg.hoop_zone_below_ratio * hoop.height
        horizontal_fit = abs(bx - hoop.mid_x) <= hoop.width * 0.5 + cfg.x_margin_ratio * hoop.width
        # IoU covers a ball partially occluded at the rim
        return (horizontal_fit and zone_top <= by <= zone_bottom) or iou > cfg.iou_threshold

    def _rim_y(self, hoop):
        return hoop.min_y + self.config.rim_height_ratio * hoop.height

    def _cooldown_remaining(self, t):
        return max(0.0, self.config.cooldown_seconds - (t - self._last_make_time))

    def _ball_in_zone(self, t, ball, hoop, iou, cd_remaining, reset_cd_remaining):
        cfg = self.config
        bx, by = ball.center
        diag = (f"t={t:.2f}  ball=({bx:.3f},{by:.3f})  hoopMid=({hoop.mid_x:.3f},{hoop.mid_y:.3f})  "
                f"iou={iou:.3f}  zoneIN=Y  gap={self._gap_frames}")

        cand = self.candidate
        if cand is not None:
            cand.outside_streak = 0
            cand.seen_in_zone = True
            rim_dist = abs(by - self._rim_y(hoop))
            confirmed = iou >= cfg.confirm_iou_threshold or rim_dist <= cfg.confirm_rim_y_ratio * hoop.height
            if confirmed and cd_remaining <= 0:
                reason = f"{cand.reason} <- CONF(iou={iou:.3f} rim={rim_dist:.3f})"
                self.candidate = None
                self._last_inside_time = t
                self._was_inside_last_frame = True
                return self._emit_make(t, reason, CONFIRM_VIA_IOU_RIM)

        if self._last_inside_time is None:
            recently_inside = math.inf
        else:
            recently_inside = t - self._last_inside_time

        if not self._was_inside_last_frame and recently_inside > cfg.inside_grace_period:
            if self._last_outside_time is not None:
                dt = t - self._last_outside_time
                disp = point_distance((bx, by), self._last_outside_pos)
                if dt <= cfg.shot_window_seconds and cd_remaining <= 0 and reset_cd_remaining <= 0:
                    arrival = self._match_arrival(t, bx, by, hoop, iou, disp, dt)
                    if arrival is None:
                        self._log(f"{diag}  SKIP(gap={self._gap_frames} disp={disp:.3f})")
                    else:
                        tag, detail = arrival
                        self._open_candidate(t, tag, detail)
                        self._log(f"{diag}  CANDIDATE({self.candidate.reason})")
                else:
                    self._log(f"{diag}  SKIP(dt={dt:.2f} cd={cd_remaining:.1f} resetCd={reset_cd_remaining:.1f})")
            else:
                self._log(f"{diag}  SKIP(no-outside-ref)")
        else:
            self._log(f"{diag}  CONT(wasIn={self._was_inside_last_frame} recentIn={recently_inside:.2f})")

        self._last_inside_time = t
        self._was_inside_last_frame = True
        return None

    def _match_arrival(self, t, bx, by, hoop, iou, disp, dt):
        """
        Evaluate the arrival patterns in fixed precedence A, B, C, D

        Returns:
            tuple or None: (reason tag, detail) of the first matching pattern
        """
        cfg = self.config
        gap = self._gap_frames

        # A 0-1 frame "jump" larger than this is usually the detector switching
        # to a different object, not the ball moving
        short_gap_ok = gap > 1 or disp <= cfg.max_short_gap_displacement
        if short_gap_ok:
            if gap >= 2 and disp >= cfg.arrival_displacement:
                return "PatternA", f"gap={gap} disp={disp:.3f} dt={dt:.2f}"
            if disp >= cfg.arrival_displacement:
                return "PatternB", f"disp={disp:.3f} dt={dt:.2f}"
            if iou > cfg.iou_threshold:
                return "PatternC", f"IoU={iou:.3f} dt={dt:.2f}"

        if len(self._ball_history) >= 3:
            above = [s for s in self._ball_history
                     if s.by < hoop.min_y
                     and abs(s.bx - hoop.mid_x) <= hoop.width * 1.5
                     and t - s.t <= cfg.descent_lookback_seconds]
            if above and by >= hoop.min_y - 0.2 * hoop.height:
                earliest = above[0]
                drop = by - earliest.by
                if drop > cfg.descent_min_drop:
                    return "PatternD", f"descent={drop:.3f} from_t={earliest.t:.2f}"
        return None

    def _open_candidate(self, t, tag, detail):
        self.candidate = Candidate(
            opened_at=t,
            reason_tag=tag,
            detail=detail,
            expires_at=t + self.config.confirm_window_seconds,
        )
        self._log(f"CAND t={t:.2f}  {self.candidate.reason}  expire={self.candidate.expires_at:.2f}")

    def _ball_outside_zone(self, t, ball, hoop, cd_remaining):
        cfg = self.config
        bx, by = ball.center
        cand = self.candidate

        # Ball fell through the net and reappeared below it
        if cand is not None and cand.seen_in_zone:
            below_hoop = by > hoop.max_y + 0.5 * hoop.height
            near_hoop_x = abs(bx - hoop.mid_x) <= hoop.width
            if below_hoop and near_hoop_x and cd_remaining <= 0:
                reason = f"{cand.reason} <- CONF(below: y={by:.3f} hoopBot={hoop.max_y:.3f})"
                self.candidate = None
                self._last_inside_time = t
                self._was_inside_last_frame = False
                return self._emit_make(t, reason, CONFIRM_VIA_BELOW_HOOP)

        if cand is not None:
            cand.outside_streak += 1
            if cand.outside_streak >= cfg.candidate_outside_max:
                self._log(f"t={t:.2f}  CAND INVALIDATED (outside={cand.outside_streak}) cand={cand.reason}")
                self.candidate = None

        self._log(f"t={t:.2f}  ball=({bx:.3f},{by:.3f})  zoneIN=N  gap={self._gap_frames}")
        self._last_outside_time = t
        self._last_outside_pos = (bx, by)
        self._gap_frames = 0
        self._was_inside_last_frame = False
        return None

    def _ball_missing(self, t, hoop, cd_remaining):
        self._gap_frames += 1
        self._was_inside_last_frame = False
        self._ball_history.clear()

        in_age = t - self._last_inside_time if self._last_inside_time is not None else -1
        self._log(f"t={t:.2f}  BALL=nil  hoopMid=({hoop.mid_x:.3f},{hoop.mid_y:.3f})  zoneIN=N  "
                  f"gap={self._gap_frames}  inAge={in_age:.2f}  cd={cd_remaining:.1f}")

        # Ball occluded by the net
        cand = self.candidate
        if cand is not None and cand.seen_in_zone:
            cand.missing_streak += 1
            if cand.missing_streak >= self.config.disappear_frames and cd_remaining <= 0:
                reason = f"{cand.reason} <- CONF(disappear={cand.missing_streak})"
                self.candidate = None
                return self._emit_make(t, reason, CONFIRM_VIA_DISAPPEAR)
        return None

    def _emit_make(self, t, reason, via):
        if self._makes and abs(self._makes[-1].time - t) < self.config.dedup_seconds:
            self._log(f">>> DEDUP skip @ t={t:.2f}  {reason}")
            self._last_trigger_reason = f"DEDUP: {reason}"
            return None

        self._last_make_time = t
        self._last_outside_time = None
        self._last_outside_pos = None
        self._was_inside_last_frame = False
        self._gap_frames = 0
        self._last_inside_time = None

        event = MakeEvent(time=t)
        self._makes.append(event)
        self._last_trigger_reason = reason
        self._last_confirmation = via
        self._log(f">>> MAKE @ t={t:.2f}  {reason}  via={via}")
        return event

    def _refresh_snapshot(self, t):
        hoop = self.hoop_track.smoothed
        self._snapshot = DebugSnapshot(
            smoothed_hoop=hoop,
            selected_hoop=self._selected_hoop,
            selected_ball=self._selected_ball,
            rim_y=self._rim_y(hoop) if hoop is not None else None,
            hoop_locked=hoop is not None,
            cooldown_remaining=self._cooldown_remaining(t),
            makes_count=len(self._makes),
            armed=self._last_outside_time is not None,
            last_outside_age=t - self._last_outside_time if self._last_outside_time is not None else 0.0,
            pending_candidate=self.candidate.reason_tag if self.candidate else None,
            last_trigger_reason=self._last_trigger_reason,
            last_confirmation=self._last_confirmation,
        )

    def _log(self, line):
        self.diagnostic_lines.append(line)
        self.diagnostics.debug(line)
