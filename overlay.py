import cv2
import cvzone

BALL_COLOR = (0, 165, 255)   # orange (BGR)
HOOP_COLOR = (0, 255, 0)
SMOOTHED_HOOP_COLOR = (0, 200, 0)
RIM_COLOR = (255, 255, 0)    # cyan


def _to_pixels(box, frame):
    height, width = frame.shape[:2]
    x1 = int(box.min_x * width)
    y1 = int(box.min_y * height)
    x2 = int(box.max_x * width)
    y2 = int(box.max_y * height)
    return x1, y1, x2, y2


def draw_detections(frame, detections):
    """Draw every detection box with its label and confidence"""
    for det in detections:
        x1, y1, x2, y2 = _to_pixels(det.box, frame)
        w, h = x2 - x1, y2 - y1
        if w <= 0 or h <= 0:
            continue
        color = BALL_COLOR if det.is_ball else HOOP_COLOR
        cvzone.cornerRect(frame, (x1, y1, w, h), l=min(15, w // 2, h // 2), t=2, colorR=color, colorC=color)
        cvzone.putTextRect(frame, f'{det.label.value} {int(det.confidence * 100)}%', (x1, max(15, y1 - 8)),
                           scale=0.8, thickness=1, colorR=color)
    return frame


def draw_debug_snapshot(frame, snapshot):
    """
    Draw the rule engine state: smoothed hoop, selected ball, rim line and a status badge

    Args:
        frame: BGR image, drawn on in place
        snapshot: DebugSnapshot from ShotRuleEngine.debug_snapshot()

    Returns:
        The same frame, for chaining
    """
    height, width = frame.shape[:2]

    if snapshot.smoothed_hoop is not None:
        x1, y1, x2, y2 = _to_pixels(snapshot.smoothed_hoop, frame)
        cv2.rectangle(frame, (x1, y1), (x2, y2), SMOOTHED_HOOP_COLOR, 2)
        cv2.circle(frame, ((x1 + x2) // 2, (y1 + y2) // 2), 2, (128, 128, 0), 2)

    if snapshot.rim_y is not None:
        rim_px = int(snapshot.rim_y * height)
        cv2.line(frame, (0, rim_px), (width, rim_px), RIM_COLOR, 1)

    if snapshot.selected_ball is not None:
        x1, y1, x2, y2 = _to_pixels(snapshot.selected_ball, frame)
        cv2.circle(frame, ((x1 + x2) // 2, (y1 + y2) // 2), 2, (0, 0, 255), 2)

    parts = ["Hoop locked" if snapshot.hoop_locked else "Locking hoop"]
    if snapshot.cooldown_remaining > 0:
        parts.append(f"CD:{snapshot.cooldown_remaining:.1f}s")
    parts.append(f"makes:{snapshot.makes_count}")
    status = " ".join(parts)

    (text_width, text_height), _ = cv2.getTextSize(status, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 2)
    origin = (max(0, width - text_width - 20), max(text_height + 10, height - 20))
    cvzone.putTextRect(frame, status, origin, scale=0.6, thickness=2, colorR=(0, 0, 0))
    return frame


def render_preview(frame, detections, snapshot):
    """Annotated copy of a frame for progress previews and output videos"""
    preview = frame.copy()
    draw_detections(preview, detections)
    draw_debug_snapshot(preview, snapshot)
    return preview
