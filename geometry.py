import math

from detection import NormBox

# Default growth applied to a hoop box to get the inference region around it
DEFAULT_REGION_EXPAND = 2.2


def expand(box, factor):
    """
    Scale a box about its center

    Args:
        box: NormBox to grow or shrink
        factor: Scale applied to both width and height (2.2 -> 2.2x larger)

    Returns:
        NormBox: Box with the same center; may extend outside [0, 1]
    """
    w = box.width * factor
    h = box.height * factor
    # Shift by half the growth so a factor of 1.0 returns the box unchanged
    return NormBox(box.x - (w - box.width) / 2, box.y - (h - box.height) / 2, w, h)


def is_inside_unit_square(box):
    return (0.0 <= box.min_x and box.max_x <= 1.0 and
            0.0 <= box.min_y and box.max_y <= 1.0 and
            box.width >= 0 and box.height >= 0)


def clamp(box):
    """Clip all edges of a box into the unit square"""
    if is_inside_unit_square(box):
        return box
    x1 = max(0.0, min(1.0, box.min_x))
    y1 = max(0.0, min(1.0, box.min_y))
    x2 = max(0.0, min(1.0, box.max_x))
    y2 = max(0.0, min(1.0, box.max_y))
    return NormBox(x1, y1, max(0.0, x2 - x1), max(0.0, y2 - y1))


def expand_and_clamp(box, factor):
    return clamp(expand(box, factor))


def to_global(relative_box, region):
    """
    Map a box expressed relative to `region` back to full-frame coordinates

    A detector run on a crop reports boxes normalized to the crop:
        global.x = region.x + rel.x * region.w
        global.y = region.y + rel.y * region.h
        global.w = rel.w * region.w
        global.h = rel.h * region.h
    """
    return NormBox(
        region.x + relative_box.x * region.width,
        region.y + relative_box.y * region.height,
        relative_box.width * region.width,
        relative_box.height * region.height,
    )


def derive_region_from_locked_hoop(hoop_box, expand_factor=DEFAULT_REGION_EXPAND):
    """Working region of interest around an already locked hoop box"""
    return expand_and_clamp(hoop_box, expand_factor)


def derive_region(detections, user_box, expand_factor=DEFAULT_REGION_EXPAND):
    """
    Derive the working region of interest from a user-drawn box

    Picks the highest-confidence hoop detection overlapping `user_box` and
    grows it; without one, the user box itself is grown.

    Args:
        detections: Detections gathered while sampling inside the user box
        user_box: NormBox drawn around the hoop
        expand_factor: Growth applied to the chosen box

    Returns:
        NormBox: Region clamped to the unit square
    """
    hoops = [d for d in detections if d.is_hoop and d.box.intersects(user_box)]
    if hoops:
        best_hoop = max(hoops, key=lambda d: d.confidence)
        return expand_and_clamp(best_hoop.box, expand_factor)
    return expand_and_clamp(user_box, expand_factor)


def compute_iou(a, b):
    """Intersection over union of two boxes, 0 when they do not overlap"""
    inter_w = min(a.max_x, b.max_x) - max(a.min_x, b.min_x)
    inter_h = min(a.max_y, b.max_y) - max(a.min_y, b.min_y)
    if inter_w <= 0 or inter_h <= 0:
        return 0.0
    inter = inter_w * inter_h
    union = a.width * a.height + b.width * b.height - inter
    if union <= 0:
        return 0.0
    return inter / union


def point_distance(p1, p2):
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])


def center_distance(a, b):
    return point_distance(a.center, b.center)
