"""
Geometry helpers shared by the annotation model and the file codecs.

All shapes are stored in relative coordinates (0-1 against the image width and
height). Absolute pixel coordinates only appear at the codec boundary.
"""
import math
from typing import NamedTuple, List, Sequence, Tuple

#tolerance used when rounding pushes a value just outside [0, 1]
RELATIVE_TOLERANCE = 1e-6


class Rect(NamedTuple):
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self):
        return self.max_x - self.min_x

    @property
    def height(self):
        return self.max_y - self.min_y

    @property
    def center_x(self):
        return (self.min_x + self.max_x) / 2

    @property
    def center_y(self):
        return (self.min_y + self.max_y) / 2


def normalized_rect(x1, y1, x2, y2) -> Rect:
    """Builds a Rect from two corners given in any order."""
    return Rect(min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2))


def is_relative_coordinate(value) -> bool:
    return 0.0 <= value <= 1.0


def is_relative_rect(rect: Rect) -> bool:
    return (all(is_relative_coordinate(v) for v in rect)
            and rect.min_x <= rect.max_x and rect.min_y <= rect.max_y)


def is_relative_polygon(points: Sequence[float]) -> bool:
    """A polygon is a flat [x0, y0, x1, y1, ...] list with an even, non-zero length."""
    return (len(points) > 0 and len(points) % 2 == 0
            and all(is_relative_coordinate(v) for v in points))


def clamp_relative(value: float) -> float:
    """Clamps values that drifted out of [0, 1] by rounding only.

    Raises ValueError for NaN, infinity and anything further out than
    RELATIVE_TOLERANCE.
    """
    if not math.isfinite(value):
        raise ValueError(f"relative coordinate {value} is not a finite number")
    if value < -RELATIVE_TOLERANCE or value > 1.0 + RELATIVE_TOLERANCE:
        raise ValueError(f"relative coordinate {value} outside [0, 1]")
    return max(0.0, min(1.0, value))


def _check_dimensions(width, height):
    if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
        raise ValueError(f"invalid image dimensions {width}x{height}")


def relative_to_absolute_rect(rect: Rect, width, height) -> Rect:
    _check_dimensions(width, height)
    return Rect(rect.min_x * width, rect.min_y * height, rect.max_x * width, rect.max_y * height)


def absolute_to_relative_rect(rect: Rect, width, height) -> Rect:
    _check_dimensions(width, height)
    return Rect(clamp_relative(rect.min_x / width), clamp_relative(rect.min_y / height),
                clamp_relative(rect.max_x / width), clamp_relative(rect.max_y / height))


def relative_to_absolute_points(points: Sequence[float], width, height) -> List[float]:
    _check_dimensions(width, height)
    return [v * (width if i % 2 == 0 else height) for i, v in enumerate(points)]


def absolute_to_relative_points(points: Sequence[float], width, height) -> List[float]:
    _check_dimensions(width, height)
    return [clamp_relative(v / (width if i % 2 == 0 else height)) for i, v in enumerate(points)]


def rect_to_yolo(rect: Rect) -> Tuple[float, float, float, float]:
    """Relative Rect -> (center_x, center_y, width, height), all relative."""
    return rect.center_x, rect.center_y, rect.width, rect.height


def yolo_to_rect(center_x, center_y, box_w, box_h) -> Rect:
    """(center_x, center_y, width, height) relative -> relative Rect."""
    if box_w < 0 or box_h < 0:
        raise ValueError("negative box size")
    return Rect(clamp_relative(center_x - box_w / 2), clamp_relative(center_y - box_h / 2),
                clamp_relative(center_x + box_w / 2), clamp_relative(center_y + box_h / 2))


def format_decimal(value: float, precision: int) -> str:
    """Fixed-point text with a '.' separator, independent of the host locale."""
    text = f"{value:.{precision}f}"
    #avoid "-0.00" for tiny negative rounding noise
    if text.startswith("-") and float(text) == 0:
        text = text[1:]
    return text
