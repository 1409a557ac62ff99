import pytest

from ShapeGeometry import (Rect, absolute_to_relative_points, absolute_to_relative_rect, clamp_relative,
                           format_decimal, is_relative_polygon, is_relative_rect, normalized_rect,
                           rect_to_yolo, relative_to_absolute_points, relative_to_absolute_rect, yolo_to_rect)


def test_normalized_rect_orders_corners():
    assert normalized_rect(0.5, 0.6, 0.1, 0.2) == Rect(0.1, 0.2, 0.5, 0.6)


def test_rect_properties():
    rect = Rect(0.2, 0.4, 0.6, 0.5)
    assert rect.width == pytest.approx(0.4)
    assert rect.height == pytest.approx(0.1)
    assert rect.center_x == pytest.approx(0.4)
    assert rect.center_y == pytest.approx(0.45)


def test_relative_checks():
    assert is_relative_rect(Rect(0.0, 0.0, 1.0, 1.0))
    assert not is_relative_rect(Rect(0.0, 0.0, 1.2, 1.0))
    assert not is_relative_rect(Rect(0.5, 0.0, 0.4, 1.0))
    assert is_relative_polygon([0.1, 0.2])
    assert not is_relative_polygon([])
    assert not is_relative_polygon([0.1, 0.2, 0.3])
    assert not is_relative_polygon([0.1, 1.2])


def test_absolute_relative_conversion():
    absolute = relative_to_absolute_rect(Rect(0.25, 0.25, 0.5, 0.5), 200, 100)
    assert absolute == Rect(50, 25, 100, 50)
    assert absolute_to_relative_rect(absolute, 200, 100) == Rect(0.25, 0.25, 0.5, 0.5)

    points = relative_to_absolute_points([0.5, 0.5, 1.0, 0.0], 200, 100)
    assert points == [100, 50, 200, 0]
    assert absolute_to_relative_points(points, 200, 100) == [0.5, 0.5, 1.0, 0.0]


def test_absolute_out_of_image_is_rejected():
    with pytest.raises(ValueError):
        absolute_to_relative_rect(Rect(0, 0, 300, 10), 200, 100)
    with pytest.raises(ValueError):
        relative_to_absolute_rect(Rect(0, 0, 1, 1), 0, 100)


def test_clamp_relative_only_absorbs_rounding():
    assert clamp_relative(1.0000001) == 1.0
    assert clamp_relative(-0.0000001) == 0.0
    with pytest.raises(ValueError):
        clamp_relative(1.01)


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_values_are_rejected(value):
    with pytest.raises(ValueError):
        clamp_relative(value)
    with pytest.raises(ValueError):
        yolo_to_rect(value, 0.5, 0.1, 0.1)
    with pytest.raises(ValueError):
        absolute_to_relative_rect(Rect(0, 0, 10, 10), value, 100)


def test_yolo_conversion():
    assert rect_to_yolo(Rect(0.25, 0.25, 0.5, 0.75)) == pytest.approx((0.375, 0.5, 0.25, 0.5))
    rect = yolo_to_rect(0.375, 0.5, 0.25, 0.5)
    assert tuple(rect) == pytest.approx((0.25, 0.25, 0.5, 0.75))
    with pytest.raises(ValueError):
        yolo_to_rect(0.5, 0.5, -0.1, 0.1)


def test_format_decimal():
    assert format_decimal(1 / 3, 6) == "0.333333"
    assert format_decimal(50, 2) == "50.00"
    assert format_decimal(-0.001, 2) == "0.00"
    assert format_decimal(12.345678, 2) == "12.35"
