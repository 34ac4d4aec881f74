"""Attachment points and anchor layout."""

import pytest

from g2a.core.geometry import (
    Rect,
    ViewportMetrics,
    attachment_point,
    compute_anchor_geometry,
    link_segment,
    resolve_point,
)
from g2a.core.models import Anchor, Binomio, Point

BOX = Rect(left=100, top=50, width=200, height=40)


@pytest.mark.parametrize(
    "pointer,expected",
    [
        ((102, 70), (0.0, 0.5)),
        ((297, 60), (1.0, 0.25)),
        ((150, 51), (0.25, 0.0)),
        ((250, 89), (0.75, 1.0)),
    ],
)
def test_pointer_snaps_to_nearest_edge(pointer, expected):
    point = attachment_point(pointer, BOX)
    assert (point.x, point.y) == pytest.approx(expected)


def test_pointer_outside_the_box_is_clamped_first():
    point = attachment_point((40, 10), BOX)
    # clamped to the top-left corner; left wins the tie
    assert (point.x, point.y) == (0.0, 0.0)


def test_ties_prefer_left_then_right_then_top():
    square = Rect(left=0, top=0, width=10, height=10)
    assert attachment_point((5, 5), square) == Point(x=0.0, y=0.5)
    assert attachment_point((10, 10), square) == Point(x=1.0, y=1.0)


def test_degenerate_box_maps_collapsed_axis_to_centre():
    flat = Rect(left=10, top=10, width=0, height=20)
    point = attachment_point((30, 12), flat)
    assert point == Point(x=0.0, y=0.1)


def test_resolved_point_round_trips_through_the_box():
    point = attachment_point((250, 89), BOX)
    x, y = resolve_point(point, BOX)
    assert (x, y) == pytest.approx((250, 90))


def _anchor(anchor_id, buffer, phrase):
    start = buffer.index(phrase)
    return Anchor(
        id=anchor_id,
        session_id="S1",
        test_case_id="1",
        box_type="when",
        box_number=1,
        location="content",
        text=phrase,
        start_index=start,
        end_index=start + len(phrase),
    )


def test_geometry_lays_out_single_and_multi_line_anchors():
    buffer = "cy.visit('/')\ncy.get('#save')\n  .click()"
    single = _anchor("A", buffer, "cy.visit('/')")
    multi = _anchor("B", buffer, "cy.get('#save')\n  .click()")
    metrics = ViewportMetrics(char_width=10, line_height=20, padding_left=5, padding_top=2)

    layout = compute_anchor_geometry(buffer, [single, multi], metrics)

    assert layout["A"].rects == [Rect(left=5, top=2, width=130, height=20)]
    assert layout["B"].rects == [
        Rect(left=5, top=22, width=150, height=20),
        Rect(left=5, top=42, width=100, height=20),
    ]
    assert layout["B"].bounds == Rect(left=5, top=22, width=150, height=40)


def test_geometry_honours_soft_wrapping():
    buffer = "abcdefghij"
    anchor = _anchor("A", buffer, "cdefgh")
    layout = compute_anchor_geometry(buffer, [anchor], ViewportMetrics(char_width=1, line_height=1, wrap_columns=4))
    assert layout["A"].rects == [Rect(left=2, top=0, width=2, height=1), Rect(left=0, top=1, width=4, height=1)]


def test_link_segment_defaults_to_bottom_and_top_centres():
    buffer = "the user clicks Save\ncy.get('#save').click()"
    source = _anchor("A", buffer, "the user clicks Save")
    target = _anchor("B", buffer, "cy.get('#save').click()")
    layout = compute_anchor_geometry(buffer, [source, target], ViewportMetrics(char_width=10, line_height=20))
    link = Binomio(id="bf-1", test_case_id="1", from_object_id="A", to_object_id="B")
    start, end = link_segment(link, layout["A"], layout["B"])
    assert start == pytest.approx((100, 20))
    assert end == pytest.approx((115, 20))
