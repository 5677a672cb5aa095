"""Bounding-box geometry helpers.

All boxes are ``BoundingBox`` instances in PDF coordinates (origin
bottom-left). PyMuPDF and pdfplumber report top-left-origin rectangles;
``from_top_left`` converts those given the page height.
"""
from functools import reduce
from typing import Iterable, List, Optional, Sequence

from .models import BoundingBox
from ..exceptions import ValidationError


def union(a: BoundingBox, b: BoundingBox) -> BoundingBox:
    """Coordinate-wise min/max envelope of two boxes on the same page."""
    if a.page != b.page:
        raise ValidationError(f"Cannot merge boxes from pages {a.page} and {b.page}")
    return BoundingBox(
        page=a.page,
        x1=min(a.x1, b.x1),
        y1=min(a.y1, b.y1),
        x2=max(a.x2, b.x2),
        y2=max(a.y2, b.y2),
    )


def merge_boxes(boxes: Iterable[BoundingBox]) -> BoundingBox:
    """Merge boxes on one page into their envelope.

    Associative and commutative, since it only takes mins and maxes.

    Args:
        boxes: Boxes to merge (all on the same page)

    Returns:
        The envelope box

    Raises:
        ValidationError: If no boxes are given or pages differ
    """
    boxes = list(boxes)
    if not boxes:
        raise ValidationError("Cannot merge an empty set of boxes")
    return reduce(union, boxes)


def group_by_page(boxes: Iterable[BoundingBox]) -> dict:
    """Group boxes by page number, preserving input order."""
    groups: dict = {}
    for box in boxes:
        groups.setdefault(box.page, []).append(box)
    return groups


def merge_per_page(boxes: Iterable[BoundingBox]) -> List[BoundingBox]:
    """Merge boxes page by page; one envelope per page, sorted by page."""
    return [merge_boxes(group) for _, group in sorted(group_by_page(boxes).items())]


def intersection(a: BoundingBox, b: BoundingBox) -> Optional[BoundingBox]:
    """Intersection of two boxes, or None if they do not overlap."""
    if a.page != b.page:
        return None
    x1, y1 = max(a.x1, b.x1), max(a.y1, b.y1)
    x2, y2 = min(a.x2, b.x2), min(a.y2, b.y2)
    if x2 < x1 or y2 < y1:
        return None
    return BoundingBox(page=a.page, x1=x1, y1=y1, x2=x2, y2=y2)


def overlap_ratio(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over union of two boxes (0.0 when disjoint)."""
    inter = intersection(a, b)
    if inter is None:
        return 0.0
    union_area = a.area + b.area - inter.area
    if union_area <= 0:
        # Degenerate boxes (zero area) that touch
        return 1.0
    return inter.area / union_area


def from_top_left(
    page: int,
    x0: float,
    top: float,
    x1: float,
    bottom: float,
    page_height: float,
) -> BoundingBox:
    """Build a PDF-coordinate box from a top-left-origin rectangle."""
    return BoundingBox(
        page=page,
        x1=float(x0),
        y1=float(page_height - bottom),
        x2=float(x1),
        y2=float(page_height - top),
    )


def from_xywh_top_left(
    page: int,
    x: float,
    y: float,
    width: float,
    height: float,
    page_height: float,
) -> BoundingBox:
    """Build a PDF-coordinate box from a top-left ``x, y, w, h`` tuple (GROBID coords)."""
    return from_top_left(page, x, y, x + width, y + height, page_height)


def envelope_of_points(page: int, xs: Sequence[float], ys: Sequence[float]) -> BoundingBox:
    """Envelope of a set of coordinates already in PDF space."""
    if not xs or not ys:
        raise ValidationError("Cannot build an envelope from no points")
    return BoundingBox(page=page, x1=min(xs), y1=min(ys), x2=max(xs), y2=max(ys))
