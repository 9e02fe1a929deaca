"""Geo-reference — map canvas coordinates onto a real-world bounding box.

The simulation runs on a flat 600x400 canvas.  Every outbound payload also
carries latitude/longitude so a backend can plot the drone on a real map.
The mapping is a plain affine transform into a fixed box (Istanbul area by
default):

    lat = min_lat + (y / canvas_height) * (max_lat - min_lat)
    lng = min_lng + (x / canvas_width)  * (max_lng - min_lng)

Canvas y grows downward, so larger y means larger latitude here.  That is
the convention the backend expects; it is not a north-up projection.
"""

from __future__ import annotations

from dataclasses import dataclass

CANVAS_WIDTH = 600.0
CANVAS_HEIGHT = 400.0


@dataclass(frozen=True)
class GeoBounds:
    """The lat/lng box the canvas is stretched over."""

    min_lat: float = 40.9000
    max_lat: float = 41.2000
    min_lng: float = 28.8000
    max_lng: float = 29.2000
    canvas_width: float = CANVAS_WIDTH
    canvas_height: float = CANVAS_HEIGHT


DEFAULT_BOUNDS = GeoBounds()


def canvas_to_latitude(y: float, bounds: GeoBounds = DEFAULT_BOUNDS) -> float:
    return bounds.min_lat + (y / bounds.canvas_height) * (bounds.max_lat - bounds.min_lat)


def canvas_to_longitude(x: float, bounds: GeoBounds = DEFAULT_BOUNDS) -> float:
    return bounds.min_lng + (x / bounds.canvas_width) * (bounds.max_lng - bounds.min_lng)


def canvas_to_latlng(x: float, y: float, bounds: GeoBounds = DEFAULT_BOUNDS) -> tuple[float, float]:
    """Convert canvas (x, y) to (lat, lng)."""
    return (canvas_to_latitude(y, bounds), canvas_to_longitude(x, bounds))


def geo_coordinates(
    x: float,
    y: float,
    bounds: GeoBounds = DEFAULT_BOUNDS,
    precision: int | None = None,
) -> dict:
    """Build the ``coordinates`` object shared by every outbound payload.

    ``precision`` rounds the canvas x/y (the streaming channel uses one
    decimal); lat/lng are always derived from the raw position.
    """
    lat, lng = canvas_to_latlng(x, y, bounds)
    if precision is not None:
        x = round(x, precision)
        y = round(y, precision)
    return {"x": x, "y": y, "latitude": lat, "longitude": lng}
