"""
Mask editor
Freehand brush/eraser painting on an RGBA raster the size of the source image.
Pointer coordinates arrive in display space and are rescaled to the raster,
so the exported mask always matches the source image pixel for pixel.
"""

import io
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageOps

logger = logging.getLogger(__name__)

BRUSH = "brush"
ERASER = "eraser"
TOOLS = (BRUSH, ERASER)

PAINT = (0, 0, 0, 255)
CLEAR = (0, 0, 0, 0)

# stroke colours used on the browser canvas to tell the two tools apart
BRUSH_STROKE = "#ff3366"
ERASER_STROKE = "#ffffff"

Point = Tuple[float, float]


class MaskEditor:
    """Owns the mask raster; callers only paint strokes, clear and export."""

    def __init__(self, width: int, height: int, radius: float = 20,
                 display_size: Optional[Tuple[int, int]] = None):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid mask size {width}x{height}")
        self.width = width
        self.height = height
        self.radius = radius
        self.display_size = display_size or (width, height)
        self.tool = BRUSH
        self._raster = Image.new("RGBA", (width, height), CLEAR)
        # RGBA onto RGBA writes pixels directly, so CLEAR erases alpha
        self._draw = ImageDraw.Draw(self._raster)
        self._last_point: Optional[Point] = None

    @classmethod
    def for_image(cls, image_bytes: bytes, radius: float = 20,
                  display_size: Optional[Tuple[int, int]] = None) -> "MaskEditor":
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
        return cls(width, height, radius=radius, display_size=display_size)

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def drawing(self) -> bool:
        return self._last_point is not None

    def set_tool(self, tool: str) -> None:
        if tool not in TOOLS:
            raise ValueError(f"Unknown tool: {tool}")
        self.tool = tool

    def to_canvas(self, x: float, y: float) -> Point:
        display_width, display_height = self.display_size
        return (x * self.width / display_width, y * self.height / display_height)

    def pointer_down(self, x: float, y: float) -> None:
        point = self.to_canvas(x, y)
        self._last_point = point
        self._dot(point)

    def pointer_move(self, x: float, y: float) -> None:
        if self._last_point is None:
            return
        point = self.to_canvas(x, y)
        self._segment(self._last_point, point)
        self._last_point = point

    def pointer_up(self) -> None:
        self._last_point = None

    def pointer_leave(self) -> None:
        self.pointer_up()

    def paint_stroke(self, points: Sequence[Point], tool: Optional[str] = None) -> None:
        """Replay a whole stroke given in display coordinates."""
        if not points:
            return
        previous = self.tool
        if tool is not None:
            self.set_tool(tool)
        try:
            self.pointer_down(*points[0])
            for x, y in points[1:]:
                self.pointer_move(x, y)
            self.pointer_up()
        finally:
            self.tool = previous

    def clear(self) -> None:
        self._draw.rectangle([0, 0, self.width, self.height], fill=CLEAR)
        self._last_point = None

    def alpha(self) -> Image.Image:
        return self._raster.getchannel("A")

    def export(self) -> bytes:
        """PNG of the raster: painted pixels opaque, untouched or erased pixels transparent."""
        buffer = io.BytesIO()
        self._raster.save(buffer, format="PNG")
        return buffer.getvalue()

    def export_edit_mask(self) -> bytes:
        """PNG in the edits endpoint convention: painted regions transparent (editable)."""
        mask = Image.new("RGBA", self.size, PAINT)
        mask.putalpha(ImageOps.invert(self.alpha()))
        buffer = io.BytesIO()
        mask.save(buffer, format="PNG")
        return buffer.getvalue()

    def apply_canvas_json(self, json_data: Optional[Dict[str, Any]],
                          eraser_stroke: str = ERASER_STROKE) -> int:
        """Replay freehand paths from a drawable-canvas result. Returns the stroke count."""
        strokes = canvas_strokes(json_data, eraser_stroke)
        radius = self.radius
        try:
            for tool, stroke_radius, points in strokes:
                self.radius = stroke_radius
                self.paint_stroke(points, tool)
        finally:
            self.radius = radius
        logger.debug(f"Replayed {len(strokes)} canvas stroke(s)")
        return len(strokes)

    def _scaled_radius(self) -> float:
        display_width, display_height = self.display_size
        scale = (self.width / display_width + self.height / display_height) / 2
        return max(self.radius * scale, 0.5)

    def _fill(self):
        return CLEAR if self.tool == ERASER else PAINT

    def _dot(self, point: Point) -> None:
        r = self._scaled_radius()
        x, y = point
        self._draw.ellipse([x - r, y - r, x + r, y + r], fill=self._fill())

    def _segment(self, start: Point, end: Point) -> None:
        width = max(int(round(self._scaled_radius() * 2)), 1)
        self._draw.line([start, end], fill=self._fill(), width=width)
        # round caps and joins
        self._dot(start)
        self._dot(end)


def _path_points(path: Iterable[Sequence[Any]]) -> List[Point]:
    points: List[Point] = []
    for command in path or []:
        # every fabric.js path command ends with its target x, y
        if len(command) >= 3:
            points.append((float(command[-2]), float(command[-1])))
    return points


def canvas_strokes(json_data: Optional[Dict[str, Any]],
                   eraser_stroke: str = ERASER_STROKE) -> List[Tuple[str, float, List[Point]]]:
    """Extract (tool, radius, points) for each freehand path on the canvas."""
    strokes: List[Tuple[str, float, List[Point]]] = []
    for obj in (json_data or {}).get("objects", []):
        if obj.get("type") != "path":
            continue
        points = _path_points(obj.get("path"))
        if not points:
            continue
        tool = ERASER if str(obj.get("stroke", "")).lower() == eraser_stroke.lower() else BRUSH
        strokes.append((tool, float(obj.get("strokeWidth", 1)) / 2, points))
    return strokes
