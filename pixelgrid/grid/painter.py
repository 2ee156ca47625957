"""
Painter
=======

Immediate-mode 2D drawing context over a Pillow RGBA image.

Mirrors the small subset of an HTML canvas context the grid view needs:
a save/restore-scoped affine transform, rectangular clipping, a
brightness/contrast filter, rectangles, line batches, images and text.
Coordinates passed to drawing calls are in user space and go through the
current transform; line widths are scaled by it too.
"""

import io
import logging
import math
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from PIL import Image, ImageChops, ImageColor, ImageDraw, ImageEnhance, ImageFont

logger = logging.getLogger(__name__)

Color = Union[str, Tuple[int, int, int], Tuple[int, int, int, int]]
Matrix = Tuple[float, float, float, float, float, float]  # a, b, c, d, e, f
Box = Tuple[int, int, int, int]

IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

# Generic CSS families -> font files commonly shipped with Pillow/DejaVu
FONT_FILES = {
    ("sans-serif", False): "DejaVuSans.ttf",
    ("sans-serif", True): "DejaVuSans-Bold.ttf",
    ("serif", False): "DejaVuSerif.ttf",
    ("serif", True): "DejaVuSerif-Bold.ttf",
    ("monospace", False): "DejaVuSansMono.ttf",
    ("monospace", True): "DejaVuSansMono-Bold.ttf",
}


def compose(m: Matrix, n: Matrix) -> Matrix:
    """Matrix applying ``n`` first, then ``m``."""
    a1, b1, c1, d1, e1, f1 = m
    a2, b2, c2, d2, e2, f2 = n
    return (
        a1 * a2 + c1 * b2,
        b1 * a2 + d1 * b2,
        a1 * c2 + c1 * d2,
        b1 * c2 + d1 * d2,
        a1 * e2 + c1 * f2 + e1,
        b1 * e2 + d1 * f2 + f1,
    )


def invert(m: Matrix) -> Matrix:
    a, b, c, d, e, f = m
    det = a * d - b * c
    if det == 0:
        raise ValueError("Singular transform")
    return (d / det, -b / det, -c / det, a / det, (c * f - d * e) / det, (b * e - a * f) / det)


def apply(m: Matrix, x: float, y: float) -> Tuple[float, float]:
    a, b, c, d, e, f = m
    return a * x + c * y + e, b * x + d * y + f


def to_rgba(color: Color, default: Tuple[int, int, int, int] = (0, 0, 0, 255)) -> Tuple[int, int, int, int]:
    """Normalize a CSS-ish color string or tuple. Unknown strings fall back to ``default``."""
    if isinstance(color, tuple):
        return color if len(color) == 4 else (*color, 255)
    try:
        return ImageColor.getcolor(color, "RGBA")
    except (ValueError, AttributeError):
        return default


class _PaintState:
    __slots__ = ("matrix", "clip", "brightness", "contrast")

    def __init__(self):
        self.matrix: Matrix = IDENTITY
        self.clip: Optional[Image.Image] = None
        self.brightness = 100.0
        self.contrast = 100.0

    def copy(self) -> "_PaintState":
        state = _PaintState()
        state.matrix = self.matrix
        state.clip = self.clip  # masks are replaced, never mutated
        state.brightness = self.brightness
        state.contrast = self.contrast
        return state


class Painter:
    """Drawing context for one frame."""

    def __init__(self, width: int, height: int, background: Color = "#ffffff"):
        self.width = int(width)
        self.height = int(height)
        self.image = Image.new("RGBA", (self.width, self.height), to_rgba(background))
        self._state = _PaintState()
        self._stack: List[_PaintState] = []
        self._fonts: Dict[Tuple[str, bool, int], ImageFont.ImageFont] = {}

    # ------------------------------------------------------------------
    # State

    def save(self) -> None:
        self._stack.append(self._state.copy())

    def restore(self) -> None:
        if self._stack:
            self._state = self._stack.pop()

    @property
    def matrix(self) -> Matrix:
        return self._state.matrix

    def translate(self, tx: float, ty: float) -> None:
        self._state.matrix = compose(self._state.matrix, (1.0, 0.0, 0.0, 1.0, tx, ty))

    def scale(self, sx: float, sy: Optional[float] = None) -> None:
        sy = sx if sy is None else sy
        self._state.matrix = compose(self._state.matrix, (sx, 0.0, 0.0, sy, 0.0, 0.0))

    def rotate(self, degrees: float) -> None:
        """Clockwise on screen, like a canvas context."""
        rad = math.radians(degrees)
        cos, sin = math.cos(rad), math.sin(rad)
        self._state.matrix = compose(self._state.matrix, (cos, sin, -sin, cos, 0.0, 0.0))

    def set_filter(self, brightness: float = 100.0, contrast: float = 100.0) -> None:
        """Percent filters applied to subsequent draw_image calls."""
        self._state.brightness = brightness
        self._state.contrast = contrast

    def clip_rect(self, x: float, y: float, w: float, h: float) -> None:
        """Intersect the clip region with a user-space rectangle."""
        mask = Image.new("L", (self.width, self.height), 0)
        ImageDraw.Draw(mask).polygon(self._corners(x, y, w, h), fill=255)
        if self._state.clip is not None:
            mask = ImageChops.multiply(self._state.clip, mask)
        self._state.clip = mask

    def user_to_screen(self, x: float, y: float) -> Tuple[float, float]:
        return apply(self._state.matrix, x, y)

    @property
    def line_scale(self) -> float:
        a, b, c, d, _, _ = self._state.matrix
        return math.sqrt(abs(a * d - b * c))

    # ------------------------------------------------------------------
    # Primitives

    def fill_rect(self, x: float, y: float, w: float, h: float, color: Color) -> None:
        points = self._corners(x, y, w, h)
        fill = to_rgba(color)
        self._composite(points, 0, lambda draw, shift: draw.polygon(shift(points), fill=fill))

    def stroke_rect(self, x: float, y: float, w: float, h: float, color: Color, width: float = 1.0) -> None:
        points = self._corners(x, y, w, h)
        px = self._pixel_width(width)
        stroke = to_rgba(color)

        def _draw(draw, shift):
            ring = shift(points)
            draw.line(ring + ring[:1], fill=stroke, width=px, joint="curve")

        self._composite(points, px, _draw)

    def stroke_lines(
        self,
        segments: Sequence[Tuple[float, float, float, float]],
        color: Color,
        width: float = 1.0
    ) -> None:
        """Stroke a batch of independent segments ``(x0, y0, x1, y1)`` in one pass."""
        if not segments:
            return
        m = self._state.matrix
        screen = [(apply(m, x0, y0), apply(m, x1, y1)) for x0, y0, x1, y1 in segments]
        points = [p for pair in screen for p in pair]
        px = self._pixel_width(width)
        stroke = to_rgba(color)

        def _draw(draw, shift):
            for p0, p1 in screen:
                draw.line(shift([p0, p1]), fill=stroke, width=px)

        self._composite(points, px, _draw)

    def fill_round_rect(self, x: float, y: float, w: float, h: float, radius: float, color: Color) -> None:
        """Axis-aligned rounded rectangle (rotation is ignored)."""
        points = self._corners(x, y, w, h)
        r = radius * self.line_scale
        fill = to_rgba(color)

        def _draw(draw, shift):
            xs = [p[0] for p in shift(points)]
            ys = [p[1] for p in shift(points)]
            draw.rounded_rectangle((min(xs), min(ys), max(xs), max(ys)), radius=r, fill=fill)

        self._composite(points, 0, _draw)

    def draw_image(self, source: Image.Image, x: float, y: float, w: float, h: float) -> None:
        """Draw ``source`` stretched over a user-space rectangle, honoring transform, clip and filter."""
        if source.width == 0 or source.height == 0 or w == 0 or h == 0:
            return
        box = self._bbox(self._corners(x, y, w, h), 1)
        if box is None:
            return
        image = self._filtered(source)
        # source pixel -> user space -> screen -> layer
        placement = (w / image.width, 0.0, 0.0, h / image.height, x, y)
        to_layer = compose((1.0, 0.0, 0.0, 1.0, -box[0], -box[1]), compose(self._state.matrix, placement))
        ia, ib, ic, id_, ie, if_ = invert(to_layer)
        layer = image.transform(
            (box[2] - box[0], box[3] - box[1]),
            Image.Transform.AFFINE,
            data=(ia, ic, ie, ib, id_, if_),
            resample=Image.Resampling.BILINEAR,
        )
        self._blend(layer, box)

    # ------------------------------------------------------------------
    # Text

    def font(self, size: float, family: str = "sans-serif", weight: str = "normal") -> ImageFont.ImageFont:
        """Font for a screen-pixel size, cached per (family, weight, size)."""
        bold = str(weight).lower() in ("bold", "bolder", "600", "700", "800", "900")
        px = max(1, int(round(size)))
        key = (family, bold, px)
        if key not in self._fonts:
            candidates = [FONT_FILES.get((family, bold)), family, FONT_FILES[("sans-serif", bold)]]
            font = None
            for candidate in candidates:
                if not candidate:
                    continue
                try:
                    font = ImageFont.truetype(candidate, px)
                    break
                except OSError:
                    continue
            if font is None:
                logger.debug(f"[PAINTER] No TrueType font for {family!r}, using the default font")
                font = ImageFont.load_default(size=px)
            self._fonts[key] = font
        return self._fonts[key]

    def measure_text(self, text: str, size: float, family: str = "sans-serif", weight: str = "normal") -> float:
        """Advance width of ``text`` in user-space units."""
        scale = self.line_scale or 1.0
        return self.font(size * scale, family, weight).getlength(text) / scale

    def fill_text(
        self,
        text: str,
        x: float,
        y: float,
        size: float,
        color: Color,
        family: str = "sans-serif",
        weight: str = "normal",
        align: str = "center"
    ) -> None:
        """Draw one line of text, vertically centered on ``y`` (text is never rotated)."""
        if not text:
            return
        sx, sy = self.user_to_screen(x, y)
        font = self.font(size * self.line_scale, family, weight)
        anchor = {"center": "mm", "left": "lm", "right": "rm"}.get(align, "mm")
        fill = to_rgba(color)
        left, top, right, bottom = ImageDraw.Draw(self.image).textbbox((sx, sy), text, font=font, anchor=anchor)
        points = [(left, top), (right, bottom)]
        self._composite(
            points, 2,
            lambda draw, shift: draw.text(shift([(sx, sy)])[0], text, font=font, fill=fill, anchor=anchor)
        )

    # ------------------------------------------------------------------
    # Output

    def to_png(self) -> bytes:
        buffer = io.BytesIO()
        self.image.convert("RGB").save(buffer, format="PNG")
        return buffer.getvalue()

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        return self.image.getpixel((x, y))

    # ------------------------------------------------------------------
    # Internals

    def _corners(self, x: float, y: float, w: float, h: float) -> List[Tuple[float, float]]:
        m = self._state.matrix
        return [apply(m, x, y), apply(m, x + w, y), apply(m, x + w, y + h), apply(m, x, y + h)]

    def _pixel_width(self, width: float) -> int:
        return max(1, int(round(width * self.line_scale)))

    def _bbox(self, points: Iterable[Tuple[float, float]], pad: float) -> Optional[Box]:
        points = list(points)
        x0 = max(0, int(math.floor(min(p[0] for p in points) - pad)))
        y0 = max(0, int(math.floor(min(p[1] for p in points) - pad)))
        x1 = min(self.width, int(math.ceil(max(p[0] for p in points) + pad)) + 1)
        y1 = min(self.height, int(math.ceil(max(p[1] for p in points) + pad)) + 1)
        if x0 >= x1 or y0 >= y1:
            return None
        return (x0, y0, x1, y1)

    def _composite(
        self,
        points: List[Tuple[float, float]],
        pad: float,
        draw_fn: Callable[[ImageDraw.ImageDraw, Callable], None]
    ) -> None:
        """Run ``draw_fn`` on a transparent layer covering ``points`` and blend it in."""
        box = self._bbox(points, pad)
        if box is None:
            return
        layer = Image.new("RGBA", (box[2] - box[0], box[3] - box[1]), (0, 0, 0, 0))
        ox, oy = box[0], box[1]

        def shift(pts):
            return [(px - ox, py - oy) for px, py in pts]

        draw_fn(ImageDraw.Draw(layer), shift)
        self._blend(layer, box)

    def _blend(self, layer: Image.Image, box: Box) -> None:
        if self._state.clip is not None:
            alpha = ImageChops.multiply(layer.getchannel("A"), self._state.clip.crop(box))
            layer.putalpha(alpha)
        self.image.alpha_composite(layer, dest=(box[0], box[1]))

    def _filtered(self, source: Image.Image) -> Image.Image:
        brightness, contrast = self._state.brightness, self._state.contrast
        if brightness == 100 and contrast == 100:
            return source
        rgba = source.convert("RGBA")
        alpha = rgba.getchannel("A")
        rgb = rgba.convert("RGB")
        if brightness != 100:
            rgb = ImageEnhance.Brightness(rgb).enhance(brightness / 100)
        if contrast != 100:
            rgb = ImageEnhance.Contrast(rgb).enhance(contrast / 100)
        out = rgb.convert("RGBA")
        out.putalpha(alpha)
        return out
