"""
Card Renderer Module

Rasterizes a Template into a PNG with Pillow. Objects are replayed in
z-order on an off-screen canvas:

- text objects keep their geometry, font and style; a dynamic field only
  swaps the string, so wrapping happens inside the designed width
- the rectangle (or image) tagged "image" is replaced by the article
  photo, scaled to fit inside the box and anchored at its top-left
- a missing or undecodable photo leaves the placeholder with a neutral fill

Rendering is deterministic: the same template, values and photo bytes
always produce the same PNG bytes.
"""

import io
import math
import os
import re
from typing import Optional, Dict, List, Tuple, Union

from PIL import Image, ImageColor, ImageDraw, ImageFont

from config import settings
from data.template import (
    AnyTemplateObject, Geometry, ImageObject, IMAGE_FIELD, ShapeObject, Template, TextObject,
)
from services.image_service import ImageService
from utils.exceptions import ImageLoadError, RenderError
from utils.helpers import encode_data_url
from utils.logger import get_logger

logger = get_logger(__name__)

MAX_CANVAS_SIDE = 8000
RGBA = Tuple[int, int, int, int]
_RGBA_FLOAT_RE = re.compile(r'^rgba?\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)\s*(?:,\s*([\d.]+)\s*)?\)$', re.IGNORECASE)


def parse_color(value: Optional[str], default: Optional[RGBA] = None) -> Optional[RGBA]:
    """
    Parse an editor colour string into an RGBA tuple.

    Handles hex, named colours and rgb()/rgba() with a 0-1 alpha as the
    canvas editor writes it. "transparent" and empty values yield None.
    """
    if not value:
        return default
    value = value.strip()
    if value.lower() in ("transparent", "none"):
        return None

    match = _RGBA_FLOAT_RE.match(value)
    if match:
        r, g, b = (max(0, min(255, int(float(c)))) for c in match.group(1, 2, 3))
        alpha = match.group(4)
        a = 255 if alpha is None else max(0, min(255, int(round(float(alpha) * 255))))
        return (r, g, b, a)

    try:
        rgb = ImageColor.getrgb(value)
    except ValueError:
        logger.debug(f"Unrecognized colour {value!r}, using default")
        return default
    return rgb if len(rgb) == 4 else (*rgb, 255)


def wrap_text(text: str, font, max_width: float) -> List[str]:
    """Greedy word wrap; explicit newlines always break."""
    lines = []
    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split(" "):
            candidate = word if not current else f"{current} {word}"
            if not current or font.getlength(candidate) <= max_width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines


def composite(canvas: Image.Image, layer: Image.Image, x: float, y: float) -> None:
    """Alpha-composite layer onto canvas at (x, y), clipping at the canvas edges."""
    x, y = int(round(x)), int(round(y))
    left, top = max(0, x), max(0, y)
    right = min(canvas.width, x + layer.width)
    bottom = min(canvas.height, y + layer.height)
    if right <= left or bottom <= top:
        return
    visible = layer.crop((left - x, top - y, right - x, bottom - y))
    canvas.alpha_composite(visible, dest=(left, top))


class FontResolver:
    """Finds a TrueType font for a family/weight/style, falling back to Pillow's bundled font."""

    def __init__(self, font_dir: Optional[str] = None):
        self.font_dir = font_dir or settings.FONT_DIR
        self._cache: Dict[Tuple[str, int, bool, bool], Tuple[ImageFont.ImageFont, bool]] = {}

    def _candidates(self, family: str, bold: bool, italic: bool) -> List[str]:
        compact = family.replace(" ", "")
        suffixes = []
        if bold and italic:
            suffixes += ["-BoldItalic", "bi", " Bold Italic"]
        if bold:
            suffixes += ["-Bold", "bd", " Bold"]
        if italic:
            suffixes += ["-Italic", "i", " Italic"]
        suffixes.append("")
        names = []
        for base in (family, compact, compact.lower()):
            for suffix in suffixes:
                for ext in (".ttf", ".otf"):
                    names.append(f"{base}{suffix}{ext}")
        return names

    def get(self, family: str, size: float, bold: bool = False, italic: bool = False):
        """
        Returns:
            (font, synthetic_bold): synthetic_bold is True when no bold face was
            found and the caller should emulate it.
        """
        size = max(1, int(round(size)))
        key = (family.lower(), size, bold, italic)
        if key in self._cache:
            return self._cache[key]

        result = None
        for name in self._candidates(family, bold, italic):
            path = os.path.join(self.font_dir, name)
            if os.path.isfile(path):
                try:
                    styled = bold and ("bold" in name.lower() or "bd." in name.lower() or "bi." in name.lower())
                    result = (ImageFont.truetype(path, size), bold and not styled)
                    break
                except OSError as e:
                    logger.warning(f"Could not load font {path}: {e}")

        if result is None:
            try:
                result = (ImageFont.truetype(f"{family}.ttf", size), bold)
            except OSError:
                result = (ImageFont.load_default(size=size), bold)

        self._cache[key] = result
        return result


class CardRenderer:
    """Turns a template plus resolved values into PNG bytes."""

    def __init__(self, image_service: Optional[ImageService] = None, font_resolver: Optional[FontResolver] = None,
                 placeholder_fill: Optional[str] = None, placeholder_stroke: Optional[str] = None):
        self.image_service = image_service or ImageService()
        self.fonts = font_resolver or FontResolver()
        self.placeholder_fill = parse_color(placeholder_fill or settings.PLACEHOLDER_FILL, (224, 224, 224, 255))
        self.placeholder_stroke = parse_color(placeholder_stroke or settings.PLACEHOLDER_STROKE, (204, 204, 204, 255))

    # =========================================================================
    # Public API
    # =========================================================================

    def render(self, template: Template, values: Dict[str, str],
               photo: Optional[Union[bytes, Image.Image]] = None) -> bytes:
        """
        Render a card.

        Args:
            template: Parsed template.
            values: Resolved key to string map from the mapping service.
            photo: Photo bytes or image; when omitted, values["image"] is loaded.

        Returns:
            bytes: PNG image data.

        Raises:
            RenderError: If the template cannot be rendered at all.
        """
        if not (0 < template.canvas_width <= MAX_CANVAS_SIDE and 0 < template.canvas_height <= MAX_CANVAS_SIDE):
            raise RenderError(f"Template {template.id} has unsupported size "
                              f"{template.canvas_width}x{template.canvas_height}")

        photo_image = self._resolve_photo(values, photo)

        try:
            background = parse_color(template.background_color, (255, 255, 255, 255)) or (255, 255, 255, 255)
            canvas = Image.new("RGBA", (template.canvas_width, template.canvas_height), background)
            if template.background_image:
                self._draw_background_image(canvas, template.background_image)

            for obj in template.objects:
                self._draw_object(canvas, obj, values, photo_image)

            buffer = io.BytesIO()
            canvas.convert("RGB").save(buffer, format="PNG")
            return buffer.getvalue()
        except (OSError, ValueError, TypeError) as e:
            raise RenderError(f"Failed to render template {template.id}: {e}") from e

    def render_data_url(self, template: Template, values: Dict[str, str],
                        photo: Optional[Union[bytes, Image.Image]] = None) -> str:
        return encode_data_url(self.render(template, values, photo), "image/png")

    # =========================================================================
    # Photo and Background
    # =========================================================================

    def _resolve_photo(self, values: Dict[str, str], photo) -> Optional[Image.Image]:
        if isinstance(photo, Image.Image):
            return photo.convert("RGBA")
        if photo:
            try:
                return self.image_service.decode(photo)
            except ImageLoadError as e:
                logger.warning(f"Photo bytes unusable, rendering placeholder: {e}")
                return None
        return self.image_service.load(values.get(IMAGE_FIELD))

    def _draw_background_image(self, canvas: Image.Image, image_ref: str) -> None:
        image = self.image_service.load(image_ref)
        if image is None:
            return
        scale = max(canvas.width / image.width, canvas.height / image.height)
        scaled = image.resize((max(1, round(image.width * scale)), max(1, round(image.height * scale))),
                              Image.LANCZOS)
        composite(canvas, scaled, (canvas.width - scaled.width) / 2, (canvas.height - scaled.height) / 2)

    # =========================================================================
    # Objects
    # =========================================================================

    def _draw_object(self, canvas: Image.Image, obj: AnyTemplateObject, values: Dict[str, str],
                     photo: Optional[Image.Image]) -> None:
        if obj.opacity <= 0:
            return
        if isinstance(obj, TextObject):
            layer = self._text_layer(obj, self._text_value(obj, values))
        elif getattr(obj, "is_image_placeholder", False):
            layer = self._photo_layer(obj.geometry, photo)
        elif isinstance(obj, ShapeObject):
            layer = self._shape_layer(obj)
        elif isinstance(obj, ImageObject):
            layer = self._static_image_layer(obj)
        else:
            return

        if layer is None:
            return
        if obj.opacity < 1:
            alpha = layer.getchannel("A").point(lambda a: int(a * obj.opacity))
            layer.putalpha(alpha)
        self._place(canvas, layer, obj.geometry)

    @staticmethod
    def _text_value(obj: TextObject, values: Dict[str, str]) -> str:
        if not obj.dynamic_field or obj.dynamic_field not in values:
            return obj.text
        return values[obj.dynamic_field] or obj.fallback_value or obj.text

    def _place(self, canvas: Image.Image, layer: Image.Image, geometry: Geometry) -> None:
        """Rotate a layer about its top-left corner like the editor does, then composite it."""
        if not geometry.angle % 360:
            composite(canvas, layer, geometry.left, geometry.top)
            return

        theta = math.radians(geometry.angle)
        cos_t, sin_t = math.cos(theta), math.sin(theta)
        corners = [(0, 0), (layer.width, 0), (0, layer.height), (layer.width, layer.height)]
        xs = [x * cos_t - y * sin_t for x, y in corners]
        ys = [x * sin_t + y * cos_t for x, y in corners]
        rotated = layer.rotate(-geometry.angle, resample=Image.BICUBIC, expand=True)
        composite(canvas, rotated, geometry.left + min(xs), geometry.top + min(ys))

    def _text_layer(self, obj: TextObject, text: str) -> Optional[Image.Image]:
        if not text:
            return None
        fill = parse_color(obj.fill, (0, 0, 0, 255))
        if fill is None:
            return None

        bold = str(obj.font_weight).lower() in ("bold", "bolder", "600", "700", "800", "900")
        italic = str(obj.font_style).lower() in ("italic", "oblique")
        font, synthetic_bold = self.fonts.get(obj.font_family, obj.font_size, bold, italic)

        box_width = obj.geometry.width
        if obj.wrap and box_width > 0:
            lines = wrap_text(text, font, box_width)
        else:
            lines = text.split("\n")

        line_step = obj.font_size * obj.line_height
        widest = max((font.getlength(line) for line in lines), default=0)
        width = max(1, int(math.ceil(max(box_width, widest))))
        height = max(1, int(math.ceil(max(obj.geometry.height, line_step * len(lines)))))

        layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        stroke = 1 if synthetic_bold else 0
        for index, line in enumerate(lines):
            line_width = font.getlength(line)
            if obj.text_align == "center":
                x = (width - line_width) / 2
            elif obj.text_align == "right":
                x = width - line_width
            else:
                x = 0
            draw.text((x, index * line_step), line, font=font, fill=fill,
                      stroke_width=stroke, stroke_fill=fill)

        if obj.geometry.scale_x != 1 or obj.geometry.scale_y != 1:
            layer = layer.resize((max(1, round(width * obj.geometry.scale_x)),
                                  max(1, round(height * obj.geometry.scale_y))), Image.LANCZOS)
        return layer

    def _shape_layer(self, obj: ShapeObject) -> Optional[Image.Image]:
        width = max(1, int(round(obj.geometry.scaled_width)))
        height = max(1, int(round(obj.geometry.scaled_height)))
        fill = parse_color(obj.fill)
        stroke = parse_color(obj.stroke) if obj.stroke_width > 0 else None
        if fill is None and stroke is None:
            return None

        layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        stroke_width = int(round(obj.stroke_width)) if stroke else 0
        box = (0, 0, width - 1, height - 1)
        if obj.shape in ("circle", "ellipse"):
            draw.ellipse(box, fill=fill, outline=stroke, width=stroke_width)
        elif obj.rx > 0:
            radius = int(round(obj.rx * min(obj.geometry.scale_x, obj.geometry.scale_y)))
            draw.rounded_rectangle(box, radius=radius, fill=fill, outline=stroke, width=stroke_width)
        else:
            draw.rectangle(box, fill=fill, outline=stroke, width=stroke_width)
        return layer

    def _neutral_box(self, geometry: Geometry) -> Image.Image:
        width = max(1, int(round(geometry.scaled_width)))
        height = max(1, int(round(geometry.scaled_height)))
        layer = Image.new("RGBA", (width, height), self.placeholder_fill)
        ImageDraw.Draw(layer).rectangle((0, 0, width - 1, height - 1), outline=self.placeholder_stroke, width=2)
        return layer

    def _photo_layer(self, geometry: Geometry, photo: Optional[Image.Image]) -> Image.Image:
        box_width, box_height = geometry.scaled_width, geometry.scaled_height
        if photo is None or box_width <= 0 or box_height <= 0:
            return self._neutral_box(geometry)
        scale = min(box_width / photo.width, box_height / photo.height)
        size = (max(1, round(photo.width * scale)), max(1, round(photo.height * scale)))
        return photo.resize(size, Image.LANCZOS)

    def _static_image_layer(self, obj: ImageObject) -> Image.Image:
        image = self.image_service.load(obj.src) if obj.src else None
        if image is None:
            return self._neutral_box(obj.geometry)
        width = max(1, int(round(obj.geometry.scaled_width or image.width * obj.geometry.scale_x)))
        height = max(1, int(round(obj.geometry.scaled_height or image.height * obj.geometry.scale_y)))
        return image.resize((width, height), Image.LANCZOS)
