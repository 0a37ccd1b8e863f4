"""
Template Object Model

Typed view of a card template as saved by the canvas editor. The editor
stores Fabric.js style JSON; parse_template() validates it once and turns
every object into a TextObject, ShapeObject or ImageObject so the renderer
never has to guess at untyped dictionaries.
"""

import json
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union, Dict, Any

from config import settings
from utils.exceptions import RenderError

TEXT_TYPES = {"textbox", "i-text", "itext", "text"}
SHAPE_TYPES = {"rect", "circle", "ellipse"}
IMAGE_TYPES = {"image", "fabric-image"}

NO_DYNAMIC_FIELD = "none"
IMAGE_FIELD = "image"


@dataclass(frozen=True)
class Geometry:
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0
    angle: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0

    @property
    def scaled_width(self) -> float:
        return self.width * self.scale_x

    @property
    def scaled_height(self) -> float:
        return self.height * self.scale_y


@dataclass(frozen=True)
class TemplateObject:
    geometry: Geometry = field(default_factory=Geometry)
    dynamic_field: Optional[str] = None
    fallback_value: str = ""
    opacity: float = 1.0

    @property
    def is_dynamic(self) -> bool:
        return self.dynamic_field is not None


@dataclass(frozen=True)
class TextObject(TemplateObject):
    text: str = ""
    font_family: str = settings.DEFAULT_FONT_FAMILY
    font_size: float = settings.DEFAULT_FONT_SIZE
    font_weight: str = "normal"
    font_style: str = "normal"
    fill: str = "#000000"
    text_align: str = "left"
    line_height: float = 1.16
    wrap: bool = True


@dataclass(frozen=True)
class ShapeObject(TemplateObject):
    shape: str = "rect"
    fill: Optional[str] = "#000000"
    stroke: Optional[str] = None
    stroke_width: float = 0.0
    rx: float = 0.0
    ry: float = 0.0

    @property
    def is_image_placeholder(self) -> bool:
        return self.dynamic_field == IMAGE_FIELD


@dataclass(frozen=True)
class ImageObject(TemplateObject):
    src: Optional[str] = None

    @property
    def is_image_placeholder(self) -> bool:
        return self.dynamic_field == IMAGE_FIELD


AnyTemplateObject = Union[TextObject, ShapeObject, ImageObject]


@dataclass(frozen=True)
class Template:
    id: str
    canvas_width: int
    canvas_height: int
    objects: Tuple[AnyTemplateObject, ...] = ()
    background_color: str = "#ffffff"
    background_image: Optional[str] = None
    name: str = ""

    def dynamic_keys(self) -> Tuple[str, ...]:
        """Keys referenced by dynamic objects, in z-order, without duplicates."""
        seen = []
        for obj in self.objects:
            if obj.dynamic_field and obj.dynamic_field not in seen:
                seen.append(obj.dynamic_field)
        return tuple(seen)

    def image_placeholder(self) -> Optional[AnyTemplateObject]:
        for obj in self.objects:
            if getattr(obj, "is_image_placeholder", False):
                return obj
        return None


def _number(raw: Dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise RenderError(f"Template object field {key!r} must be numeric, got {value!r}")
    try:
        return float(value)
    except ValueError as e:
        raise RenderError(f"Template object field {key!r} must be numeric, got {value!r}") from e


def _color(value: Any, default: Optional[str]) -> Optional[str]:
    # Gradients and patterns are editor-only; render them as the default colour
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _dynamic_field(raw: Dict[str, Any]) -> Optional[str]:
    value = raw.get("dynamicField")
    if value is None:
        return None
    value = str(value).strip()
    if not value or value == NO_DYNAMIC_FIELD:
        return None
    return value


def _geometry(raw: Dict[str, Any]) -> Geometry:
    return Geometry(
        left=_number(raw, "left", 0.0),
        top=_number(raw, "top", 0.0),
        width=_number(raw, "width", 0.0),
        height=_number(raw, "height", 0.0),
        angle=_number(raw, "angle", 0.0),
        scale_x=_number(raw, "scaleX", 1.0),
        scale_y=_number(raw, "scaleY", 1.0),
    )


def parse_object(raw: Dict[str, Any]) -> Optional[AnyTemplateObject]:
    """
    Convert one editor object into its typed variant.

    Args:
        raw: A single entry of the canvas "objects" array.

    Returns:
        The typed object, or None for editor-only types the renderer ignores.

    Raises:
        RenderError: If the object is not a mapping or has non-numeric geometry.
    """
    if not isinstance(raw, dict):
        raise RenderError(f"Template object must be an object, got {type(raw).__name__}")

    obj_type = str(raw.get("type", "")).lower()
    common = dict(
        geometry=_geometry(raw),
        dynamic_field=_dynamic_field(raw),
        fallback_value="" if raw.get("fallbackValue") is None else str(raw.get("fallbackValue")),
        opacity=_number(raw, "opacity", 1.0),
    )

    if obj_type in TEXT_TYPES:
        return TextObject(
            text="" if raw.get("text") is None else str(raw.get("text")),
            font_family=str(raw.get("fontFamily") or settings.DEFAULT_FONT_FAMILY),
            font_size=_number(raw, "fontSize", settings.DEFAULT_FONT_SIZE),
            font_weight=str(raw.get("fontWeight") or "normal"),
            font_style=str(raw.get("fontStyle") or "normal"),
            fill=_color(raw.get("fill"), "#000000"),
            text_align=str(raw.get("textAlign") or "left").lower(),
            line_height=_number(raw, "lineHeight", 1.16),
            wrap=obj_type == "textbox",
            **common,
        )

    if obj_type in SHAPE_TYPES:
        geometry = common["geometry"]
        if obj_type == "circle" and "radius" in raw and not geometry.width:
            radius = _number(raw, "radius", 0.0)
            common["geometry"] = Geometry(geometry.left, geometry.top, radius * 2, radius * 2,
                                          geometry.angle, geometry.scale_x, geometry.scale_y)
        return ShapeObject(
            shape=obj_type,
            fill=_color(raw.get("fill"), None),
            stroke=_color(raw.get("stroke"), None),
            stroke_width=_number(raw, "strokeWidth", 0.0),
            rx=_number(raw, "rx", 0.0),
            ry=_number(raw, "ry", 0.0),
            **common,
        )

    if obj_type in IMAGE_TYPES:
        return ImageObject(src=raw.get("src") or raw.get("_imageSrc"), **common)

    return None


def parse_template(data: Union[str, Dict[str, Any]], template_id: str = "", name: str = "",
                   width: Optional[int] = None, height: Optional[int] = None) -> Template:
    """
    Validate editor JSON and build a Template.

    Args:
        data: Canvas JSON as a string or already-decoded dict.
        template_id: Id of the stored template.
        name: Display name.
        width: Canvas width when stored outside the JSON.
        height: Canvas height when stored outside the JSON.

    Returns:
        Template: The typed template, objects kept in z-order.

    Raises:
        RenderError: If the JSON is unparseable or structurally invalid.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise RenderError(f"Template {template_id or '?'} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RenderError(f"Template {template_id or '?'} must be a JSON object")

    raw_objects = data.get("objects", [])
    if not isinstance(raw_objects, list):
        raise RenderError(f"Template {template_id or '?'} has a non-list 'objects' field")

    canvas_width = int(width or _number(data, "width", settings.DEFAULT_CANVAS_WIDTH))
    canvas_height = int(height or _number(data, "height", settings.DEFAULT_CANVAS_HEIGHT))
    if canvas_width <= 0 or canvas_height <= 0:
        raise RenderError(f"Template {template_id or '?'} has invalid size {canvas_width}x{canvas_height}")

    objects = tuple(obj for obj in (parse_object(raw) for raw in raw_objects) if obj is not None)

    background = data.get("backgroundImage")
    if isinstance(background, dict):
        background = background.get("src")

    return Template(
        id=str(template_id),
        name=name,
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        objects=objects,
        background_color=_color(data.get("background") or data.get("backgroundColor"), "#ffffff"),
        background_image=background if isinstance(background, str) and background else None,
    )
