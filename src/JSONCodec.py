"""
JSON codec: the whole project in one file.

    [
      {
        "image": {"fileName": "a.jpg", "folderName": "imgs", "width": 640, "height": 480, "depth": 3},
        "objects": [
          {
            "category": {"name": "Car", "color": "#ff0000ff"},
            "bndbox": {"minX": 0.25, "minY": 0.25, "maxX": 0.5, "maxY": 0.5},
            "tags": ["occluded"],
            "parts": [ ...objects... ]
          },
          {"category": {...}, "polygon": [0.1, 0.1, 0.2, 0.1, 0.2, 0.3]}
        ]
      }
    ]

Coordinates are relative. Loading is strict per field: an invalid object is
reported and skipped, the rest of the image is kept.
"""
import json
import threading
from pathlib import Path
from typing import Callable, Optional

from AnnotationIO import (ErrorInfoEntry, ImportBatch, ImportContext, InvalidAnnotationError, IOResult,
                          OperationType, ProgressCounter)
from AnnotationModel import BoxShape, ImageRecord, PolygonShape, walk_shapes
from CategoryRegistry import color_to_hex, parse_color
from ShapeGeometry import Rect, is_relative_coordinate

JSON_FILE_NAME = "annotations.json"
BOUNDS_KEYS = ("minX", "minY", "maxX", "maxY")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class _ObjectParser:
    """Parses the objects of one image entry, recording problems in ctx."""

    def __init__(self, ctx: ImportContext, file_name: str):
        self.ctx = ctx
        self.file_name = file_name

    def _error(self, text):
        return InvalidAnnotationError(f"{text} element in annotation for image {self.file_name}.")

    def parse_list(self, objects, location: str) -> list:
        shapes = []
        for data in objects:
            try:
                shapes.append(self.parse_object(data, location))
            except InvalidAnnotationError as e:
                self.ctx.add_error(self.file_name, str(e))
        return shapes

    def parse_object(self, data, location: str):
        if not isinstance(data, dict):
            raise self._error(f"Invalid entry in {location}")
        category_data = data.get("category")
        if not isinstance(category_data, dict):
            raise self._error(f"Missing category element in {location}")
        name = category_data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise self._error("Missing category name")
        color = None
        if "color" in category_data:
            try:
                color = parse_color(category_data["color"])
            except ValueError:
                raise self._error("Invalid color") from None

        if "bndbox" in data:
            geometry = self._bounds(data["bndbox"])
        elif "polygon" in data:
            geometry = self._polygon(data["polygon"])
        else:
            raise self._error("Missing bndbox or polygon")

        tags = data.get("tags", [])
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            raise self._error("Invalid tags value(s) in tags")
        parts = data.get("parts", [])
        if not isinstance(parts, list):
            raise self._error("Invalid parts value(s) in parts")

        category = self.ctx.category(name.strip(), color)
        if isinstance(geometry, Rect):
            shape = BoxShape(category, geometry, set(tags))
        else:
            shape = PolygonShape(category, geometry, set(tags))
        shape.parts = self.parse_list(parts, "parts")
        return shape

    def _bounds(self, data) -> Rect:
        if not isinstance(data, dict):
            raise self._error("Invalid coordinate value(s) in bndbox")
        values = []
        for key in BOUNDS_KEYS:
            if key not in data:
                raise self._error(f"Missing {key} element in bndbox")
            value = data[key]
            if not _is_number(value) or not is_relative_coordinate(value):
                raise self._error(f"Invalid coordinate value for {key} element in bndbox")
            values.append(float(value))
        rect = Rect(*values)
        if rect.min_x > rect.max_x or rect.min_y > rect.max_y:
            raise self._error("Invalid coordinate value(s) in bndbox")
        return rect

    def _polygon(self, data) -> list:
        if not isinstance(data, list) or not data or len(data) % 2 != 0:
            raise self._error("Invalid number of coordinates in polygon")
        if not all(_is_number(v) and is_relative_coordinate(v) for v in data):
            raise self._error("Invalid coordinate value(s) in polygon")
        return [float(v) for v in data]


def parse_entry(entry, ctx: ImportContext) -> Optional[ImageRecord]:
    """Parses one top-level entry. Entry-level problems raise InvalidAnnotationError."""
    if not isinstance(entry, dict) or not isinstance(entry.get("image"), dict):
        raise InvalidAnnotationError("Missing image element.")
    meta = entry["image"]
    file_name = meta.get("fileName")
    if not isinstance(file_name, str) or not file_name:
        raise InvalidAnnotationError("Missing image fileName element.")
    if file_name not in ctx.loaded_file_names:
        raise InvalidAnnotationError(f"Image {file_name} does not belong to currently loaded image files.")
    objects = entry.get("objects")
    if not isinstance(objects, list):
        raise InvalidAnnotationError(f"Missing objects element in annotation for image {file_name}.")

    shapes = _ObjectParser(ctx, file_name).parse_list(objects, "objects")
    if not shapes:
        return None
    for shape in walk_shapes(shapes):
        ctx.count_shape(shape.category)

    def meta_int(key):
        value = meta.get(key, 0)
        return int(value) if _is_number(value) and value > 0 else 0

    folder_name = meta.get("folderName", "")
    return ImageRecord(file_name, folder_name if isinstance(folder_name, str) else "",
                       meta_int("width"), meta_int("height"), meta_int("depth"), shapes)


def load(path, ctx: ImportContext, progress: Optional[Callable[[float], None]] = None,
         stop_event: Optional[threading.Event] = None, max_workers: int = 1) -> ImportBatch:
    """Reads one JSON file. progress is called after every top-level entry."""
    path = Path(path)
    if path.is_dir():
        path = path / JSON_FILE_NAME
    try:
        with open(path, 'r', encoding='utf-8') as f:
            entries = json.load(f)
    except (OSError, ValueError) as e:
        ctx.add_error(path.name, f"Could not read annotation file: {e}")
        return ctx.batch([])
    if not isinstance(entries, list):
        ctx.add_error(path.name, "Missing images element.")
        return ctx.batch([])

    counter = ProgressCounter(len(entries), progress)
    images = []
    for entry in entries:
        if stop_event is not None and stop_event.is_set():
            print(f"[Worker] Stop requested: {len(entries) - counter.done} of {len(entries)} entries not processed.")
            break
        try:
            record = parse_entry(entry, ctx)
        except InvalidAnnotationError as e:
            ctx.add_error(path.name, str(e))
            record = None
        if record is not None:
            images.append(record)
        counter.step()
    return ctx.batch(images)


# --- save ---

def _shape_to_dict(shape) -> dict:
    data = {"category": {"name": shape.category.name, "color": color_to_hex(shape.category.color)}}
    if isinstance(shape, BoxShape):
        data["bndbox"] = dict(zip(BOUNDS_KEYS, shape.bounds))
    else:
        data["polygon"] = list(shape.points)
    if shape.tags:
        data["tags"] = sorted(shape.tags)
    if shape.parts:
        data["parts"] = [_shape_to_dict(part) for part in shape.parts]
    return data


def image_to_dict(image: ImageRecord) -> dict:
    return {
        "image": {
            "fileName": image.file_name,
            "folderName": image.folder_name,
            "width": image.width,
            "height": image.height,
            "depth": image.depth,
        },
        "objects": [_shape_to_dict(shape) for shape in image.shapes],
    }


def save(images, path, progress: Optional[Callable[[float], None]] = None,
         stop_event: Optional[threading.Event] = None, max_workers: int = 1) -> IOResult:
    """Writes every annotated image into one file (path, or path/annotations.json for a folder)."""
    path = Path(path)
    if path.is_dir():
        path = path / JSON_FILE_NAME
    annotated = [image for image in images if image.has_annotations]
    counter = ProgressCounter(len(annotated), progress)
    entries = []
    for image in annotated:
        if stop_event is not None and stop_event.is_set():
            break
        entries.append(image_to_dict(image))
        counter.step()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(entries, f, indent=2)
    except OSError as e:
        return IOResult(OperationType.ANNOTATION_SAVING, 0, error_entries=[ErrorInfoEntry(path.name, str(e))])
    return IOResult(OperationType.ANNOTATION_SAVING, len(entries))
