"""
Pascal VOC codec: one XML file per image with absolute pixel coordinates.

    <annotation>
        <folder/> <filename/> <size><width/><height/><depth/></size>
        <object>
            <name/> <difficult/> <occluded/> <pose/> <truncated/> [<actions/>]
            <bndbox><xmin/><xmax/><ymin/><ymax/></bndbox>  or  <polygon><x/><y/>...</polygon>
            <part> ...same as object... </part>
        </object>
    </annotation>

PVOC's fixed fields are mapped to free-form tags on load ("pose: frontal",
"truncated", "occluded", "difficult", "action: jumping") and back on save.
"""
import math
import re
import threading
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Callable, Optional

from AnnotationIO import (MAX_IO_WORKERS, ImportBatch, ImportContext, InvalidAnnotationError, IOResult,
                          OperationType, ErrorInfoEntry, run_batch)
from AnnotationModel import POSE_TAG_PREFIX, BoxShape, ImageRecord, PolygonShape, walk_shapes
from ShapeGeometry import (absolute_to_relative_points, absolute_to_relative_rect, format_decimal,
                           normalized_rect, relative_to_absolute_points, relative_to_absolute_rect)

PVOC_DECIMALS = 2
ANNOTATION_FILE_SUFFIX = "_A.xml"

MISSING_ELEMENT_PREFIX = "Missing element: "
ACTION_TAG_PREFIX = "action: "
FLAG_TAGS = ("truncated", "occluded", "difficult")
#action names become element names inside <actions>
XML_NAME_PATTERN = re.compile(r"[^\W\d][\w.-]*")


def annotation_file_name(image_file_name: str) -> str:
    """'dog.1.jpg' -> 'dog_1_jpg_A.xml'"""
    return image_file_name.replace(".", "_") + ANNOTATION_FILE_SUFFIX


# --- load ---

def _required(parent, tag):
    element = parent.find(tag)
    if element is None:
        raise InvalidAnnotationError(MISSING_ELEMENT_PREFIX + tag)
    return element


def _required_text(parent, tag) -> str:
    text = _required(parent, tag).text
    return text.strip() if text is not None else ""


def _required_float(parent, tag) -> float:
    text = _required_text(parent, tag)
    try:
        return float(text)
    except ValueError:
        raise InvalidAnnotationError(f"Invalid number '{text}' in element: {tag}") from None


def _required_int(parent, tag) -> int:
    value = _required_float(parent, tag)
    if not value.is_integer():
        raise InvalidAnnotationError(f"Invalid integer '{value}' in element: {tag}")
    return int(value)


def _flag_set(element, tag) -> bool:
    text = element.findtext(tag)
    return text is not None and text.strip() == "1"


def _read_tags(element) -> set:
    tags = set()
    pose = element.findtext("pose")
    if pose is not None and pose.strip() and pose.strip().lower() != "unspecified":
        tags.add(POSE_TAG_PREFIX + pose.strip().lower())
    for flag in FLAG_TAGS:
        if _flag_set(element, flag):
            tags.add(flag)
    actions = element.find("actions")
    if actions is not None:
        for action in actions:
            if action.text is not None and action.text.strip() == "1":
                tags.add(ACTION_TAG_PREFIX + action.tag)
    return tags


def _read_polygon(polygon, width, height):
    coordinates = []
    expected = "x"
    for child in polygon:
        if child.tag not in ("x", "y"):
            continue
        if child.tag != expected:
            raise InvalidAnnotationError("Polygon coordinates must alternate between x and y elements.")
        try:
            coordinates.append(float((child.text or "").strip()))
        except ValueError:
            raise InvalidAnnotationError(f"Invalid number '{child.text}' in element: {child.tag}") from None
        expected = "y" if expected == "x" else "x"
    if not coordinates or len(coordinates) % 2 != 0:
        raise InvalidAnnotationError("Invalid number of coordinates in polygon element.")
    try:
        return absolute_to_relative_points(coordinates, width, height)
    except ValueError as e:
        raise InvalidAnnotationError(f"Invalid polygon: {e}") from None


def _parse_object(element, width, height, ctx: ImportContext, source_name: str):
    """Parses an <object> or <part> element. Own fields are checked before any
    part is looked at, so an invalid object never leaves stray parts behind."""
    name_element = element.find("name")
    if name_element is None:
        raise InvalidAnnotationError(MISSING_ELEMENT_PREFIX + "name")
    name = (name_element.text or "").strip()
    if not name:
        raise InvalidAnnotationError("Blank object name")

    bndbox = element.find("bndbox")
    polygon = element.find("polygon")
    if bndbox is not None:
        rect = normalized_rect(_required_float(bndbox, "xmin"), _required_float(bndbox, "ymin"),
                               _required_float(bndbox, "xmax"), _required_float(bndbox, "ymax"))
        try:
            bounds = absolute_to_relative_rect(rect, width, height)
        except ValueError as e:
            raise InvalidAnnotationError(f"Invalid bndbox in object '{name}': {e}") from None
        shape = BoxShape(ctx.category(name), bounds, _read_tags(element))
    elif polygon is not None:
        points = _read_polygon(polygon, width, height)
        shape = PolygonShape(ctx.category(name), points, _read_tags(element))
    else:
        raise InvalidAnnotationError(MISSING_ELEMENT_PREFIX + "bndbox")

    for part_element in element.findall("part"):
        try:
            shape.parts.append(_parse_object(part_element, width, height, ctx, source_name))
        except InvalidAnnotationError as e:
            ctx.add_error(source_name, f"{e} (part of '{name}')")
    return shape


def parse_annotation_file(path: Path, ctx: ImportContext) -> Optional[ImageRecord]:
    """Parses one file. File-level problems raise; object-level problems are
    recorded in ctx and the object is skipped. Returns None if no object survived."""
    root = ET.parse(path).getroot()
    if root.tag != "annotation":
        raise InvalidAnnotationError(MISSING_ELEMENT_PREFIX + "annotation")

    file_name = _required_text(root, "filename")
    if file_name not in ctx.loaded_file_names:
        raise InvalidAnnotationError("The image file does not belong to the currently loaded images.")
    folder_name = root.findtext("folder", "").strip()
    size = _required(root, "size")
    width = _required_float(size, "width")
    height = _required_float(size, "height")
    depth = _required_int(size, "depth")
    if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
        raise InvalidAnnotationError(f"Invalid image size {width}x{height}.")

    shapes = []
    for element in root.findall("object"):
        try:
            shape = _parse_object(element, width, height, ctx, path.name)
        except InvalidAnnotationError as e:
            ctx.add_error(path.name, str(e))
            continue
        for item in walk_shapes([shape]):
            ctx.count_shape(item.category)
        shapes.append(shape)

    if not shapes:
        return None
    return ImageRecord(file_name, folder_name, int(width), int(height), depth, shapes)


def annotation_files(folder: Path):
    """*.xml files directly inside folder, sorted by name."""
    folder = Path(folder)
    if not folder.is_dir():
        raise NotADirectoryError(f"Annotation folder not found: {folder}")
    return sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == ".xml")


def load(folder, ctx: ImportContext, progress: Optional[Callable[[float], None]] = None,
         stop_event: Optional[threading.Event] = None, max_workers: int = MAX_IO_WORKERS) -> ImportBatch:
    files = annotation_files(folder)

    def work(path):
        try:
            return parse_annotation_file(path, ctx)
        except (OSError, ET.ParseError, ValueError) as e:
            ctx.add_error(path.name, str(e))
            return None

    results = run_batch(files, work, progress, stop_event, max_workers)
    return ctx.batch(record for record in results if record is not None)


# --- save ---

def _sub_text(parent, tag, text):
    element = ET.SubElement(parent, tag)
    element.text = str(text)
    return element


def _write_tags(element, shape, problems: list):
    tags = shape.tags
    pose = "Unspecified"
    actions = []
    for tag in sorted(tags):
        if tag.startswith(POSE_TAG_PREFIX):
            pose = tag[len(POSE_TAG_PREFIX):].strip().capitalize() or pose
        elif tag.startswith(ACTION_TAG_PREFIX):
            action = tag[len(ACTION_TAG_PREFIX):].strip()
            if XML_NAME_PATTERN.fullmatch(action):
                actions.append(action)
            else:
                problems.append(f"Action '{action}' of object '{shape.category.name}' is not a valid "
                                "XML element name and was not saved.")
    _sub_text(element, "difficult", 1 if "difficult" in tags else 0)
    _sub_text(element, "occluded", 1 if "occluded" in tags else 0)
    _sub_text(element, "pose", pose)
    _sub_text(element, "truncated", 1 if "truncated" in tags else 0)
    if actions:
        actions_element = ET.SubElement(element, "actions")
        for action in actions:
            _sub_text(actions_element, action, 1)


def _write_shape(parent, tag, shape, width, height, problems: list):
    element = ET.SubElement(parent, tag)
    _sub_text(element, "name", shape.category.name)
    _write_tags(element, shape, problems)
    if isinstance(shape, BoxShape):
        rect = relative_to_absolute_rect(shape.bounds, width, height)
        bndbox = ET.SubElement(element, "bndbox")
        _sub_text(bndbox, "xmin", format_decimal(rect.min_x, PVOC_DECIMALS))
        _sub_text(bndbox, "xmax", format_decimal(rect.max_x, PVOC_DECIMALS))
        _sub_text(bndbox, "ymin", format_decimal(rect.min_y, PVOC_DECIMALS))
        _sub_text(bndbox, "ymax", format_decimal(rect.max_y, PVOC_DECIMALS))
    else:
        points = relative_to_absolute_points(shape.points, width, height)
        polygon = ET.SubElement(element, "polygon")
        for index, value in enumerate(points):
            _sub_text(polygon, "x" if index % 2 == 0 else "y", format_decimal(value, PVOC_DECIMALS))
    for part in shape.parts:
        _write_shape(element, "part", part, width, height, problems)
    return element


def build_document(image: ImageRecord, problems: Optional[list] = None) -> ET.ElementTree:
    """Builds the XML tree for image. Tags that cannot be written are described
    in problems (when given) and left out."""
    if problems is None:
        problems = []
    if not image.has_metadata:
        raise InvalidAnnotationError(f"Image size of {image.file_name} is unknown.")
    root = ET.Element("annotation")
    _sub_text(root, "folder", image.folder_name)
    _sub_text(root, "filename", image.file_name)
    size = ET.SubElement(root, "size")
    _sub_text(size, "width", image.width)
    _sub_text(size, "height", image.height)
    _sub_text(size, "depth", image.depth)
    for shape in image.shapes:
        _write_shape(root, "object", shape, image.width, image.height, problems)
    tree = ET.ElementTree(root)
    ET.indent(tree)
    return tree


def save(images, folder, progress: Optional[Callable[[float], None]] = None,
         stop_event: Optional[threading.Event] = None, max_workers: int = MAX_IO_WORKERS) -> IOResult:
    """Writes one file per annotated image into folder."""
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)
    annotated = [image for image in images if image.has_annotations]
    errors = []
    errors_lock = threading.Lock()

    def work(image):
        out_file = folder / annotation_file_name(image.file_name)
        try:
            problems = []
            build_document(image, problems).write(out_file, encoding="utf-8", xml_declaration=True)
        except (OSError, ValueError) as e:
            with errors_lock:
                errors.append(ErrorInfoEntry(out_file.name, str(e)))
            return False
        if problems:
            with errors_lock:
                errors.extend(ErrorInfoEntry(out_file.name, message) for message in problems)
        return True

    results = run_batch(annotated, work, progress, stop_event, max_workers)
    return IOResult(OperationType.ANNOTATION_SAVING, sum(1 for r in results if r), error_entries=errors)
