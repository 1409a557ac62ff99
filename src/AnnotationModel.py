"""
Annotation data model: shape records (boxes and polygons with nested parts),
per-image records and the AnnotationStore aggregate that keeps the
per-category shape counts in step with every mutation.
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Set, Tuple, Union

from AnnotationIO import ErrorInfoEntry
from CategoryRegistry import Category, CategoryRegistry, UnknownCategoryError
from ShapeGeometry import Rect, is_relative_polygon, is_relative_rect


class InvalidShapeError(ValueError):
    """A shape violates a domain constraint (coordinates, point count, category)."""


class UnknownImageError(KeyError):
    """The image is not part of the currently loaded image set."""


class ShapeNotFoundError(LookupError):
    """The shape is not stored in the given image."""


POSE_TAG_PREFIX = "pose: "


def normalize_tag(tag: str) -> str:
    """Pose values are case-insensitive and kept lower case ('Pose: Left' -> 'pose: left')."""
    if tag[:5].lower() == POSE_TAG_PREFIX[:5]:
        return POSE_TAG_PREFIX + tag[5:].strip().lower()
    return tag


@dataclass(eq=False)
class BoxShape:
    category: Category
    bounds: Rect
    tags: Set[str] = field(default_factory=set)
    parts: list = field(default_factory=list)

    def __post_init__(self):
        self.tags = {normalize_tag(tag) for tag in self.tags}


@dataclass(eq=False)
class PolygonShape:
    category: Category
    #flat [x0, y0, x1, y1, ...] list of relative coordinates
    points: List[float]
    tags: Set[str] = field(default_factory=set)
    parts: list = field(default_factory=list)

    def __post_init__(self):
        self.tags = {normalize_tag(tag) for tag in self.tags}


Shape = Union[BoxShape, PolygonShape]


@dataclass(eq=False)
class ImageRecord:
    file_name: str
    folder_name: str = ""
    width: int = 0
    height: int = 0
    depth: int = 0
    shapes: List[Shape] = field(default_factory=list)
    path: Optional[Path] = None

    @property
    def has_annotations(self):
        return bool(self.shapes)

    @property
    def has_metadata(self):
        return self.width > 0 and self.height > 0


class ModelEvent(NamedTuple):
    kind: str
    image_name: Optional[str] = None
    shape: Optional[Shape] = None
    category: Optional[Category] = None
    old_name: Optional[str] = None


def walk_shapes(shapes) -> Iterator[Shape]:
    """Depth-first iteration over shapes and all their nested parts."""
    for shape in shapes:
        yield shape
        yield from walk_shapes(shape.parts)


def _count_by_name(records) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for record in records:
        for shape in walk_shapes(record.shapes):
            counts[shape.category.name] = counts.get(shape.category.name, 0) + 1
    return counts


def find_container(shapes: list, target, parent=None) -> Optional[Tuple[list, Optional[Shape]]]:
    """Returns (list holding target, shape owning that list or None for top level)."""
    for shape in shapes:
        if shape is target:
            return shapes, parent
        found = find_container(shape.parts, target, shape)
        if found is not None:
            return found
    return None


def validate_shape(shape):
    """Raises InvalidShapeError if the shape or any nested part breaks a domain constraint."""
    if shape.category is None:
        raise InvalidShapeError("Shape has no category.")
    if isinstance(shape, BoxShape):
        if not is_relative_rect(shape.bounds):
            raise InvalidShapeError(f"Invalid relative bounds {tuple(shape.bounds)}.")
    elif isinstance(shape, PolygonShape):
        if not is_relative_polygon(shape.points):
            raise InvalidShapeError("Polygon needs an even, non-zero number of coordinates in [0, 1].")
    else:
        raise InvalidShapeError(f"Unsupported shape type {type(shape).__name__}.")
    for part in shape.parts:
        validate_shape(part)


class AnnotationStore:
    """All loaded images, the category registry and the shape counts.

    shape_count(c) always equals the number of shapes, at any nesting
    depth and across all images, whose category is c.
    """

    def __init__(self):
        self.images: List[ImageRecord] = []
        self.registry = CategoryRegistry()
        self._by_name = {}
        self._observers: List[Callable[[ModelEvent], None]] = []
        self._lock = threading.RLock()

    # --- notifications ---

    def subscribe(self, callback: Callable[[ModelEvent], None]):
        self._observers.append(callback)

    def unsubscribe(self, callback):
        if callback in self._observers:
            self._observers.remove(callback)

    def _notify(self, kind, **kwargs):
        event = ModelEvent(kind, **kwargs)
        for callback in list(self._observers):
            callback(event)

    @contextmanager
    def transaction(self):
        """Groups several mutations so no other thread observes them half-done."""
        with self._lock:
            yield self

    # --- images ---

    def set_images(self, records: List[ImageRecord]):
        """Replaces the loaded image set. Categories are kept, counts follow the new shapes."""
        with self._lock:
            self.images = list(records)
            self._by_name = {record.file_name: record for record in self.images}
            self.registry.set_counts(self.recount())
        self._notify("images_loaded")

    def image(self, image_id) -> ImageRecord:
        """Looks up an image by list index or by file name."""
        if isinstance(image_id, ImageRecord):
            if self._by_name.get(image_id.file_name) is not image_id:
                raise UnknownImageError(image_id.file_name)
            return image_id
        if isinstance(image_id, int):
            try:
                return self.images[image_id]
            except IndexError:
                raise UnknownImageError(image_id) from None
        try:
            return self._by_name[image_id]
        except KeyError:
            raise UnknownImageError(image_id) from None

    def image_file_names(self) -> Set[str]:
        return set(self._by_name)

    def annotated_images(self) -> List[ImageRecord]:
        return [image for image in self.images if image.has_annotations]

    def ensure_metadata(self, image_id, reader):
        """Fills width/height/depth via reader(path) -> (w, h, depth) if still unknown."""
        image = self.image(image_id)
        if not image.has_metadata and image.path is not None:
            image.width, image.height, image.depth = reader(image.path)
        return image

    def image_of_shape(self, shape) -> ImageRecord:
        for image in self.images:
            if find_container(image.shapes, shape) is not None:
                return image
        raise ShapeNotFoundError("Shape is not part of any loaded image.")

    # --- categories ---

    @property
    def categories(self) -> List[Category]:
        return self.registry.categories()

    def add_category(self, name, color=None) -> Category:
        category = self.registry.add_category(name, color)
        self._notify("category_added", category=category)
        return category

    def rename_category(self, old, new):
        category = self.registry.rename_category(old, new)
        if old != new:
            self._notify("category_renamed", category=category, old_name=old)

    def recolor_category(self, name, color):
        self.registry.recolor_category(name, color)

    def remove_category(self, name) -> int:
        """Deletes the category and every shape using it, with their parts.
        Returns the number of shape records removed."""
        with self._lock:
            category = self.registry.require(name)
            removed = 0
            for image in self.images:
                removed += self._remove_category_shapes(image.shapes, category)
            self.registry.discard(name)
        self._notify("category_removed", category=category)
        return removed

    def _remove_category_shapes(self, shapes: list, category) -> int:
        removed = 0
        kept = []
        for shape in shapes:
            if shape.category is category:
                for gone in walk_shapes([shape]):
                    self.registry.decrement(gone.category.name)
                    removed += 1
            else:
                removed += self._remove_category_shapes(shape.parts, category)
                kept.append(shape)
        shapes[:] = kept
        return removed

    def shape_count(self, name) -> int:
        return self.registry.shape_count(name)

    def category_counts(self):
        return self.registry.counts()

    def _resolve_category(self, category) -> Category:
        if isinstance(category, str):
            return self.registry.require(category)
        if self.registry.get(category.name) is not category:
            raise UnknownCategoryError(category.name)
        return category

    def _check_insertable(self, shape):
        validate_shape(shape)
        for item in walk_shapes([shape]):
            self._resolve_category(item.category)
        for image in self.images:
            if find_container(image.shapes, shape) is not None:
                raise InvalidShapeError("Shape is already stored.")

    # --- shapes ---

    def add_shape(self, image_id, shape, container=None):
        """Appends shape to the image (or to container.parts) and counts it with its parts."""
        with self._lock:
            image = self.image(image_id)
            self._check_insertable(shape)
            if container is None:
                target = image.shapes
            else:
                if find_container(image.shapes, container) is None:
                    raise ShapeNotFoundError("Container shape is not part of the image.")
                target = container.parts
            target.append(shape)
            for item in walk_shapes([shape]):
                self.registry.increment(item.category.name)
        self._notify("shape_added", image_name=image.file_name, shape=shape)

    def remove_shape(self, image_id, shape):
        """Removes shape and all its nested parts from wherever it sits in the image."""
        with self._lock:
            image = self.image(image_id)
            found = find_container(image.shapes, shape)
            if found is None:
                raise ShapeNotFoundError(f"Shape is not part of {image.file_name}.")
            shapes, _ = found
            shapes.remove(shape)
            for item in walk_shapes([shape]):
                self.registry.decrement(item.category.name)
        self._notify("shape_removed", image_name=image.file_name, shape=shape)

    def recategorize_shape(self, shape, new_category):
        """Changes the shape's own category. Parts keep their categories and counts."""
        with self._lock:
            category = self._resolve_category(new_category)
            image = self.image_of_shape(shape)
            old = shape.category
            if old is category:
                return
            self.registry.decrement(old.name)
            self.registry.increment(category.name)
            shape.category = category
        self._notify("shape_recategorized", image_name=image.file_name, shape=shape, category=category,
                     old_name=old.name)

    def move_shape(self, image_id, shape, new_container=None):
        """Moves shape (with its parts) to the end of new_container.parts, or to the
        image's top level when new_container is None. Counts are unchanged."""
        with self._lock:
            image = self.image(image_id)
            found = find_container(image.shapes, shape)
            if found is None:
                raise ShapeNotFoundError(f"Shape is not part of {image.file_name}.")
            if new_container is not None:
                if new_container is shape or find_container(shape.parts, new_container) is not None:
                    raise InvalidShapeError("A shape cannot become a part of itself.")
                if find_container(image.shapes, new_container) is None:
                    raise ShapeNotFoundError("Target shape is not part of the image.")
            found[0].remove(shape)
            target = image.shapes if new_container is None else new_container.parts
            target.append(shape)
        self._notify("shape_moved", image_name=image.file_name, shape=shape)

    def reorder_container(self, image_id, container, ordered: list):
        """Replaces the order of one shape list; ordered must hold the same shapes."""
        with self._lock:
            image = self.image(image_id)
            shapes = image.shapes if container is None else container.parts
            if len(ordered) != len(shapes) or {id(s) for s in ordered} != {id(s) for s in shapes}:
                raise InvalidShapeError("Reordering must keep the same shapes.")
            shapes[:] = ordered

    def replace_all_for_image(self, image_id, shapes: list):
        with self._lock:
            image = self.image(image_id)
            for shape in shapes:
                validate_shape(shape)
                for item in walk_shapes([shape]):
                    self._resolve_category(item.category)
            for item in walk_shapes(image.shapes):
                self.registry.decrement(item.category.name)
            image.shapes = list(shapes)
            for item in walk_shapes(image.shapes):
                self.registry.increment(item.category.name)
        self._notify("image_replaced", image_name=image.file_name)

    def merge_import(self, new_images: List[ImageRecord], new_categories: List[Category],
                     category_counts: Optional[Dict[str, int]] = None) -> List[ErrorInfoEntry]:
        """Commits parsed annotations. Categories are matched by name (an existing
        color wins), unknown images and invalid shapes are reported and skipped,
        everything else is appended.

        category_counts are the per-name shape counts the import workers tallied
        for new_images; they are applied minus whatever gets skipped here. When
        omitted they are counted from new_images.
        """
        errors = []
        pending = dict(category_counts) if category_counts is not None else _count_by_name(new_images)

        def discount(shapes):
            for item in walk_shapes(shapes):
                pending[item.category.name] = pending.get(item.category.name, 0) - 1

        with self._lock:
            for category in new_categories:
                self.registry.adopt(category)
            for record in new_images:
                image = self._by_name.get(record.file_name)
                if image is None:
                    errors.append(ErrorInfoEntry(
                        record.file_name,
                        f"Image {record.file_name} does not belong to currently loaded image files."))
                    discount(record.shapes)
                    continue
                if not image.has_metadata and record.width > 0 and record.height > 0:
                    image.width, image.height, image.depth = record.width, record.height, record.depth
                if not image.folder_name:
                    image.folder_name = record.folder_name
                for shape in record.shapes:
                    try:
                        validate_shape(shape)
                    except InvalidShapeError as e:
                        errors.append(ErrorInfoEntry(record.file_name, str(e)))
                        discount([shape])
                        continue
                    for item in walk_shapes([shape]):
                        item.category = self.registry.adopt(item.category)
                    image.shapes.append(shape)
            for name, count in pending.items():
                if count:
                    self.registry.increment(name, count)
        self._notify("annotations_imported")
        return errors

    def recount(self):
        """Counts from scratch; the live counts must always equal this."""
        counts = {name: 0 for name in self.registry.names()}
        for image in self.images:
            for shape in walk_shapes(image.shapes):
                counts[shape.category.name] = counts.get(shape.category.name, 0) + 1
        return counts

    def clear_annotations(self):
        with self._lock:
            for image in self.images:
                image.shapes = []
            self.registry.clear_counts()
        self._notify("annotations_cleared")
