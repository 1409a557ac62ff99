"""
YOLO codec.

    object.data     category names, one per line; line number = class index
    <stem>.txt      one line per box: "<class_idx> <cx> <cy> <w> <h>" (relative)

Only top-level boxes are representable; polygons, tags and parts are dropped
on save.
"""
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from AnnotationIO import (MAX_IO_WORKERS, ErrorInfoEntry, ImportBatch, ImportContext, InvalidAnnotationError,
                          IOResult, OperationType, run_batch)
from AnnotationModel import BoxShape, ImageRecord
from ShapeGeometry import format_decimal, rect_to_yolo, yolo_to_rect

YOLO_DECIMALS = 6
OBJECT_DATA_FILE_NAME = "object.data"


def category_names_for_save(counts: Dict[str, int]) -> List[str]:
    """Sorted names of the categories that are assigned to at least one shape."""
    return sorted(name for name, count in counts.items() if count > 0)


def format_line(class_idx: int, shape: BoxShape) -> str:
    cx, cy, bw, bh = rect_to_yolo(shape.bounds)
    return " ".join([str(class_idx)] + [format_decimal(v, YOLO_DECIMALS) for v in (cx, cy, bw, bh)])


def save(store, folder, progress: Optional[Callable[[float], None]] = None,
         stop_event: Optional[threading.Event] = None, max_workers: int = MAX_IO_WORKERS) -> IOResult:
    """Writes object.data plus one .txt per image holding at least one top-level box."""
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)
    names = category_names_for_save(store.category_counts())
    #dict - name : idx
    name_to_idx = {name: idx for idx, name in enumerate(names)}
    errors = []
    errors_lock = threading.Lock()

    try:
        with open(folder / OBJECT_DATA_FILE_NAME, 'w', encoding='utf-8') as f:
            for name in names:
                f.write(f"{name}\n")
    except OSError as e:
        return IOResult(OperationType.ANNOTATION_SAVING, 0,
                        error_entries=[ErrorInfoEntry(OBJECT_DATA_FILE_NAME, str(e))])

    images = []
    written_stems = {}
    for image in store.images:
        if not any(isinstance(shape, BoxShape) for shape in image.shapes):
            continue
        stem = Path(image.file_name).stem
        if stem in written_stems:
            #a.jpg and a.png would both write a.txt
            errors.append(ErrorInfoEntry(
                f"{stem}.txt",
                f"Label file already used by {written_stems[stem]}, boxes of {image.file_name} were not saved."))
            continue
        written_stems[stem] = image.file_name
        images.append(image)

    def work(image):
        out_file = folder / f"{Path(image.file_name).stem}.txt"
        try:
            with open(out_file, 'w', encoding='utf-8') as f:
                for shape in image.shapes:
                    if isinstance(shape, BoxShape):
                        f.write(format_line(name_to_idx[shape.category.name], shape) + "\n")
        except OSError as e:
            with errors_lock:
                errors.append(ErrorInfoEntry(out_file.name, str(e)))
            return False
        return True

    results = run_batch(images, work, progress, stop_event, max_workers)
    return IOResult(OperationType.ANNOTATION_SAVING, sum(1 for r in results if r), error_entries=errors)


def read_category_names(path: Path, ctx: ImportContext) -> List[str]:
    names = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, start=1):
            name = line.strip()
            if not name:
                continue
            if name in names:
                #the class index keeps pointing at the line, the category is shared
                ctx.add_error(path.name, f"Duplicate category '{name}' in line {line_num}.")
            names.append(name)
    return names


def parse_line(line: str, names: List[str]):
    fields = line.split()
    if len(fields) != 5:
        raise InvalidAnnotationError(f"Expected 5 values, found {len(fields)}.")
    try:
        class_idx = int(fields[0])
    except ValueError:
        raise InvalidAnnotationError(f"Invalid category index '{fields[0]}'.") from None
    if not 0 <= class_idx < len(names):
        raise InvalidAnnotationError(f"Category index {class_idx} not in {OBJECT_DATA_FILE_NAME}.")
    try:
        cx, cy, bw, bh = (float(v) for v in fields[1:])
        bounds = yolo_to_rect(cx, cy, bw, bh)
    except ValueError as e:
        raise InvalidAnnotationError(f"Invalid box values: {e}") from None
    return names[class_idx], bounds


def parse_label_file(path: Path, file_name: str, names: List[str], ctx: ImportContext) -> Optional[ImageRecord]:
    shapes = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                name, bounds = parse_line(line, names)
            except InvalidAnnotationError as e:
                ctx.add_error(path.name, f"Line {line_num}: {e}")
                continue
            category = ctx.category(name)
            ctx.count_shape(category)
            shapes.append(BoxShape(category, bounds))
    if not shapes:
        return None
    return ImageRecord(file_name, shapes=shapes)


def load(folder, ctx: ImportContext, progress: Optional[Callable[[float], None]] = None,
         stop_event: Optional[threading.Event] = None, max_workers: int = MAX_IO_WORKERS) -> ImportBatch:
    folder = Path(folder)
    if not folder.is_dir():
        raise NotADirectoryError(f"Annotation folder not found: {folder}")
    object_data = folder / OBJECT_DATA_FILE_NAME
    if not object_data.is_file():
        ctx.add_error(OBJECT_DATA_FILE_NAME, f"Missing {OBJECT_DATA_FILE_NAME} file in {folder}.")
        return ctx.batch([])
    try:
        names = read_category_names(object_data, ctx)
    except (OSError, UnicodeDecodeError) as e:
        ctx.add_error(OBJECT_DATA_FILE_NAME, str(e))
        return ctx.batch([])

    #stem : image file name, first one wins when two images share a stem
    stem_to_file = {}
    for file_name in sorted(ctx.loaded_file_names):
        stem_to_file.setdefault(Path(file_name).stem, file_name)
    files = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == ".txt")

    def work(path):
        file_name = stem_to_file.get(path.stem)
        if file_name is None:
            ctx.add_error(path.name, f"Image {path.stem} does not belong to currently loaded image files.")
            return None
        try:
            return parse_label_file(path, file_name, names, ctx)
        except (OSError, UnicodeDecodeError) as e:
            ctx.add_error(path.name, str(e))
            return None

    results = run_batch(files, work, progress, stop_event, max_workers)
    return ctx.batch(record for record in results if record is not None)
