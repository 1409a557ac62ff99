"""
Import/export orchestration: loads an image folder into the store, drives a
codec, commits its results and reports one IOResult per operation.
"""
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from PIL import Image

import JSONCodec
import PVOCCodec
import YOLOCodec
from AnnotationIO import (MAX_IO_WORKERS, ErrorInfoEntry, ImportContext, IOResult, OperationType, elapsed_millis)
from AnnotationModel import AnnotationStore, ImageRecord

IMAGE_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.bmp', '.tiff']


class NoValidImagesError(Exception):
    """The folder holds no file with a supported image extension."""


class AnnotationFormat(Enum):
    PVOC = "pvoc"
    YOLO = "yolo"
    JSON = "json"

    @property
    def codec(self):
        return {AnnotationFormat.PVOC: PVOCCodec,
                AnnotationFormat.YOLO: YOLOCodec,
                AnnotationFormat.JSON: JSONCodec}[self]


def read_image_metadata(path) -> tuple:
    """(width, height, depth) from the image header; pixels are not decoded."""
    with Image.open(path) as img:
        return img.width, img.height, len(img.getbands())


def image_files(folder) -> List[Path]:
    folder = Path(folder)
    if not folder.is_dir():
        raise NotADirectoryError(f"Image folder not found: {folder}")
    return sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS)


def load_image_folder(folder, eager_metadata: bool = False) -> List[ImageRecord]:
    """One ImageRecord per image file directly inside folder, sorted by name.

    With eager_metadata the size of every image is read now; unreadable files
    are skipped with a warning. Otherwise sizes are filled in on demand.
    """
    folder = Path(folder)
    records = []
    for path in image_files(folder):
        record = ImageRecord(path.name, folder.name, path=path)
        if eager_metadata:
            try:
                record.width, record.height, record.depth = read_image_metadata(path)
            except OSError as e:
                print(f"[Folder] Warning: Could not read {path.name}: {e}. Skipping.")
                continue
        records.append(record)
    if not records:
        raise NoValidImagesError(f"No valid image files found in {folder}.")
    return records


def load_images(store: AnnotationStore, folder, eager_metadata: bool = False) -> IOResult:
    """Replaces the store's images with the folder's. Raises NoValidImagesError
    (leaving the store untouched) when there is nothing to load."""
    start_time = time.perf_counter()
    records = load_image_folder(folder, eager_metadata)
    store.set_images(records)
    result = IOResult(OperationType.IMAGE_FOLDER_LOADING, len(records), elapsed_millis(start_time))
    print(f"[Folder] {result.summary()} ({folder})")
    return result


def _report(prefix: str, result: IOResult, verbose: bool):
    print(f"[{prefix}] {result.summary()}")
    if verbose:
        for entry in result.error_entries:
            print(f"[{prefix}] Warning: {entry.source_name}: {entry.message}")


def import_annotations(store: AnnotationStore, fmt: AnnotationFormat, source,
                       progress: Optional[Callable[[float], None]] = None,
                       stop_event: Optional[threading.Event] = None,
                       max_workers: int = MAX_IO_WORKERS, verbose: bool = False) -> IOResult:
    """Parses source with the format's codec on worker threads, then commits
    everything into the store in one step."""
    fmt = AnnotationFormat(fmt)
    source = Path(source)
    if not source.exists():
        raise FileNotFoundError(f"Annotation source not found: {source}")
    if not store.images:
        raise NoValidImagesError("Load an image folder before importing annotations.")

    start_time = time.perf_counter()
    ctx = ImportContext(store.image_file_names(), store.categories)
    batch = fmt.codec.load(source, ctx, progress, stop_event, max_workers)
    errors = list(batch.errors)
    with store.transaction():
        errors.extend(store.merge_import(batch.images, batch.categories, batch.category_counts))
        loaded = store.image_file_names()
    imported = sum(1 for record in batch.images if record.file_name in loaded)

    result = IOResult(OperationType.ANNOTATION_IMPORT, imported, elapsed_millis(start_time), errors)
    _report("Import", result, verbose)
    return result


def fill_missing_metadata(store: AnnotationStore) -> List[ErrorInfoEntry]:
    """Reads the size of annotated images that were never opened."""
    errors = []
    for image in store.annotated_images():
        try:
            store.ensure_metadata(image, read_image_metadata)
        except OSError as e:
            errors.append(ErrorInfoEntry(image.file_name, f"Could not read image size: {e}"))
    return errors


def export_annotations(store: AnnotationStore, fmt: AnnotationFormat, destination,
                       progress: Optional[Callable[[float], None]] = None,
                       stop_event: Optional[threading.Event] = None,
                       max_workers: int = MAX_IO_WORKERS, verbose: bool = False) -> IOResult:
    """Writes the store's annotations. PVOC and YOLO write into the destination
    folder, JSON writes one file (destination/annotations.json for a folder)."""
    fmt = AnnotationFormat(fmt)
    destination = Path(destination)
    if fmt is not AnnotationFormat.JSON and destination.exists() and not destination.is_dir():
        raise NotADirectoryError(f"Export destination is not a folder: {destination}")

    start_time = time.perf_counter()
    errors = []
    with store.transaction():
        if fmt is AnnotationFormat.PVOC:
            errors.extend(fill_missing_metadata(store))
            saved = PVOCCodec.save(store.images, destination, progress, stop_event, max_workers)
        elif fmt is AnnotationFormat.YOLO:
            saved = YOLOCodec.save(store, destination, progress, stop_event, max_workers)
        else:
            saved = JSONCodec.save(store.images, destination, progress, stop_event)
    errors.extend(saved.error_entries)

    result = IOResult(OperationType.ANNOTATION_SAVING, saved.success_count, elapsed_millis(start_time), errors)
    _report("Export", result, verbose)
    return result
