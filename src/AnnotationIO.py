"""
Shared pieces of the annotation import/export codecs: the result object handed
back to the caller, per-entry error records, the thread-safe import context and
the worker pool that runs one unit of work per file.
"""
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from CategoryRegistry import Category, random_color

MAX_IO_WORKERS = 4


class OperationType(Enum):
    IMAGE_FOLDER_LOADING = "image folder loading"
    ANNOTATION_IMPORT = "annotation import"
    ANNOTATION_SAVING = "annotation saving"


class ErrorInfoEntry(NamedTuple):
    source_name: str
    message: str


class InvalidAnnotationError(ValueError):
    """A single annotation entry (file, object or line) cannot be used."""


@dataclass
class IOResult:
    operation_type: OperationType
    success_count: int
    duration_millis: Optional[int] = None
    error_entries: List[ErrorInfoEntry] = field(default_factory=list)

    @property
    def has_errors(self):
        return bool(self.error_entries)

    def summary(self):
        text = f"{self.operation_type.value}: {self.success_count} succeeded"
        if self.duration_millis is not None:
            text += f" in {self.duration_millis} ms"
        if self.error_entries:
            text += f", {len(self.error_entries)} error(s)"
        return text


@dataclass
class ImportBatch:
    """Parsed, not yet committed annotations produced by a codec's load()."""
    images: list
    categories: List[Category]
    errors: List[ErrorInfoEntry]
    category_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def imported_count(self):
        return len(self.images)


class ImportContext:
    """State shared by the workers of one import.

    Categories are insert-if-absent by name (seeded with the store's existing
    ones so their colors win), counts are incremented under the same lock and
    the error list is append-only.
    """

    def __init__(self, loaded_file_names: Iterable[str], categories: Iterable[Category] = ()):
        self.loaded_file_names = set(loaded_file_names)
        self._categories: Dict[str, Category] = {c.name: c for c in categories}
        self._counts: Dict[str, int] = {}
        self._errors: List[ErrorInfoEntry] = []
        self._lock = threading.Lock()

    def category(self, name: str, color=None) -> Category:
        with self._lock:
            existing = self._categories.get(name)
            if existing is None:
                existing = Category(name, color if color is not None else random_color())
                self._categories[name] = existing
            return existing

    def count_shape(self, category: Category):
        with self._lock:
            self._counts[category.name] = self._counts.get(category.name, 0) + 1

    def add_error(self, source_name: str, message: str):
        with self._lock:
            self._errors.append(ErrorInfoEntry(source_name, message))

    @property
    def errors(self) -> List[ErrorInfoEntry]:
        with self._lock:
            return list(self._errors)

    def batch(self, images) -> ImportBatch:
        with self._lock:
            return ImportBatch(list(images), list(self._categories.values()), list(self._errors), dict(self._counts))


class ProgressCounter:
    """Single shared counter; reports done/total to an optional callback."""

    def __init__(self, total: int, callback: Optional[Callable[[float], None]] = None):
        self.total = total
        self.done = 0
        self.callback = callback
        self._lock = threading.Lock()
        if callback is not None:
            callback(0.0 if total else 1.0)

    def step(self):
        with self._lock:
            self.done += 1
            fraction = self.done / self.total if self.total else 1.0
            #under the lock so callers never see progress go backwards
            if self.callback is not None:
                self.callback(fraction)


def run_batch(items: list, work: Callable, progress: Optional[Callable[[float], None]] = None,
              stop_event: Optional[threading.Event] = None, max_workers: int = MAX_IO_WORKERS) -> list:
    """Runs work(item) for every item on a small pool of worker threads.

    Returns results in item order; items never started (because stop_event was
    set) leave None in their slot. Exceptions escaping work() are re-raised
    after all workers stopped, so callers must convert per-item problems into
    error entries inside work().
    """
    results = [None] * len(items)
    counter = ProgressCounter(len(items), progress)
    if not items:
        return results

    work_queue = queue.Queue()
    for index, item in enumerate(items):
        work_queue.put((index, item))
    failures = []
    failures_lock = threading.Lock()
    halt = threading.Event()

    def stopped():
        return halt.is_set() or (stop_event is not None and stop_event.is_set())

    def worker():
        while not stopped():
            try:
                index, item = work_queue.get_nowait()
            except queue.Empty:
                break
            try:
                results[index] = work(item)
            except Exception as e:
                with failures_lock:
                    failures.append(e)
                halt.set()
                break
            finally:
                work_queue.task_done()
            counter.step()

    thread_count = max(1, min(max_workers, len(items)))
    threads = [threading.Thread(target=worker, daemon=True) for _ in range(thread_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    if failures:
        raise failures[0]
    if stop_event is not None and stop_event.is_set() and counter.done < len(items):
        print(f"[Worker] Stop requested: {len(items) - counter.done} of {len(items)} item(s) not processed.")
    return results


def elapsed_millis(start_time: float) -> int:
    return int(round((time.perf_counter() - start_time) * 1000))
