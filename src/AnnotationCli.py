import argparse
import sys
import threading
from typing import List, Optional

from AnnotationIO import MAX_IO_WORKERS
from AnnotationModel import AnnotationStore
from ImportExport import (AnnotationFormat, NoValidImagesError, export_annotations, import_annotations,
                          load_images)

FORMAT_CHOICES = [f.value for f in AnnotationFormat]

#exit codes
EXIT_OK = 0
EXIT_PRECONDITION = 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="annotation-editor",
                                description="Convert and summarize image annotations (Pascal VOC, YOLO, JSON).")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_source_args(parser):
        parser.add_argument("--images", required=True, help="Folder holding the annotated images")
        parser.add_argument("--from", dest="source_format", required=True, choices=FORMAT_CHOICES)
        parser.add_argument("--input", required=True, help="Annotation folder (pvoc, yolo) or file (json)")
        parser.add_argument("--workers", type=int, default=MAX_IO_WORKERS, help="Parallel file workers")
        parser.add_argument("--verbose", action="store_true", help="Print every error entry")

    pconv = sub.add_parser("convert", help="Read annotations in one format and write them in another")
    add_source_args(pconv)
    pconv.add_argument("--to", dest="target_format", required=True, choices=FORMAT_CHOICES)
    pconv.add_argument("--output", required=True, help="Output folder (pvoc, yolo) or file (json)")

    pstats = sub.add_parser("stats", help="Print per-category and per-image summaries")
    add_source_args(pstats)
    pstats.add_argument("--chart", help="Write a bar chart of shapes per category to this PNG")
    return p


def _progress_printer(label: str):
    """Prints at every 25% step so long imports show life without flooding the console."""
    state = {'last': -1}
    lock = threading.Lock()

    def report(fraction: float):
        step = int(fraction * 4)
        with lock:
            if step > state['last']:
                state['last'] = step
                print(f"[{label}] {int(fraction * 100)}%")
    return report


def _load_store(args) -> AnnotationStore:
    store = AnnotationStore()
    load_images(store, args.images)
    import_annotations(store, args.source_format, args.input, progress=_progress_printer("Import"),
                       max_workers=args.workers, verbose=args.verbose)
    return store


def run_convert(args) -> int:
    store = _load_store(args)
    export_annotations(store, args.target_format, args.output, progress=_progress_printer("Export"),
                       max_workers=args.workers, verbose=args.verbose)
    return EXIT_OK


def run_stats(args) -> int:
    # pandas and matplotlib are only needed here
    from category_stats import category_count_frame, image_summary_frame, save_category_chart

    store = _load_store(args)
    print(category_count_frame(store).to_string(index=False))
    print()
    print(image_summary_frame(store).to_string(index=False))
    if args.chart:
        save_category_chart(store, args.chart)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.workers < 1:
        print("Error: --workers must be at least 1.")
        return EXIT_PRECONDITION
    try:
        if args.cmd == "convert":
            return run_convert(args)
        return run_stats(args)
    except (NoValidImagesError, FileNotFoundError, NotADirectoryError) as e:
        print(f"Error: {e}")
        return EXIT_PRECONDITION


if __name__ == "__main__":
    sys.exit(main())
