"""CLI entry point for maintaining a link shelf store file.

Provides import (Netscape HTML or JSON export into a new shelf of the store),
export (current shelf to JSON or Netscape HTML) and check (load, migrate and
report grid health of every shelf) modes.
Each mode is a small handler so the dispatch in ``main`` stays flat.
"""

from __future__ import annotations

# Standard library imports (alphabetical within groups)
import argparse
import logging
import os
import sys
from pathlib import Path

# Third-party imports
from dotenv import load_dotenv

# Internal imports
from linkshelf.errors import PersistenceError, ShelfError
from linkshelf.exporter import write_json_export, write_netscape_html
from linkshelf.grid import column_holes, slot_collisions
from linkshelf.importer import load_import_file
from linkshelf.shelf import ShelfModel
from linkshelf.storage import JsonFileStore

DEFAULT_STORE_FILE = "linkshelf.json"


def configure_logging(*, verbose: bool) -> None:
    """Configure root logging (debug when verbose).

    verbose: when True, sets DEBUG level; otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Maintain a LinkShelf store file")
    parser.add_argument(
        "--store",
        help=(
            "Path to the shelf store JSON file. If omitted, the environment variable"
            f" LINKSHELF_STORE_FILE is used, else {DEFAULT_STORE_FILE}."
        ),
    )
    parser.add_argument(
        "--mode",
        choices=("import", "export", "check"),
        default="check",
        help=(
            "'import'→add a new shelf from --input; 'export'→write the current shelf to"
            " --output; 'check'→load, migrate and report grid slot problems."
        ),
    )
    parser.add_argument("--input", type=Path, help="Bookmark HTML or JSON export to import")
    parser.add_argument(
        "--shelf-name",
        help="Name for the imported shelf (defaults to the name stored in the file)",
    )
    parser.add_argument("--output", type=Path, help="Destination for export mode")
    parser.add_argument(
        "--format",
        choices=("json", "html"),
        default="json",
        help="Export format",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)
    if args.mode == "import" and args.input is None:
        parser.error("--input is required with mode=import")
    if args.mode == "export" and args.output is None:
        parser.error("--output is required with mode=export")
    return args


def _resolve_store(path_arg: str | None) -> Path:
    return Path(path_arg or os.getenv("LINKSHELF_STORE_FILE") or DEFAULT_STORE_FILE)


def _handle_import(
    model: ShelfModel, input_path: Path, shelf_name: str | None, logger: logging.Logger,
) -> None:
    if not input_path.exists():
        msg = f"Import file not found: {input_path}"
        raise FileNotFoundError(msg)
    payload = load_import_file(input_path, model.new_id)
    shelf = model.import_shelf(payload, name=shelf_name)
    logger.info(
        "Imported %d categories from %s as shelf %r",
        len(shelf.categories),
        input_path,
        shelf.name,
    )


def _handle_export(model: ShelfModel, output_path: Path, export_format: str) -> None:
    if export_format == "html":
        write_netscape_html(model.shelf, output_path)
    else:
        write_json_export(model.shelf, output_path)


def _handle_check(model: ShelfModel, logger: logging.Logger) -> int:
    collided = False
    for shelf in model.library.shelves:
        categories = shelf.categories
        collisions = slot_collisions(categories)
        collided = collided or bool(collisions)
        for slot in collisions:
            logger.error("Shelf %r: several categories share slot %s", shelf.name, slot)
        for column, positions in column_holes(categories).items():
            logger.info(
                "Shelf %r: column %d has empty positions %s (left by deletions)",
                shelf.name,
                column,
                positions,
            )
        logger.info(
            "Shelf %r has %d categories and %d favourites",
            shelf.name,
            len(categories),
            len(shelf.favourites),
        )
    logger.info(
        "Library has %d shelves (current %r) and %d inbox items",
        len(model.library.shelves),
        model.shelf.name,
        len(model.inbox),
    )
    return 1 if collided else 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the LinkShelf CLI."""
    load_dotenv()
    args = _parse_args(argv)
    configure_logging(verbose=args.verbose)
    logger = logging.getLogger("linkshelf")
    store = JsonFileStore(_resolve_store(args.store))

    try:
        model = ShelfModel.load(store)
    except PersistenceError as exc:
        logger.error("Could not load shelf store: %s", exc)
        return 2

    try:
        if args.mode == "import":
            _handle_import(model, args.input, args.shelf_name, logger)
        elif args.mode == "export":
            _handle_export(model, args.output, args.format)
        else:
            return _handle_check(model, logger)
    except (ShelfError, FileNotFoundError) as exc:
        logger.error("%s failed: %s", args.mode, exc)
        return 1
    finally:
        model.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
