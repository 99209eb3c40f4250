#!/usr/bin/env python3
"""Compose a presentation by importing slides from other PPTX files.

Usage:
    # Append every slide of two decks to a base deck:
    python scripts/compose_deck.py base.pptx -o output.pptx --add intro.pptx --add appendix.pptx

    # Pick slides by 1-based index and fill {{placeholders}} from a data file:
    python scripts/compose_deck.py base.pptx -o output.pptx --add bank.pptx:3,5 --data values.yaml

    # Import every deck found in a directory:
    python scripts/compose_deck.py base.pptx -o output.pptx --add slide_bank/

If no -o is given, the base file is overwritten in place.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.opc_engine import Package, PackageError
from src.schemas.package_settings import PackageSettings
from src.utils.file_utils import find_pptx_files, load_data_file

logger = logging.getLogger(__name__)


def parse_source(spec: str) -> tuple[Path, list[int] | None]:
    """Split ``deck.pptx:1,3`` into a path and 1-based slide indices."""
    path, sep, indices = spec.rpartition(":")
    if not sep or not indices.replace(",", "").isdigit():
        return Path(spec), None
    return Path(path), [int(i) for i in indices.split(",")]


def expand_sources(specs: list[str]) -> list[tuple[Path, list[int] | None]]:
    sources = []
    for spec in specs:
        path, indices = parse_source(spec)
        if path.is_dir():
            sources.extend((found, None) for found in find_pptx_files(path))
        else:
            sources.append((path, indices))
    return sources


def compose(
    base: Path,
    output: Path,
    sources: list[tuple[Path, list[int] | None]],
    data: dict | None = None,
    settings: PackageSettings | None = None,
) -> int:
    """Import the requested slides into ``base`` and save to ``output``.

    Returns the slide count of the result.
    """
    with Package.open(base, settings) as target:
        for source_path, indices in sources:
            with Package.open(source_path, settings) as source:
                slides = source.get_slides()
                if indices is not None:
                    out_of_range = [i for i in indices if not 1 <= i <= len(slides)]
                    if out_of_range:
                        raise IndexError(
                            f"Slide index {out_of_range[0]} out of range for {source_path.name} "
                            f"(has {len(slides)} slides)"
                        )
                    slides = [slides[i - 1] for i in indices]
                target.add_slides(slides)
                logger.info(f"Imported {len(slides)} slide(s) from {source_path.name}")
        if data:
            target.template(data)
        target.save_as(output)
        return len(target.get_slides())


def main():
    parser = argparse.ArgumentParser(description="Import slides from other decks into a base PPTX")
    parser.add_argument("base", type=Path, help="Base PPTX the slides are appended to")
    parser.add_argument("-o", "--output", type=Path, default=None,
                        help="Output PPTX path (default: overwrite base)")
    parser.add_argument("--add", action="append", default=[], metavar="SRC[:i,j]",
                        help="Deck (or directory of decks) to import; optional 1-based slide indices")
    parser.add_argument("--data", type=Path, default=None,
                        help="JSON/YAML mapping used to fill {{placeholders}} on every slide")
    parser.add_argument("--settings", type=Path, default=None, help="Package settings YAML")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.base.exists():
        print(f"Error: base deck not found: {args.base}", file=sys.stderr)
        sys.exit(1)

    settings = PackageSettings.from_yaml(args.settings) if args.settings else None
    data = load_data_file(args.data) if args.data else None
    output = args.output or args.base
    output.parent.mkdir(parents=True, exist_ok=True)

    try:
        count = compose(args.base, output, expand_sources(args.add), data, settings)
    except (PackageError, IndexError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Presentation written: {output}")
    print(f"Slides: {count}")


if __name__ == "__main__":
    main()
