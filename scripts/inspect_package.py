#!/usr/bin/env python3
"""Print the slide graph of a PPTX and check its manifests.

Lists every slide in presentation order with the parts it depends on, then
reports parts without a content type, dangling relationships and duplicate ids.

Usage:
    python scripts/inspect_package.py deck.pptx [--json]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.opc_engine import Package, PackageError


def describe(package: Package) -> dict:
    slides = []
    for number, slide in enumerate(package.get_slides(), 1):
        slides.append({
            "number": number,
            "path": slide.path,
            "dependencies": [resource.path for resource in slide.get_resources()],
            "text": slide.text(),
        })
    return {
        "file": str(package.filename),
        "parts": len(package.parts()),
        "slides": slides,
        "problems": package.find_problems(),
    }


def main():
    parser = argparse.ArgumentParser(description="Inspect the part graph of a PPTX")
    parser.add_argument("input_file", type=Path, help="PPTX file")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    try:
        with Package.open(args.input_file) as package:
            report = describe(package)
    except PackageError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print(f"{report['file']}: {report['parts']} parts, {len(report['slides'])} slides")
        for slide in report["slides"]:
            print(f"  [{slide['number']}] {slide['path']} ({len(slide['dependencies'])} dependencies)")
            for dependency in slide["dependencies"]:
                print(f"        {dependency}")
        if report["problems"]:
            print(f"\nProblems ({len(report['problems'])}):")
            for problem in report["problems"]:
                print(f"  - {problem}")
        else:
            print("\nNo problems found.")

    sys.exit(1 if report["problems"] else 0)


if __name__ == "__main__":
    main()
