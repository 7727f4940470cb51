"""Command-line entry point for http-epub."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from .config import ConvertConfig
from .errors import AssemblyError, ConversionError, ExtractionError, FetchError
from .pipeline import url_to_epub

logger = logging.getLogger("http_epub.cli")

EXIT_FETCH = 3
EXIT_EXTRACT = 4
EXIT_ASSEMBLE = 5
EXIT_OTHER = 6


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="http-epub",
        description="Convert a web page into a self-contained EPUB file.",
    )
    parser.add_argument("url", help="Address of the page to convert")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Where to write the EPUB (default: '<title>.epub' in the current directory)",
    )
    parser.add_argument(
        "-t",
        "--title",
        default=None,
        help="Title for the EPUB (default: extracted from the page)",
    )
    parser.add_argument(
        "--language",
        default=None,
        help="Language tag to record when the page does not declare one correctly",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Number of images downloaded in parallel",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Page request timeout in seconds",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def exit_code_for(exc: ConversionError) -> int:
    if isinstance(exc, FetchError):
        return EXIT_FETCH
    if isinstance(exc, ExtractionError):
        return EXIT_EXTRACT
    if isinstance(exc, AssemblyError):
        return EXIT_ASSEMBLE
    return EXIT_OTHER


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    config = ConvertConfig(
        timeout=args.timeout,
        image_workers=max(1, args.workers),
        language=args.language,
    )
    try:
        path = url_to_epub(args.url, output=args.output, title=args.title, config=config)
    except ConversionError as exc:
        print(f"error: {exc.stage} failed: {exc}", file=sys.stderr)
        return exit_code_for(exc)
    except OSError as exc:
        print(f"error: write failed: {exc}", file=sys.stderr)
        return EXIT_OTHER

    print(f"EPUB successfully created at: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
