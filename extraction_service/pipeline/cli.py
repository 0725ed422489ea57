from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="extract-document",
        description="Extract text from a PDF or image using the escalating OCR pipeline",
    )

    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", default=None, help="Local PDF or image to extract")
    source.add_argument(
        "--material-id",
        default=None,
        help="Material id in the configured store (env EXTRACT_MATERIALS_BUCKET)",
    )

    p.add_argument(
        "--language",
        default=None,
        help="Tesseract language code(s), e.g. eng or eng+fra (default from env EXTRACT_OCR_LANGUAGE)",
    )
    p.add_argument("--mime-type", default=None, help="Override the MIME type guessed from the file name")
    p.add_argument("--timeout", type=float, default=0, help="Overall deadline in seconds (0 = none)")
    p.add_argument(
        "--persist",
        action="store_true",
        help="Write extracted text back to the material store (only with --material-id)",
    )
    p.add_argument("--json", action="store_true", help="Print the full result as JSON instead of the text")
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")
    return p
