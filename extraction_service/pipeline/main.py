from __future__ import annotations

import json
import logging
import mimetypes
import sys
from pathlib import Path

from extraction_service.errors import ExtractionError, InputError
from extraction_service.logging_config import setup_logging
from extraction_service.pipeline.cli import build_parser
from extraction_service.pipeline.config import ExtractionConfig
from extraction_service.pipeline.materials import result_metadata
from extraction_service.pipeline.service import build_material_store, build_orchestrator, extract_material
from extraction_service.pipeline.types import ExtractionResult, SourceDocument

logger = logging.getLogger("extraction_service.pipeline")


def _load_file(path: str, mime_type: str | None) -> SourceDocument:
    p = Path(path)
    try:
        data = p.read_bytes()
    except OSError as e:
        raise InputError(f"Cannot read {path}: {e}") from e
    mime = mime_type or mimetypes.guess_type(p.name)[0]
    if not mime:
        raise InputError(f"Cannot guess the MIME type of {p.name}; pass --mime-type")
    return SourceDocument(data=data, mime_type=mime, file_name=p.name)


def _print_result(result: ExtractionResult, *, as_json: bool) -> None:
    if as_json:
        payload = {"success": True, "extracted_text": result.full_text, **result_metadata(result)}
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    else:
        sys.stdout.write(result.full_text + "\n")


def run(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.persist and not args.material_id:
        parser.error("--persist requires --material-id")

    setup_logging(level=args.log_level.upper())

    cfg = ExtractionConfig.from_env()
    cfg.validate()

    language = args.language or cfg.ocr_language
    timeout_s = args.timeout if args.timeout and args.timeout > 0 else None

    def _progress(fraction: float) -> None:
        logger.debug("progress %.0f%%", fraction * 100)

    orchestrator = build_orchestrator(cfg)
    try:
        if args.material_id:
            store = build_material_store(cfg)
            if store is None:
                raise InputError("--material-id needs EXTRACT_MATERIALS_BUCKET to be set")
            result = extract_material(
                orchestrator,
                store,
                args.material_id,
                language=language,
                persist=bool(args.persist),
                progress=_progress,
                timeout_s=timeout_s,
            )
        else:
            doc = _load_file(args.file, args.mime_type)
            result = orchestrator.extract(doc, language=language, progress=_progress, timeout_s=timeout_s)
    except InputError as e:
        logger.error("Invalid input: %s", e)
        return 1
    except ExtractionError as e:
        logger.error("Extraction failed (%s): %s", e.kind.value, e)
        return 2
    finally:
        orchestrator.close()

    _print_result(result, as_json=bool(args.json))
    return 0


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
