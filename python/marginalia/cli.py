import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from marginalia import __version__
from marginalia.config import EngineSettings, load_settings
from marginalia.diff import proposals_from_revision
from marginalia.document import Document, to_text
from marginalia.ingest import load_document
from marginalia.markup import render_markup
from marginalia.models import ConflictGroup
from marginalia.suggest.engine import SuggestionEngine


def configure_logging(json_logs: bool = False, verbose: bool = False):
    """All logs go to stderr; stdout carries command output only."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(stream=sys.stderr, level=level, force=True)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _load_document(path: Path) -> Document:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    try:
        return load_document(path)
    except ValueError as e:
        print(f"Error reading {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _load_json_list(path: Path) -> List[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error parsing JSON suggestions: {e}", file=sys.stderr)
        sys.exit(1)

    # Accept either a bare list or {"suggestions": [...]}
    if isinstance(data, dict):
        data = data.get("suggestions", [])
    if not isinstance(data, list):
        print(f"Error: {path} must contain a list of suggestions", file=sys.stderr)
        sys.exit(1)
    return data


def _settings(args) -> EngineSettings:
    try:
        return load_settings(args.config, args.threshold)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        sys.exit(1)


def _engine_with(args, proposals_path: Path) -> SuggestionEngine:
    engine = SuggestionEngine(_load_document(args.input), settings=_settings(args))
    try:
        applied, skipped = engine.set_suggestions(_load_json_list(proposals_path))
    except ValidationError as e:
        print(f"Error: invalid suggestion payload: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Stats: {applied} suggestions placed, {skipped} skipped.", file=sys.stderr)
    for issue in engine.state.issues:
        print(f"  [{issue.kind.value}] #{issue.index}: {issue.message}", file=sys.stderr)
    return engine


def _write_or_print(text: str, output: Optional[Path] = None):
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"✅ Saved to {output}", file=sys.stderr)
    else:
        print(text)


def handle_extract(args):
    doc = _load_document(args.input)
    _write_or_print(to_text(doc), args.output)


def handle_diff(args):
    original = _load_document(args.original)
    revised = _load_document(args.modified)

    proposals = proposals_from_revision(original.flatten(), revised.flatten())

    if args.json:
        print(json.dumps([p.to_payload() for p in proposals], indent=2, ensure_ascii=False))
        return

    print(f"Found {len(proposals)} changes:", file=sys.stderr)
    for p in proposals:
        if not p.replacement:
            print(f"[-] {p.original}")
        else:
            print(f"[~] '{p.original}' -> '{p.replacement}'")


def handle_suggest(args):
    engine = _engine_with(args, args.suggestions)

    if args.json:
        items = [item.model_dump(mode="json", by_alias=True) for item in engine.items]
        _write_or_print(json.dumps(items, indent=2, ensure_ascii=False), args.output)
    else:
        _write_or_print(render_markup(engine.state, include_ids=not args.no_ids), args.output)


def handle_accept(args):
    engine = _engine_with(args, args.suggestions)

    if args.all:
        ids = []
        for item in engine.items:
            if isinstance(item, ConflictGroup):
                print(f"Skipping conflict {item.id}: choose one of its members with --id", file=sys.stderr)
                continue
            if not item.is_degenerate:
                ids.append(item.id)
    else:
        ids = args.id or []

    missing = [sid for sid in ids if not engine.accept_suggestion(sid)]

    _write_or_print(engine.text, args.output)
    print(f"Stats: {len(ids) - len(missing)} accepted, {len(missing)} not found.", file=sys.stderr)
    if missing:
        sys.exit(1)


def handle_reconcile(args):
    engine = _engine_with(args, args.live)
    try:
        result = engine.reconcile(_load_json_list(args.external))
    except ValidationError as e:
        print(f"Error: invalid suggestion payload: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False))
    else:
        print(result.report())
    if result.errors:
        sys.exit(1)


def _add_engine_options(parser: argparse.ArgumentParser):
    parser.add_argument("--config", type=Path, help="JSON settings file")
    parser.add_argument("--threshold", type=float, help="Override the match confidence threshold")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="marginalia", description="Marginalia: suggestion engine for manuscripts")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines on stderr")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_extract = subparsers.add_parser("extract", help="Extract the manuscript text from a DOCX or text file")
    p_extract.add_argument("input", type=Path, help="Input DOCX or text file")
    p_extract.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")
    p_extract.set_defaults(func=handle_extract)

    p_diff = subparsers.add_parser("diff", help="Turn a revised copy into suggestions")
    p_diff.add_argument("original", type=Path, help="Original manuscript")
    p_diff.add_argument("modified", type=Path, help="Revised manuscript")
    p_diff.add_argument("--json", action="store_true", help="Output suggestions as JSON")
    p_diff.set_defaults(func=handle_diff)

    p_suggest = subparsers.add_parser("suggest", help="Place suggestions and preview them as CriticMarkup")
    p_suggest.add_argument("input", type=Path, help="Manuscript")
    p_suggest.add_argument("suggestions", type=Path, help="JSON file containing suggestions")
    p_suggest.add_argument("-o", "--output", type=Path, help="Output path (default: stdout)")
    p_suggest.add_argument("--json", action="store_true", help="Output live suggestions as JSON")
    p_suggest.add_argument("--no-ids", action="store_true", help="Leave suggestion ids out of the markup")
    _add_engine_options(p_suggest)
    p_suggest.set_defaults(func=handle_suggest)

    p_accept = subparsers.add_parser("accept", help="Accept suggestions and output the resulting text")
    p_accept.add_argument("input", type=Path, help="Manuscript")
    p_accept.add_argument("suggestions", type=Path, help="JSON file containing suggestions")
    group = p_accept.add_mutually_exclusive_group(required=True)
    group.add_argument("--id", action="append", help="Suggestion id to accept (repeatable)")
    group.add_argument("--all", action="store_true", help="Accept every suggestion that is not in conflict")
    p_accept.add_argument("-o", "--output", type=Path, help="Output path (default: stdout)")
    _add_engine_options(p_accept)
    p_accept.set_defaults(func=handle_accept)

    p_reconcile = subparsers.add_parser("reconcile", help="Reconcile an external suggestion list with live ones")
    p_reconcile.add_argument("input", type=Path, help="Manuscript")
    p_reconcile.add_argument("live", type=Path, help="JSON file with the live suggestions")
    p_reconcile.add_argument("external", type=Path, help="JSON file with the external suggestions")
    p_reconcile.add_argument("--json", action="store_true", help="Output the result as JSON")
    _add_engine_options(p_reconcile)
    p_reconcile.set_defaults(func=handle_reconcile)

    args = parser.parse_args(argv)
    configure_logging(json_logs=args.log_json, verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
