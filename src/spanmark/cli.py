from __future__ import annotations

import argparse
import json
import logging
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .documents import DocumentLibrary, DocumentLoadError
from .logging_utils import build_uvicorn_log_config, configure_logging
from .migrate import migrate
from .persistence import backup_filename, default_progress_path, export_filename, write_json
from .session import AnnotationSession, SaveFileError
from .taxonomy import TaxonomyError
from .web import WebConfig, create_app

logger = logging.getLogger("spanmark.cli")

COMMANDS = ("serve", "migrate", "export", "status")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("spanmark")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"spanmark {__version__}",
    )


def _add_debug_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose logging.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="spanmark",
        description="Span-level highlighting and labelling of model transcripts.",
        epilog=f"Commands: {', '.join(COMMANDS)}. Run `spanmark <command> -h` for details.",
    )
    _add_version_flag(ap)
    return ap


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="spanmark serve",
        description="Serve the annotation interface for a folder or bundle of documents.",
    )
    _add_version_flag(ap)
    _add_debug_flag(ap)
    ap.add_argument(
        "input_path",
        help="Step3 bundle, sample file, or folder of example_*.json / *wooversight*.json files.",
    )
    ap.add_argument(
        "--progress",
        help=f"Progress file used for autosave (default: {default_progress_path()}).",
    )
    ap.add_argument(
        "--taxonomy",
        help="JSON file describing the highlight categories.",
    )
    ap.add_argument("--host", default="127.0.0.1", help="Bind host (default: %(default)s).")
    ap.add_argument("--port", type=int, default=8000, help="Bind port (default: %(default)s).")
    return ap


def build_migrate_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="spanmark migrate",
        description="Upgrade a save file to the current schema.",
    )
    _add_debug_flag(ap)
    ap.add_argument("save_path", help="Save file to migrate.")
    ap.add_argument(
        "-o",
        "--output",
        help="Where to write the migrated save. Defaults to rewriting SAVE after taking a backup.",
    )
    return ap


def build_export_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="spanmark export",
        description="Write an export artifact from a save file.",
    )
    _add_debug_flag(ap)
    ap.add_argument("save_path", help="Save file to export.")
    ap.add_argument(
        "-o",
        "--output",
        help="Output path (default: spanmark_annotations_<date>.json in the current folder).",
    )
    return ap


def build_status_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="spanmark status",
        description="Summarise completion and highlight counts of a save file.",
    )
    _add_debug_flag(ap)
    ap.add_argument("save_path", help="Save file to inspect.")
    ap.add_argument(
        "input_path",
        nargs="?",
        help="Optional input documents; unannotated ones are listed too.",
    )
    return ap


def _read_save(path: Path) -> dict[str, object]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise SystemExit(f"Save file not found: {path}") from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SystemExit(f"Error loading save file {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise SystemExit(f"Invalid save file format: {path}")
    return raw


def _session_from_save(path: Path, file_names: list[str] | None = None) -> AnnotationSession:
    session = AnnotationSession(file_names=file_names or ())
    try:
        session.load_blob(_read_save(path))
    except SaveFileError as exc:
        raise SystemExit(f"{path}: {exc}") from exc
    return session


def _run_serve(args: argparse.Namespace) -> int:
    input_path = Path(args.input_path).expanduser().resolve()
    config = WebConfig(
        input_path=input_path,
        progress_path=Path(args.progress).expanduser() if args.progress else None,
        taxonomy_path=Path(args.taxonomy).expanduser() if args.taxonomy else None,
        host=args.host,
        port=args.port,
    )
    try:
        app = create_app(config)
    except (DocumentLoadError, TaxonomyError) as exc:
        raise SystemExit(str(exc)) from exc

    console = Console()
    console.print(f"Serving {len(app.state.library)} documents from {input_path}")
    console.print(f"Progress file: {app.state.session.progress.path}")
    console.print(f"Web URL: http://{args.host}:{args.port}/")
    console.print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=args.debug),
    )
    return 0


def _run_migrate(args: argparse.Namespace) -> int:
    save_path = Path(args.save_path).expanduser()
    bag = _read_save(save_path)
    if "annotations" not in bag:
        raise SystemExit(f"{save_path}: missing annotations.")
    if not isinstance(bag["annotations"], dict):
        raise SystemExit(f"{save_path}: annotations must be an object.")
    before = bag.get("schema_version", 1)
    if args.output:
        output = Path(args.output).expanduser()
    else:
        output = save_path
        backup = save_path.with_name(backup_filename())
        write_json(backup, bag)
        logger.info("Backed up %s to %s", save_path, backup)
    migrate(bag)
    write_json(output, bag)
    Console().print(
        f"Migrated {save_path} (schema {before} -> {bag['schema_version']}) to {output}"
    )
    return 0


def _run_export(args: argparse.Namespace) -> int:
    save_path = Path(args.save_path).expanduser()
    session = _session_from_save(save_path)
    payload = session.export_payload()
    if not session.has_annotations():
        logger.warning("No annotations to export in %s", save_path)
    output = Path(args.output).expanduser() if args.output else Path.cwd() / export_filename()
    write_json(output, payload)
    Console().print(
        f"Exported {payload['annotated_files_count']} annotated files to {output}"
    )
    return 0


def _run_status(args: argparse.Namespace) -> int:
    save_path = Path(args.save_path).expanduser()
    file_names: list[str] | None = None
    if args.input_path:
        try:
            file_names = DocumentLibrary.from_path(Path(args.input_path).expanduser()).ids()
        except DocumentLoadError as exc:
            raise SystemExit(str(exc)) from exc
    session = _session_from_save(save_path, file_names)
    document_ids = list(session.file_names)
    for document_id in [*session.labels, *session.store.documents()]:
        if document_id not in document_ids:
            document_ids.append(document_id)

    table = Table(title=f"spanmark status: {save_path.name}")
    table.add_column("Document")
    table.add_column("CoT")
    table.add_column("Action")
    table.add_column("Done", justify="center")
    table.add_column("CoT spans", justify="right")
    table.add_column("Action spans", justify="right")
    completed = 0
    for document_id in document_ids:
        labels = session.labels.get(document_id)
        done = session.is_completed(document_id)
        completed += done
        table.add_row(
            document_id,
            (labels.cot_label if labels else None) or "-",
            (labels.action_label if labels else None) or "-",
            "[green]yes[/green]" if done else "[red]no[/red]",
            str(len(session.store.list_document(document_id, "cot"))),
            str(len(session.store.list_document(document_id, "action"))),
        )
    console = Console()
    console.print(table)
    console.print(f"{completed}/{len(document_ids)} documents complete")
    return 0


_RUNNERS = {
    "serve": (build_serve_parser, _run_serve),
    "migrate": (build_migrate_parser, _run_migrate),
    "export": (build_export_parser, _run_export),
    "status": (build_status_parser, _run_status),
}


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] in _RUNNERS:
        build, run = _RUNNERS[argv[0]]
        args = build().parse_args(argv[1:])
        if argv[0] != "serve":
            configure_logging(debug=args.debug)
        elif args.debug:
            logging.getLogger("spanmark").setLevel(logging.DEBUG)
        return run(args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.error(f"unknown command: {argv[0]}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
