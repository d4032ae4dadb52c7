"""Entry point: python -m manuscript <command> ...

- new <dir> <title> [author]                  Create an empty project
- check <dir>                                 Load a project and report problems
- import <dir> <file>...                      Import files into the draft folder
- from-scrivener <bundle.scriv> <dir>         Convert a Scrivener project
- snapshot <dir> [auto|manual|milestone] [description]
- history <dir>                               List snapshots and writing stats
- synopsis <dir> <node-id>                    Generate a synopsis (needs the api extra)
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

from manuscript.config import ManuscriptConfig, load_config
from manuscript.errors import ConfigError, ManuscriptError

logger = logging.getLogger("manuscript")

USAGE = """\
Usage: python -m manuscript <command> [args]
  new <dir> <title> [author]                Create an empty project
  check <dir>                               Load a project and report problems
  import <dir> <file>...                    Import files into the draft folder
  from-scrivener <bundle.scriv> <dir>       Convert a Scrivener project
  snapshot <dir> [auto|manual|milestone] [description]
  history <dir>                             List snapshots and writing stats
  synopsis <dir> <node-id>                  Generate a synopsis for a document"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _import_options(config: ManuscriptConfig):
    from manuscript.importers import ImportOptions

    return ImportOptions(
        preserve_formatting=config.imports.preserve_formatting,
        import_research=config.imports.import_research,
        import_trash=config.imports.import_trash,
    )


def _snapshot_engine(root: Path, config: ManuscriptConfig):
    from manuscript.format import ProjectPackage

    return ProjectPackage(root).snapshot_engine(
        storage=config.snapshots.storage,
        interval_seconds=config.snapshots.interval_seconds,
    )


# ── Commands ─────────────────────────────────────────────────


def _cmd_new(config: ManuscriptConfig, args: list[str]) -> int:
    from manuscript.format import ProjectPackage

    if len(args) < 2:
        print("Usage: python -m manuscript new <dir> <title> [author]")
        return 1
    author = args[2] if len(args) > 2 else config.author
    _, project = ProjectPackage.create(Path(args[0]), args[1], author)
    print(f"Created '{project.title}' at {args[0]}")
    return 0


def _cmd_check(config: ManuscriptConfig, args: list[str]) -> int:
    from manuscript.format import ProjectPackage

    if len(args) != 1:
        print("Usage: python -m manuscript check <dir>")
        return 1
    result = ProjectPackage(Path(args[0])).load()
    project = result.project
    documents = sum(1 for _ in project.tree.documents())
    print(f"{project.title}: {documents} documents, {project.word_count} words")
    for advisory in result.advisories:
        print(f"  note: {advisory}")
    for error in result.errors:
        print(f"  error: {error}")
    return 0 if result.ok else 2


def _cmd_import(config: ManuscriptConfig, args: list[str]) -> int:
    from manuscript.format import ProjectPackage
    from manuscript.importers import import_files

    if len(args) < 2:
        print("Usage: python -m manuscript import <dir> <file>...")
        return 1
    package = ProjectPackage(Path(args[0]))
    project = package.load().project
    paths = [Path(p) for p in args[1:]]
    results = asyncio.run(import_files(paths, _import_options(config)))

    failed = 0
    for path, result in zip(paths, results):
        if isinstance(result, Exception):
            print(f"  failed: {path.name}: {result}")
            failed += 1
            continue
        project.tree.graft(result.fragment, project.draft.id)
        print(f"  imported: {path.name} -> '{result.title}'")
        for warning in result.warnings:
            print(f"    warning: {warning}")
    if failed < len(paths):
        package.save(project)
    return 0 if failed == 0 else 2


def _cmd_from_scrivener(config: ManuscriptConfig, args: list[str]) -> int:
    from manuscript.format import ProjectPackage, is_project
    from manuscript.importers import ScrivenerImporter

    if len(args) != 2:
        print("Usage: python -m manuscript from-scrivener <bundle.scriv> <dir>")
        return 1
    target = Path(args[1])
    if is_project(target):
        print(f"A project already exists at {target}")
        return 1
    result = ScrivenerImporter().import_project(Path(args[0]), _import_options(config))
    ProjectPackage(target).save(result.project)
    print(
        f"Converted '{result.project.title}': {result.imported_documents} documents, "
        f"{result.imported_folders} folders, {result.skipped_items} skipped"
    )
    for warning in result.warnings:
        print(f"  warning: {warning}")
    return 0


def _cmd_snapshot(config: ManuscriptConfig, args: list[str]) -> int:
    from manuscript.snapshots import SnapshotKind

    if not args:
        print("Usage: python -m manuscript snapshot <dir> [auto|manual|milestone] [description]")
        return 1
    try:
        kind = SnapshotKind(args[1]) if len(args) > 1 else SnapshotKind.MANUAL
    except ValueError:
        print(f"Unknown snapshot kind: {args[1]} (auto, manual, milestone)")
        return 1
    engine = _snapshot_engine(Path(args[0]), config)
    description = " ".join(args[2:]) or None
    if kind is SnapshotKind.AUTO:
        snapshot = engine.auto_snapshot()
        if snapshot is None:
            print("No snapshot due yet")
            return 0
    else:
        snapshot = engine.compute_snapshot(kind, description)
    print(f"Snapshot v{snapshot.version} ({snapshot.kind.value}): {len(snapshot.changes)} change(s)")
    for change in snapshot.changes:
        print(f"  {change.action.value:<8} {change.path}")
    return 0


def _cmd_history(config: ManuscriptConfig, args: list[str]) -> int:
    from manuscript.format import ProjectPackage

    if len(args) != 1:
        print("Usage: python -m manuscript history <dir>")
        return 1
    root = Path(args[0])
    for snapshot in _snapshot_engine(root, config).history():
        label = f" - {snapshot.description}" if snapshot.description else ""
        print(
            f"v{snapshot.version:<4} {snapshot.name}  {snapshot.kind.value:<9} "
            f"{snapshot.word_count:>7} words{label}"
        )
    history = ProjectPackage(root).load().project.writing_history
    if history.entries:
        print(
            f"Writing: {history.total_words} words over {history.days_written} days, "
            f"current streak {history.current_streak(date.today())}, "
            f"longest {history.longest_streak}"
        )
    return 0


def _cmd_synopsis(config: ManuscriptConfig, args: list[str]) -> int:
    from manuscript.format import ProjectPackage
    from manuscript.generation import AnthropicGenerator, generate_synopsis

    if len(args) != 2:
        print("Usage: python -m manuscript synopsis <dir> <node-id>")
        return 1
    package = ProjectPackage(Path(args[0]))
    project = package.load().project
    generator = AnthropicGenerator(
        model=config.generation.model,
        max_tokens=config.generation.max_tokens,
        timeout=config.generation.timeout,
    )
    print(generate_synopsis(project, args[1], generator))
    package.save(project)
    return 0


COMMANDS = {
    "new": _cmd_new,
    "check": _cmd_check,
    "import": _cmd_import,
    "from-scrivener": _cmd_from_scrivener,
    "snapshot": _cmd_snapshot,
    "history": _cmd_history,
    "synopsis": _cmd_synopsis,
}


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    handler = COMMANDS.get(cmd)
    if handler is None:
        print(USAGE)
        sys.exit(1)

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    _setup_logging(config.log_level)
    try:
        code = handler(config, sys.argv[2:])
    except ManuscriptError as e:
        logger.error("%s failed: %s", cmd, e)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
