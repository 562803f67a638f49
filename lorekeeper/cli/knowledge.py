"""Standalone CLI for managing a LoreKeeper knowledge base.

Usage::

    python -m lorekeeper.cli ingest --file ./handbook.pdf \\
        --title "Employee Handbook" --tenant acme

    python -m lorekeeper.cli ingest --url https://example.com/post \\
        --title "Launch post" --tenant acme

    python -m lorekeeper.cli delete --source-id <uuid> --tenant acme

    python -m lorekeeper.cli sources --tenant acme --include-deleted

    python -m lorekeeper.cli --config ./config/prod.yaml sources --tenant acme

Exit code is 0 on success and 1 when the command fails; the error message
goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from lorekeeper.config.settings import Settings
from lorekeeper.models.knowledge import DEFAULT_STALE_AFTER_DAYS
from lorekeeper.utils.errors import LoreKeeperError, ValidationError

_SUFFIX_KINDS = {
    ".pdf": "pdf",
    ".md": "markdown",
    ".markdown": "markdown",
    ".html": "url",
    ".htm": "url",
}


def _infer_kind(path: Path) -> str:
    """Map a file suffix to a source kind, defaulting to plain text."""
    return _SUFFIX_KINDS.get(path.suffix.lower(), "text")


def _read_payload(args: argparse.Namespace) -> tuple[bytes, str]:
    """Return the raw bytes to ingest and the source kind for them.

    ``--url`` sends the URL itself as the payload; the parser fetches it.
    """
    if args.url:
        return args.url.encode("utf-8"), args.kind or "url"

    path = Path(args.file)
    if not path.is_file():
        raise ValidationError(message=f"File not found: {path}")
    return path.read_bytes(), args.kind or _infer_kind(path)


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    """Ingest one file or URL for a tenant."""
    from lorekeeper.models.knowledge import IngestionRequest

    buffer, kind = _read_payload(args)
    print(f"Ingesting {kind}: {args.title} (tenant: {args.tenant})")

    result = await service.ingest(
        IngestionRequest(
            title=args.title,
            tenant_id=args.tenant,
            source_kind=kind,
            buffer=buffer,
        )
    )

    print("\nIngestion complete:")
    print(f"  Source ID:      {result.source_id}")
    print(f"  Status:         {result.status.value}")
    print(f"  Fragments:      {result.fragment_count}")
    print(f"  Content size:   {result.content_size} bytes")
    print(f"  Time:           {result.ingestion_time:.2f}s")
    return 0


async def _handle_delete(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    """Soft-delete a source, its fragments and its vectors."""
    from lorekeeper.models.knowledge import DeletionRequest

    result = await service.delete(
        DeletionRequest(source_id=args.source_id, tenant_id=args.tenant)
    )

    print(f"Deleted source {result.source_id}")
    print(f"  Fragments removed: {result.fragments_deleted}")
    if not result.vectors_deleted:
        print("  Warning: vectors could not be removed and may be orphaned.")
    return 0


async def _handle_sources(
    args: argparse.Namespace,
    repository,  # noqa: ANN001
    stale_after_days: int = DEFAULT_STALE_AFTER_DAYS,
) -> int:
    """List a tenant's sources, newest first, flagging ones not updated recently."""
    sources = await repository.find_sources_by_tenant(
        args.tenant, include_deleted=args.include_deleted
    )
    if not sources:
        print(f"No sources for tenant '{args.tenant}'.")
        return 0

    print(f"Sources for tenant '{args.tenant}'")
    print("=" * 60)
    stale = 0
    for source in sources:
        marker = ""
        if not source.is_deleted and source.is_stale(stale_after_days):
            marker = "  (stale)"
            stale += 1
        print(f"  {source.id}  {source.status.value:<10}  {source.title}{marker}")
    print(f"\n  Total: {len(sources)}")
    if stale:
        print(f"  Stale (not updated in {stale_after_days} days): {stale}")
    return 0


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    """Build the services a command needs, then dispatch to its handler."""
    from lorekeeper.main import build_services

    services: dict[str, Any] = await build_services(
        app_settings,
        require_embeddings=args.command == "ingest",
        config_path=args.config,
    )
    try:
        if args.command == "ingest":
            return await _handle_ingest(args, services["ingestion_service"])
        if args.command == "delete":
            return await _handle_delete(args, services["deletion_service"])
        return await _handle_sources(
            args,
            services["repository"],
            stale_after_days=services["settings"].stale_after_days,
        )
    finally:
        await services["parser"].close()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m lorekeeper.cli",
        description="Manage a LoreKeeper knowledge base.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="YAML config file (default: config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Knowledge commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a file or URL")
    target = ingest_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--file", help="Path to a PDF, Markdown, HTML or text file")
    target.add_argument("--url", help="Web page to fetch and ingest")
    ingest_parser.add_argument("--title", required=True, help="Source title")
    ingest_parser.add_argument("--tenant", required=True, help="Owning tenant id")
    ingest_parser.add_argument(
        "--kind",
        choices=["pdf", "markdown", "url", "text"],
        default=None,
        help="Source kind (default: inferred from the file suffix)",
    )

    # -- delete --
    delete_parser = subparsers.add_parser("delete", help="Delete a source")
    delete_parser.add_argument("--source-id", required=True, dest="source_id")
    delete_parser.add_argument("--tenant", required=True, help="Owning tenant id")

    # -- sources --
    sources_parser = subparsers.add_parser("sources", help="List a tenant's sources")
    sources_parser.add_argument("--tenant", required=True, help="Tenant id")
    sources_parser.add_argument(
        "--include-deleted",
        action="store_true",
        dest="include_deleted",
        help="Also list soft-deleted sources",
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, run the command, exit with its code."""
    from lorekeeper.utils.logging import configure_logging

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(app_settings.log_level)

    try:
        exit_code = asyncio.run(_run(args, app_settings))
    except LoreKeeperError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
