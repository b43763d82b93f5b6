"""Command line interface for drive_import package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from contextlib import AsyncExitStack
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence, Tuple

from rich.logging import RichHandler

from . import __version__
from .cli_report import (
    FORMATTERS,
    PhaseProgressDisplay,
    collect_status,
    console,
    format_duplicates_json,
    render_configuration_summary,
    render_duplicates,
    render_workflow,
)
from .errors import ImporterError, ValidationError
from .models import (
    DEFAULT_DATABASE,
    DEFAULT_REQUESTS_PER_MINUTE,
    DiscoverOptions,
    DuplicateStrategy,
    ImportConfig,
    UploadOptions,
    VerifyOptions,
)
from .orchestrator import PHASES, WorkflowSequencer
from .services import GoogleDriveClient, HumataClient, RateLimiter, RecordStore
from .services.humata_client import DEFAULT_API_URL

DATABASE_ENV = "DRIVE_IMPORT_DATABASE"


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug, --log-level or LOG_LEVEL is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    env_level = os.getenv("LOG_LEVEL")
    if silent or (not debug and not log_level and not env_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = getattr(logging, env_level.upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _resolve_database(database: Optional[Path]) -> Path:
    if database is not None:
        return Path(database).expanduser()
    env_database = os.getenv(DATABASE_ENV)
    return Path(env_database).expanduser() if env_database else DEFAULT_DATABASE


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ValidationError(f"{name} environment variable is not set")
    return value


def _build_config(args: argparse.Namespace) -> ImportConfig:
    """Turn parsed arguments into an ImportConfig; absent options keep their defaults."""
    discover = DiscoverOptions()
    upload = UploadOptions()
    verify = VerifyOptions()

    def given(name: str) -> bool:
        return getattr(args, name, None) is not None

    if given("url"):
        discover = replace(discover, source_url=args.url)
    if given("recursive"):
        discover = replace(discover, recursive=args.recursive)
    if given("max_files"):
        discover = replace(discover, max_files=args.max_files)
    if given("discover_timeout"):
        discover = replace(discover, timeout=args.discover_timeout)
    if given("url_domain"):
        discover = replace(discover, url_domain=args.url_domain)

    if given("folder_id"):
        upload = replace(upload, folder_id=args.folder_id)
    if given("workers"):
        upload = replace(upload, workers=args.workers)
    if given("max_retries"):
        upload = replace(upload, max_retries=args.max_retries)
    if given("retry_delay"):
        upload = replace(upload, retry_delay=args.retry_delay)
    if given("stale_claim_after"):
        upload = replace(upload, stale_claim_after=args.stale_claim_after)
    if getattr(args, "skip_retries", False):
        upload = replace(upload, retry_failed=False)

    if given("poll_interval"):
        verify = replace(verify, poll_interval=args.poll_interval)
    if given("verify_timeout"):
        verify = replace(verify, timeout=args.verify_timeout)
    if given("batch_size"):
        verify = replace(verify, batch_size=args.batch_size)

    config = ImportConfig(
        database_path=_resolve_database(args.database),
        discover=discover,
        upload=upload,
        verify=verify,
        requests_per_minute=args.requests_per_minute,
    )
    if given("duplicate_strategy"):
        config = config.with_strategy(DuplicateStrategy(args.duplicate_strategy))
    return config


async def _run_phases(config: ImportConfig, phases: Tuple[str, ...], show_duplicates: bool) -> int:
    config.validate(phases)

    lister = None
    if "discover" in phases:
        lister = GoogleDriveClient(_require_env("GOOGLE_ACCESS_TOKEN"))

    importer = None
    if "upload" in phases or "verify" in phases:
        importer = HumataClient(
            _require_env("HUMATA_API_KEY"),
            base_url=os.getenv("HUMATA_API_URL") or DEFAULT_API_URL,
            rate_limiter=RateLimiter(config.requests_per_minute),
        )

    async with AsyncExitStack() as stack:
        store = await stack.enter_async_context(RecordStore(config.database_path))
        if lister is not None:
            await stack.enter_async_context(lister)
        if importer is not None:
            await stack.enter_async_context(importer)

        sequencer = WorkflowSequencer(store, lister, importer, config)
        PhaseProgressDisplay().attach(sequencer.events)
        result = await sequencer.run(phases)

        render_workflow(result)
        if show_duplicates:
            render_duplicates(await store.duplicate_groups())

    return 0 if result.success else 1


async def _run_status(
    database: Path,
    output_format: str,
    status_filter: Optional[str],
    failed_only: bool,
    output: Optional[Path],
) -> int:
    async with RecordStore(database) as store:
        report = await collect_status(store, status_filter=status_filter, failed_only=failed_only)

    rendered = FORMATTERS[output_format](report)
    if output is not None:
        try:
            output.write_text(rendered, encoding="utf-8")
        except OSError as exc:
            raise CLIError(f"could not write report {output}: {exc}") from exc
        console.print(f"Report written to {output}")
    else:
        sys.stdout.write(rendered)
    return 0


async def _run_duplicates(database: Path, output_format: str) -> int:
    async with RecordStore(database) as store:
        groups = await store.duplicate_groups()

    if output_format == "json":
        sys.stdout.write(format_duplicates_json(groups) + "\n")
    else:
        render_duplicates(groups)
    return 0


def _add_discover_options(parser: argparse.ArgumentParser, timeout_flag: str) -> None:
    parser.add_argument("url", help="Google Drive folder URL")
    parser.add_argument(
        "--no-recursive",
        dest="recursive",
        action="store_false",
        default=None,
        help="Do not crawl subfolders",
    )
    parser.add_argument("--max-files", type=int, default=None, help="Limit number of files to discover")
    parser.add_argument(
        timeout_flag,
        dest="discover_timeout",
        type=float,
        default=None,
        help="Discovery timeout in seconds (default: 300)",
    )
    parser.add_argument(
        "--url-domain",
        default=None,
        help="Build DOMAIN/FILE_ID/FILE_NAME import URLs instead of Drive download links",
    )
    parser.add_argument(
        "--show-duplicates",
        action="store_true",
        help="Print duplicate groups after the run",
    )


def _add_upload_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--folder-id", required=True, help="Humata folder ID")
    parser.add_argument("--workers", type=int, default=None, help="Parallel uploads (default: 4, max: 16)")
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts per file (default: 3)")
    parser.add_argument(
        "--retry-delay",
        type=float,
        default=None,
        help="Base seconds between retries, multiplied by the attempt number (default: 5)",
    )
    parser.add_argument(
        "--skip-retries",
        action="store_true",
        help="Do not re-queue uploads that failed in a previous run",
    )
    parser.add_argument(
        "--reclaim-after",
        dest="stale_claim_after",
        type=float,
        default=None,
        help="Seconds before an upload left in flight by another run is taken over (default: 900)",
    )


def _add_verify_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--poll-interval", type=float, default=None, help="Seconds between status checks (default: 10)"
    )
    parser.add_argument(
        "--timeout",
        dest="verify_timeout",
        type=float,
        default=None,
        help="Verification timeout in seconds (default: 1800)",
    )
    parser.add_argument(
        "--batch-size", type=int, default=None, help="Status checks per batch (default: 10)"
    )


def _add_strategy_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--duplicate-strategy",
        choices=[s.value for s in DuplicateStrategy],
        default=None,
        help="How to handle duplicates: skip, upload or replace (default: skip)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drive-import",
        description="Import Google Drive folders into Humata: discover, upload, verify.",
    )
    parser.add_argument(
        "--database",
        type=Path,
        default=None,
        help=f"SQLite session database (default from {DATABASE_ENV} or {DEFAULT_DATABASE})",
    )
    parser.add_argument(
        "--requests-per-minute",
        type=int,
        default=DEFAULT_REQUESTS_PER_MINUTE,
        help=f"Humata API rate limit (default: {DEFAULT_REQUESTS_PER_MINUTE})",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"drive-import {__version__}",
    )

    commands = parser.add_subparsers(dest="command")

    discover = commands.add_parser("discover", help="List a Drive folder into the session database")
    _add_discover_options(discover, "--timeout")
    _add_strategy_option(discover)

    upload = commands.add_parser("upload", help="Upload pending files to Humata")
    _add_upload_options(upload)
    _add_strategy_option(upload)

    verify = commands.add_parser("verify", help="Poll Humata until uploaded files are processed")
    _add_verify_options(verify)

    run = commands.add_parser("run", help="Discover, upload and verify in one go")
    _add_discover_options(run, "--discover-timeout")
    _add_upload_options(run)
    _add_verify_options(run)
    _add_strategy_option(run)

    status = commands.add_parser("status", help="Report the state of the import session")
    status.add_argument("--format", dest="output_format", choices=sorted(FORMATTERS), default="text")
    status.add_argument("--filter", dest="status_filter", default=None, help="Only files with this status")
    status.add_argument("--failed-only", action="store_true", help="Only failed uploads and processing")
    status.add_argument("--output", type=Path, default=None, help="Write the report to this file")

    duplicates = commands.add_parser("duplicates", help="List groups of duplicate files")
    duplicates.add_argument("--format", dest="output_format", choices=["text", "json"], default="text")

    return parser


def _command_phases(command: str) -> Tuple[str, ...]:
    return PHASES if command == "run" else (command,)


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.command is None:
        parser.print_help()
        return 0

    database = _resolve_database(args.database)
    try:
        if args.command == "status":
            coro = _run_status(
                database,
                args.output_format,
                args.status_filter,
                args.failed_only,
                args.output,
            )
        elif args.command == "duplicates":
            coro = _run_duplicates(database, args.output_format)
        else:
            config = _build_config(args)
            render_configuration_summary(
                {
                    "Command": args.command,
                    "Database": str(config.database_path),
                    "Source": config.discover.source_url or "-",
                    "Folder ID": config.upload.folder_id or "-",
                    "Workers": config.upload.effective_workers,
                    "Max Attempts": config.upload.max_retries,
                    "Duplicates": config.upload.duplicate_strategy.value,
                    "Rate Limit": f"{config.requests_per_minute}/min",
                    "Humata API": os.getenv("HUMATA_API_URL") or DEFAULT_API_URL,
                    "Env File": str(used_env_file) if used_env_file else "-",
                    "Logging": effective_log_mode,
                }
            )
            coro = _run_phases(
                config,
                _command_phases(args.command),
                show_duplicates=getattr(args, "show_duplicates", False),
            )
        return asyncio.run(coro)
    except (CLIError, ImporterError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled. Progress is saved; re-run the same command to resume.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
