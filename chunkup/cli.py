"""Command line interface for chunkup package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .cli_progress import SingleFileUploadProgress, render_configuration_summary


MB = 1024 * 1024


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        env_level = os.getenv("LOG_LEVEL")
        level = getattr(logging, (env_level or "INFO").upper(), logging.INFO)

    from rich.logging import RichHandler

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


def _parse_pairs(values: Optional[List[str]], separator: str, label: str) -> Dict[str, str]:
    """Parse repeated KEY<sep>VALUE options."""
    pairs: Dict[str, str] = {}
    for raw in values or []:
        if separator not in raw:
            raise CLIError(f"invalid {label} {raw!r}, expected KEY{separator}VALUE")
        key, value = raw.split(separator, 1)
        key = key.strip()
        if not key:
            raise CLIError(f"invalid {label} {raw!r}, empty key")
        pairs[key] = _strip_optional_quotes(value.strip())
    return pairs


def _build_headers(token: Optional[str], raw_headers: Optional[List[str]]) -> Dict[str, str]:
    headers = _parse_pairs(raw_headers, ":", "header")
    if token and "Authorization" not in headers:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _mb_to_bytes(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    if value < 0:
        raise CLIError(f"size must be >= 0 MB, got {value}")
    return int(value * MB)


async def _run_upload(
    source: Path,
    api_url: str,
    config,
    headers: Dict[str, str],
    extra: Dict[str, str],
    content_type: Optional[str],
    downlink_mbps: Optional[float],
) -> int:
    from .orchestrator import UploadOrchestrator
    from .services.capacity import EnvCapacityProbe, ObservedThroughputProbe, StaticCapacityProbe

    probe = StaticCapacityProbe(downlink_mbps) if downlink_mbps else ObservedThroughputProbe(EnvCapacityProbe())

    async with UploadOrchestrator(api_url, config=config, capacity_probe=probe, headers=headers) as orchestrator:
        process = orchestrator.start(source, content_type=content_type, extra=extra)
        progress = SingleFileUploadProgress(source.name, source.stat().st_size)
        process.on_progress(progress.on_progress)
        process.on_state_change(progress.on_state_change)
        process.on_part_retry(progress.on_part_retry)

        progress.start()
        result = await process.wait()
        progress.complete(result)
        return 0 if result.success else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunk-up",
        description="Upload a file to S3-compatible storage through backend-issued presigned URLs.",
    )
    parser.add_argument("source", nargs="?", type=Path, help="File to upload")
    parser.add_argument(
        "-u",
        "--api-url",
        default=None,
        help="Backend base URL (default from CHUNKUP_API_URL)",
    )
    parser.add_argument(
        "-t",
        "--token",
        default=None,
        help="Bearer token for backend calls (default from CHUNKUP_API_TOKEN)",
    )
    parser.add_argument(
        "-H",
        "--header",
        action="append",
        default=None,
        help="Extra backend header, 'Name: value' (repeatable)",
    )
    parser.add_argument(
        "-f",
        "--field",
        action="append",
        default=None,
        help="Extra field sent when starting the upload, KEY=VALUE (repeatable, e.g. titleId=abc)",
    )
    parser.add_argument("--content-type", default=None, help="Content type (guessed from name if omitted)")
    parser.add_argument("--part-size", type=float, default=None, help="Multipart part size in MB")
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Largest size in MB sent as a single PUT",
    )
    parser.add_argument("--concurrency", type=int, default=None, help="Force the number of part workers")
    parser.add_argument(
        "--downlink-mbps",
        type=float,
        default=None,
        help="Network capacity hint in Mbps used to size the worker pool",
    )
    parser.add_argument(
        "--max-part-attempts",
        type=int,
        default=None,
        help="Attempts per part before the upload fails (1 disables retries)",
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
        version="chunk-up (from chunkup)",
    )
    return parser


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

    if args.source is None:
        parser.print_help()
        return 0

    source = Path(args.source).expanduser()
    if not source.is_file():
        print(f"ERROR: source is not a file: {source}", file=sys.stderr)
        return 1

    api_url = args.api_url or os.getenv("CHUNKUP_API_URL")
    if not api_url:
        print("ERROR: --api-url or CHUNKUP_API_URL is required", file=sys.stderr)
        return 1

    from .models import UploadConfig

    try:
        headers = _build_headers(args.token or os.getenv("CHUNKUP_API_TOKEN"), args.header)
        extra = _parse_pairs(args.field, "=", "field")
        config = UploadConfig.from_env(
            part_size=_mb_to_bytes(args.part_size),
            single_shot_threshold=_mb_to_bytes(args.threshold),
            concurrency=args.concurrency,
            max_part_attempts=args.max_part_attempts,
        )
    except (CLIError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    render_configuration_summary(
        {
            "Source": str(source),
            "Size": f"{source.stat().st_size / MB:.2f} MB",
            "API": api_url,
            "Fields": ", ".join(f"{k}={v}" for k, v in extra.items()) or "-",
            "Part Size": f"{config.part_size / MB:.0f} MB",
            "Single PUT Up To": f"{config.single_shot_threshold / MB:.0f} MB",
            "Concurrency": config.concurrency or "auto",
            "Downlink Hint": f"{args.downlink_mbps} Mbps" if args.downlink_mbps else "-",
            "Part Attempts": config.max_part_attempts,
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run_upload(
                source=source,
                api_url=api_url,
                config=config,
                headers=headers,
                extra=extra,
                content_type=args.content_type,
                downlink_mbps=args.downlink_mbps,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
