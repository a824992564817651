"""Pre-flight check of the service configuration.

``check`` loads the given ``.env`` file into ``AppSettings`` and lists every
missing or malformed entry by its environment variable name, for example an
absent ``NOTION_CLIENT_ID`` or a ``TOKEN_ENCRYPTION_KEY`` that does not decode
to 32 bytes. It then applies deployment rules the settings model cannot
express on its own: production needs a shared Redis cache and HTTPS callback
and application URLs, and the SQLite directory must be writable.

``generate-key`` prints a fresh encryption key for a new deployment.

Example usages::

    python -m scripts.check_env check --env-file /opt/notion-link/.env

    python -m scripts.check_env generate-key
"""

from __future__ import annotations

import argparse
import base64
import os
import sys
from pathlib import Path
from typing import List

from pydantic import ValidationError

from notion_link.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_DEPLOYMENT_ERROR = 3
EXIT_RUNTIME_ERROR = 5


def generate_key() -> str:
    """Return a base64-encoded random 32-byte AES-256 key."""
    return base64.b64encode(os.urandom(32)).decode("ascii")


def _load_settings(env_file: Path) -> AppSettings:
    if not env_file.exists():
        raise FileNotFoundError(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool."
        )
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def describe_validation_errors(exc: ValidationError) -> List[str]:
    """One ``VARIABLE: message`` line per invalid setting."""
    lines = []
    for error in exc.errors():
        name = ".".join(str(part) for part in error["loc"]) or exc.title
        lines.append(f"{name}: {error['msg']}")
    return lines


def deployment_problems(settings: AppSettings) -> List[str]:
    problems: List[str] = []

    database_dir = Path(settings.storage.database_path).resolve().parent
    probe_dir = database_dir
    while not probe_dir.exists():
        probe_dir = probe_dir.parent
    if not os.access(probe_dir, os.W_OK):
        problems.append(f"DATABASE_PATH: directory {database_dir} is not writable.")

    if not settings.notion.token_endpoint and not settings.notion.resource_url:
        problems.append(
            "NOTION_TOKEN_ENDPOINT: no static endpoint and no NOTION_RESOURCE_URL "
            "to discover one from."
        )

    if settings.is_production:
        if not settings.storage.redis_url:
            problems.append(
                "REDIS_URL: required in production so refresh locks coordinate "
                "across processes."
            )
        if settings.notion.redirect_uri.scheme != "https":
            problems.append("NOTION_REDIRECT_URI: must use https in production.")
        if settings.security.app_url.scheme != "https":
            problems.append("APP_URL: must use https in production.")

    return problems


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate notion-link settings before the service starts."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser(
        "check",
        help="Load settings from an env file and report every problem found.",
    )
    check_parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the repo root).",
    )

    subparsers.add_parser(
        "generate-key",
        help="Print a new base64 TOKEN_ENCRYPTION_KEY.",
    )

    return parser


def _check(env_file: Path) -> int:
    try:
        settings = _load_settings(env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print("Settings validation failed:", file=sys.stderr)
        for line in describe_validation_errors(exc):
            print(f"  - {line}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    problems = deployment_problems(settings)
    if problems:
        print(
            f"Settings are valid but not deployable as '{settings.environment}':",
            file=sys.stderr,
        )
        for line in problems:
            print(f"  - {line}", file=sys.stderr)
        return EXIT_DEPLOYMENT_ERROR

    print(f"Settings OK for environment '{settings.environment}'.")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "generate-key":
        print(generate_key())
        return EXIT_OK
    return _check(args.env_file)


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
