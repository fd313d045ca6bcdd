"""Verify that the sync service's environment configuration is complete.

Loads ``AppSettings`` from an env file and reports any credential the
service cannot run without: the token encryption secret, the scheduler
secret and both platforms' OAuth client settings. The ``record`` and
``verify`` commands additionally pin the file's SHA256 so later edits
are noticed before the service restarts.

Example usages::

    python -m scripts.check_env check --env-file .env

    python -m scripts.check_env record --env-file /srv/creator-sync/.env \
        --hash-file /srv/creator-sync/.env.sha256

    python -m scripts.check_env verify --env-file /srv/creator-sync/.env \
        --hash-file /srv/creator-sync/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from app.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5

REQUIRED_SETTINGS: dict[str, Callable[[AppSettings], Any]] = {
    "TOKEN_ENCRYPTION_SECRET": lambda s: s.security.token_encryption_secret,
    "CRON_SECRET": lambda s: s.security.cron_secret,
    "YOUTUBE_CLIENT_ID": lambda s: s.youtube.client_id,
    "YOUTUBE_CLIENT_SECRET": lambda s: s.youtube.client_secret,
    "YOUTUBE_OAUTH_REDIRECT_URI": lambda s: s.youtube.redirect_uri,
    "INSTAGRAM_APP_ID": lambda s: s.instagram.app_id,
    "INSTAGRAM_APP_SECRET": lambda s: s.instagram.app_secret,
    "INSTAGRAM_REDIRECT_URI": lambda s: s.instagram.redirect_uri,
}


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings(_env_file=env_file)  # type: ignore[call-arg]


def missing_settings(settings: AppSettings) -> list[str]:
    """Names of required variables that resolved to an empty value."""
    return [name for name, read in REQUIRED_SETTINGS.items() if not read(settings)]


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    """Compare the current checksum to the recorded baseline."""
    if not hash_file.exists():
        print(
            f"Checksum baseline {hash_file} not found; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch:\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check sync service settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for command, help_text, needs_hash in (
        ("check", "Validate settings only.", False),
        ("record", "Validate settings and store the checksum baseline.", True),
        ("verify", "Validate settings and compare against the baseline.", True),
    ):
        subparser = subparsers.add_parser(command, help=help_text)
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env).",
        )
        if needs_hash:
            subparser.add_argument(
                "--hash-file",
                required=True,
                type=Path,
                help="Checksum baseline location.",
            )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            f"Settings validation failed:\n{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    missing = missing_settings(settings)
    if missing:
        print("Missing required settings: " + ", ".join(missing), file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    if not settings.youtube.api_key:
        print("YOUTUBE_API_KEY is not set; the keyless YouTube sweep is disabled.")

    if args.command == "record":
        return _record_checksum(env_file, args.hash_file)
    if args.command == "verify":
        return _verify_checksum(env_file, args.hash_file)
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
