"""Operator tool for enrolling persons and inspecting their credentials.

The tool drives the same lifecycle manager the API uses, so an enrollment
performed here is verified against the broker before anything is stored.

Example usages::

    # Enroll (or re-enroll) a person from a refresh token issued by the broker.
    python -m scripts.enroll_person enroll --person alice --refresh-token "$TOKEN"

    # Read the token from stdin to keep it out of shell history.
    pbpaste | python -m scripts.enroll_person enroll --person alice --stdin

    # Inspect or revoke.
    python -m scripts.enroll_person status --person alice
    python -m scripts.enroll_person revoke --person alice

    # Re-encrypt stored tokens after changing TOKEN_ENCRYPTION_SECRET
    # (the old secret must be listed in TOKEN_ENCRYPTION_PREVIOUS_SECRETS).
    python -m scripts.enroll_person rotate-key
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import Callable

from pydantic import ValidationError

from brokerlink.core.config import get_settings
from brokerlink.core.errors import BrokerlinkError, InvalidRefreshTokenFormat
from brokerlink.core.logging import configure_logging
from brokerlink.dependencies import get_credential_store, get_token_manager

EXIT_OK = 0
EXIT_INVALID_INPUT = 2
EXIT_UPSTREAM_ERROR = 3
EXIT_UNHEALTHY = 4
EXIT_RUNTIME_ERROR = 5


def _enroll(person: str, refresh_token: str) -> int:
    manager = get_token_manager()
    try:
        result = asyncio.run(manager.setup_person_token(person, refresh_token))
    except InvalidRefreshTokenFormat as exc:
        print(f"{exc}. Copy the full token from the broker's API hub.", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except BrokerlinkError as exc:
        print(f"Enrollment failed: {exc}", file=sys.stderr)
        return EXIT_UPSTREAM_ERROR
    print(f"Enrolled {result.person_name} against {result.api_server}")
    return EXIT_OK


def _status(person: str) -> int:
    status = get_token_manager().get_token_status(person)
    print(status.model_dump_json(indent=2))
    return EXIT_OK if status.is_healthy else EXIT_UNHEALTHY


def _revoke(person: str) -> int:
    get_token_manager().delete_person_tokens(person)
    print(f"Deactivated all credentials for {person}")
    return EXIT_OK


def _rotate_key() -> int:
    count = get_credential_store().reencrypt_all(now=datetime.now(timezone.utc))
    print(f"Re-encrypted {count} active credentials")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Enroll persons and manage their stored brokerage credentials."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_person_argument(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument("--person", required=True, help="Person name (unique key).")

    enroll_parser = subparsers.add_parser(
        "enroll", help="Verify a refresh token upstream and store the rotated pair."
    )
    add_person_argument(enroll_parser)
    source = enroll_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--refresh-token", help="Refresh token issued by the broker.")
    source.add_argument(
        "--stdin", action="store_true", help="Read the refresh token from standard input."
    )

    status_parser = subparsers.add_parser("status", help="Show the person's token health.")
    add_person_argument(status_parser)

    revoke_parser = subparsers.add_parser(
        "revoke", help="Deactivate every credential and mark the person inactive."
    )
    add_person_argument(revoke_parser)

    subparsers.add_parser(
        "rotate-key", help="Re-encrypt active credentials under the current secret."
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR
    configure_logging(settings.log_level)

    command: str = args.command
    handlers: dict[str, Callable[[], int]] = {
        "enroll": lambda: _enroll(
            args.person, sys.stdin.read() if args.stdin else args.refresh_token
        ),
        "status": lambda: _status(args.person),
        "revoke": lambda: _revoke(args.person),
        "rotate-key": _rotate_key,
    }
    return handlers[command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
