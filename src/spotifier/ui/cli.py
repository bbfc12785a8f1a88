from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from spotifier.app import (
    add_email,
    confirm_email,
    create_user,
    email_status,
    get_library,
    remove_email,
    run_release_scan,
    search_artists,
    sync_user_library,
)
from spotifier.config import ConfigurationError, configure_logging
from spotifier.domain.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Track new releases from saved Spotify artists")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Import a user's saved Spotify library")
    sync.add_argument(
        "--user-id",
        type=str,
        required=True,
        help="Existing user id whose library should be imported",
    )

    scan = subparsers.add_parser("scan", help="Check every tracked artist for new releases")
    scan.add_argument(
        "--no-email",
        action="store_true",
        help="Flag new releases without sending notification mail",
    )

    search = subparsers.add_parser("search", help="Find Spotify artists by name prefix")
    search.add_argument("query", type=str, help="Beginning of the artist name")

    user = subparsers.add_parser("user", help="User management commands")
    user_sub = user.add_subparsers(dest="user_command", required=True)
    user_create = user_sub.add_parser("create", help="Create a user (or return the existing one)")
    user_create.add_argument(
        "--display-name",
        type=str,
        required=True,
        help="Display name for the user",
    )
    user_create.add_argument(
        "--refresh-token",
        type=str,
        help="Spotify refresh token obtained through the authorization-code flow",
    )
    user_email = user_sub.add_parser("email", help="Attach an email address to a user")
    user_email.add_argument("--user-id", type=str, required=True, help="Existing user id")
    user_email.add_argument("--address", type=str, required=True, help="Email address")
    user_confirm = user_sub.add_parser("confirm-email", help="Confirm a user's email address")
    user_confirm.add_argument("--user-id", type=str, required=True, help="Existing user id")
    user_confirm.add_argument("--code", type=str, required=True, help="Confirmation code")
    user_remove = user_sub.add_parser("remove-email", help="Remove a user's email address")
    user_remove.add_argument("--user-id", type=str, required=True, help="Existing user id")
    user_status = user_sub.add_parser("email-status", help="Show a user's email address")
    user_status.add_argument("--user-id", type=str, required=True, help="Existing user id")
    user_library = user_sub.add_parser("library", help="List the artists a user tracks")
    user_library.add_argument("--user-id", type=str, required=True, help="Existing user id")

    return parser.parse_args(list(argv))


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _run_user_command(args: argparse.Namespace) -> None:
    if args.user_command == "create":
        user = create_user(display_name=args.display_name, refresh_token=args.refresh_token)
        log.info("User %s: %s", user.display_name, user.id)
    elif args.user_command == "email":
        code = add_email(_parse_uuid(args.user_id), args.address)
        log.info("Email added; confirmation code: %s", code)
    elif args.user_command == "confirm-email":
        if not confirm_email(_parse_uuid(args.user_id), args.code):
            raise ValidationError("Confirmation code does not match")
        log.info("Email confirmed")
    elif args.user_command == "remove-email":
        remove_email(_parse_uuid(args.user_id))
        log.info("Email removed")
    elif args.user_command == "email-status":
        status = email_status(_parse_uuid(args.user_id))
        log.info("Email: %s (confirmed=%s)", status.address or "-", status.confirmed)
    elif args.user_command == "library":
        for artist in get_library(_parse_uuid(args.user_id)):
            release = artist.most_recent_release
            log.info("%s: %s (%s)", artist.name, release.title, release.release_date or "-")
    else:
        raise ValueError(f"Unsupported user command: {args.user_command}")


def _run(args: argparse.Namespace) -> int:
    if args.command == "sync":
        outcome = sync_user_library(_parse_uuid(args.user_id))
        log.info(
            "Sync finished: succeeded=%s, pages=%d, artists=%d, new=%d",
            outcome.succeeded,
            outcome.pages_fetched,
            outcome.artists_discovered,
            outcome.artists_created,
        )
        return 0 if outcome.succeeded else 1
    if args.command == "scan":
        report = run_release_scan(send_emails=not args.no_email)
        if report.notify is not None:
            log.info(
                "Mail finished: groups=%d, sent=%d, failed=%d",
                report.notify.groups,
                report.notify.sent,
                report.notify.failed,
            )
        return 0 if report.scan.succeeded else 1
    if args.command == "search":
        for result in search_artists(args.query):
            log.info("%s: %s", result.name, result.catalog_id)
        return 0
    if args.command == "user":
        _run_user_command(args)
        return 0
    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        exit_code = _run(parsed_args)
    except (ValueError, ValidationError, ConfigurationError):
        log.exception("CLI validation error")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    signal(SIGINT, sigint_handler)
    main()
