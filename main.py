"""Command-line interface for the new-user notification service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from typing import Sequence

from usernotify.config import AppConfig, load_config, resolve_config_path
from usernotify.database import Database, resolve_database_path
from usernotify.i18n import Translator
from usernotify.mailer import build_mailer
from usernotify.notifications import NotificationComposer, resolve_hook
from usernotify.settings import NotificationSettings

logger = logging.getLogger("usernotify.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="New user notification utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the notification database")

    serve_parser = subparsers.add_parser("serve", help="Start the settings web service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the web service")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the web service (default: 8000)")

    settings_parser = subparsers.add_parser("settings", help="Inspect or change the custom page slugs")
    settings_sub = settings_parser.add_subparsers(dest="settings_command")
    settings_parser.set_defaults(settings_command="show")
    settings_sub.add_parser("show", help="Print the configured slugs")
    set_parser = settings_sub.add_parser("set", help="Store new slugs (blank restores the default page)")
    set_parser.add_argument("--login-slug", default="", help="Slug of the custom login page")
    set_parser.add_argument("--reset-slug", default="", help="Slug of the custom password reset page")

    notify_parser = subparsers.add_parser("notify", help="Send the new user notification for an account")
    notify_parser.add_argument("login", help="Login of the account to notify")
    notify_parser.add_argument(
        "--mode",
        choices=["", "admin", "user", "both"],
        default="both",
        help="Who receives the notification (default: both)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "settings", "notify"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database() -> Database:
    db_path = resolve_database_path(os.getenv("USERNOTIFY_DB_PATH"))
    database = Database(db_path)
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _load_config() -> AppConfig:
    return load_config(resolve_config_path(os.getenv("USERNOTIFY_CONFIG")))


def _serve(*, database: Database, host: str, port: int) -> None:
    from usernotify import create_app
    import uvicorn

    logger.info("Starting settings service on http://%s:%s", host, port)
    app = create_app(config=_load_config(), database=database)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _show_settings(database: Database) -> None:
    current = NotificationSettings(database).load()
    print(f"Custom login page: {current.login_slug or '<default>'}")
    print(f"Custom password reset page: {current.reset_slug or '<default>'}")


def _set_settings(database: Database, *, login_slug: str, reset_slug: str) -> None:
    saved = NotificationSettings(database).save(login_slug=login_slug, reset_slug=reset_slug)
    print("Settings saved.")
    print(f"Custom login page: {saved.login_slug or '<default>'}")
    print(f"Custom password reset page: {saved.reset_slug or '<default>'}")


def build_composer(database: Database, config: AppConfig) -> NotificationComposer:
    return NotificationComposer(
        database,
        build_mailer(config.mail),
        config.site,
        translator=Translator(config.site.locale, locale_dir=config.locale_dir),
        wrap_email=resolve_hook(config.wrap_email),
    )


def _notify(database: Database, *, login: str, mode: str) -> int:
    account = database.get_user_by_login(login)
    if account is None:
        print(f"No account with login '{login}'.", file=sys.stderr)
        return 1
    composer = build_composer(database, _load_config())
    composer.notify(account.id, notify=mode)
    print(f"Notification ({mode or 'admin'}) processed for {account.login} <{account.email}>")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    database = _initialise_database()

    if args.command == "serve":
        _serve(database=database, host=args.host, port=args.port)
    elif args.command == "settings":
        if args.settings_command == "set":
            _set_settings(database, login_slug=args.login_slug, reset_slug=args.reset_slug)
        else:
            _show_settings(database)
    elif args.command == "notify":
        return _notify(database, login=args.login, mode=args.mode)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
