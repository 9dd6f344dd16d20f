import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from main import build_composer
from usernotify.config import load_config, resolve_config_path
from usernotify.database import Database, resolve_database_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register an account and send the new user notification")
    parser.add_argument("login", help="Unique login name for the account")
    parser.add_argument("email", help="Unique email address for the account")
    parser.add_argument("--first-name", default="", help="First name used to greet the user")
    parser.add_argument("--locale", default="", help="Preferred locale (defaults to the site locale)")
    parser.add_argument(
        "--notify",
        choices=["", "admin", "user", "both"],
        default="both",
        help="Who receives the notification (default: both)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to USERNOTIFY_DB_PATH or data/usernotify.sqlite3)",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to the YAML configuration (defaults to USERNOTIFY_CONFIG or config/usernotify.yaml)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    db_path = resolve_database_path(args.db_path or os.getenv("USERNOTIFY_DB_PATH"))
    config = load_config(resolve_config_path(args.config_path or os.getenv("USERNOTIFY_CONFIG")))

    database = Database(db_path)
    database.initialize()

    try:
        account = database.create_user(
            args.login,
            args.email,
            first_name=args.first_name,
            locale=args.locale,
        )
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    build_composer(database, config).notify(account.id, notify=args.notify)
    print(f"Created account #{account.id}: {account.login} <{account.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
