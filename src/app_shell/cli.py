import argparse
import logging
import sys
from datetime import timedelta

from src.adapters.clock import SystemClock
from src.adapters.sqlite.blobstore import SQLiteBlobStore
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.repos import SQLiteMangaRepo, SQLiteUserRepo
from src.api.auth_utils import get_password_hash
from src.api.deps import Settings
from src.components.manga import find_orphaned_blobs
from src.domain.entities import User
from src.domain.errors import ConflictError
from src.rules.loader import load_rules
from src.rules.models import Rules

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cli")


def get_rules(settings: Settings) -> Rules:
    if not settings.rules_path.exists():
        logger.error(f"Rules file {settings.rules_path} not found.")
        sys.exit(1)
    return load_rules(settings.rules_path)


def handle_migrate(settings: Settings, rules: Rules) -> None:
    migrator = SQLiteMigrator(
        settings.db_path,
        str(settings.migrations_dir),
        timeout=rules.storage.busy_timeout_seconds,
    )
    applied = migrator.run_migrations()
    if applied:
        print(f"Applied {len(applied)} migration(s): {', '.join(applied)}")
    else:
        print("Database is up to date.")


def handle_create_user(settings: Settings, rules: Rules, args: argparse.Namespace) -> None:
    repo = SQLiteUserRepo(settings.db_path, timeout=rules.storage.busy_timeout_seconds)
    user = User(
        email=args.email.strip().lower(),
        display_name=args.display_name or args.email.split("@")[0],
        password_hash=get_password_hash(args.password),
        role=args.role,
    )
    try:
        repo.save(user)
    except ConflictError as e:
        logger.error(e.message)
        sys.exit(1)
    print(f"Created {user.role} {user.email} ({user.id})")


def handle_sweep_orphans(settings: Settings, rules: Rules, args: argparse.Namespace) -> None:
    """Report blobs no manga references; remove them with --delete."""
    timeout = rules.storage.busy_timeout_seconds
    repo = SQLiteMangaRepo(settings.db_path, timeout=timeout)
    blobs = SQLiteBlobStore(
        settings.db_path, chunk_size=rules.uploads.chunk_size_bytes, timeout=timeout
    )

    orphans = find_orphaned_blobs(
        repo=repo,
        blobs=blobs,
        now=SystemClock().now_utc(),
        grace=timedelta(minutes=args.grace_minutes),
    )
    if not orphans:
        print("No orphaned blobs.")
        return

    for blob_id in orphans:
        info = blobs.get_info(blob_id)
        name = info.filename if info else "?"
        size = info.length if info else 0
        print(f" - {blob_id} {name} ({size} bytes)")

    if not args.delete:
        print(f"{len(orphans)} orphaned blob(s). Re-run with --delete to remove them.")
        return

    removed = sum(1 for blob_id in orphans if blobs.delete(blob_id))
    print(f"Removed {removed} orphaned blob(s).")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Manga moderation CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # migrate
    subparsers.add_parser("migrate", help="Apply pending database migrations")

    # create-user
    user_parser = subparsers.add_parser("create-user", help="Create a user with a role")
    user_parser.add_argument("--email", required=True)
    user_parser.add_argument("--password", required=True)
    user_parser.add_argument(
        "--role", choices=["user", "moderator", "admin"], default="user", help="Role to assign"
    )
    user_parser.add_argument("--display-name", help="Defaults to the email's local part")

    # sweep-orphans
    sweep_parser = subparsers.add_parser(
        "sweep-orphans", help="Find blobs left behind by interrupted uploads"
    )
    sweep_parser.add_argument("--delete", action="store_true", help="Remove what is found")
    sweep_parser.add_argument(
        "--grace-minutes",
        type=int,
        default=15,
        help="Ignore blobs younger than this; their upload may still be saving",
    )

    args = parser.parse_args(argv)

    settings = Settings()
    rules = get_rules(settings)

    if args.command == "migrate":
        handle_migrate(settings, rules)
    elif args.command == "create-user":
        handle_create_user(settings, rules, args)
    elif args.command == "sweep-orphans":
        handle_sweep_orphans(settings, rules, args)


if __name__ == "__main__":
    main()
