"""Command-line interface for the users REST service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from dotenv import find_dotenv, load_dotenv

from userapi.config import Settings, load_settings
from userapi.context import RequestContext
from userapi.database import Database
from userapi.models import MAX_USER_ID, UserRequest
from userapi.repository import UserNotFoundError, UserStore

logger = logging.getLogger("userapi.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User API service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Apply pending database migrations")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP API (default: $PORT or 8080)",
    )

    openapi_parser = subparsers.add_parser(
        "openapi", help="Write the OpenAPI document for the API as YAML"
    )
    openapi_parser.add_argument(
        "--output",
        default=None,
        help="File to write to (default: standard output)",
    )

    subparsers.add_parser("admin", help="Launch the interactive administration console")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db", "openapi"}

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


def _load_environment() -> None:
    env_file = find_dotenv(usecwd=True)
    if not env_file:
        logger.warning(".env file not found, using environment variables")
        return
    load_dotenv(env_file)


def _open_database(settings: Settings) -> Database:
    database = Database(settings.database_path, pool_size=settings.pool_size)
    applied = database.initialize()
    if applied:
        logger.info("Applied migrations %s to %s", applied, settings.database_path)
    logger.info("Database ready at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str | None, port: int | None) -> None:
    from userapi.api import create_app
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting users API on http://%s:%s", bind_host, bind_port)

    app = create_app(database=database, settings=settings)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level=settings.log_level.lower())


def _write_openapi(settings: Settings, database: Database, output: str | None) -> None:
    from userapi.api import create_app
    import yaml

    app = create_app(database=database, settings=settings)
    document = yaml.safe_dump(app.openapi(), sort_keys=False)
    if output:
        Path(output).write_text(document, encoding="utf-8")
        print(f"OpenAPI document written to {output}")
    else:
        print(document, end="")


def _run_admin_cli(store: UserStore) -> None:
    """Provide an interactive management console for administrators."""

    print("User API Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List all users")
            print("  2) Add a new user")
            print("  3) Delete a user")
            print("  4) Exit")

            choice = input("Enter choice [1-4]: ").strip()

            if choice == "1":
                _list_users(store)
            elif choice == "2":
                _add_user(store)
            elif choice == "3":
                _delete_user(store)
            elif choice == "4":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_users(store: UserStore) -> None:
    users = store.list(RequestContext.background())
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Updated")
    print("-" * 80)
    for user in users:
        updated = user.updated_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {updated}")


def _add_user(store: UserStore) -> None:
    print("\nCreate a new user (leave the name blank to cancel).")
    name = input("Name: ").strip()
    if not name:
        print("User creation cancelled.")
        return

    email = input("Email address: ").strip()
    if not email:
        print("An email address is required. User creation cancelled.")
        return

    user = store.create(RequestContext.background(), UserRequest(name=name, email=email))
    print(f"Created user #{user.id}: {user.name} <{user.email}>")


def _delete_user(store: UserStore) -> None:
    raw_id = input("User ID to delete: ").strip()
    try:
        user_id = int(raw_id)
    except ValueError:
        print("User IDs are whole numbers.")
        return
    if not 1 <= user_id <= MAX_USER_ID:
        print(f"No user with ID {user_id} exists.")
        return

    try:
        store.delete(RequestContext.background(), user_id)
    except UserNotFoundError:
        print(f"No user with ID {user_id} exists.")
        return
    print(f"Deleted user #{user_id}.")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    _load_environment()

    args = _parse_args(argv)
    settings = load_settings()
    logging.getLogger().setLevel(settings.log_level)
    database = _open_database(settings)

    try:
        if args.command == "serve":
            _serve(settings=settings, database=database, host=args.host, port=args.port)
        elif args.command == "admin":
            _run_admin_cli(UserStore(database))
        elif args.command == "openapi":
            _write_openapi(settings, database, args.output)
        elif args.command == "init-db":
            print(f"Database schema is at version {database.schema_version()}.")
    finally:
        database.close()
        logger.info("Database connections closed")


if __name__ == "__main__":
    main()
