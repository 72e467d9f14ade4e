import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv

from userapi.config import load_settings, resolve_config_path
from userapi.database import Database
from userapi.errors import DatabaseError, StartupError
from userapi.service import UserPayload
from userapi.users import UserRepository


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user record in the users API database")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (defaults to USERAPI_CONFIG or config/userapi.yaml)",
    )
    return parser.parse_args(argv)


async def create_user(database: Database, name: str, email: str) -> int:
    await database.open()
    try:
        await database.initialize()
        result = await UserRepository(database).create_user(name, email)
    finally:
        await database.close()

    if result.failure is not None:
        print(f"Error: {result.failure.message}", file=sys.stderr)
        return 1

    user = result.value
    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)

    try:
        payload = UserPayload(name=args.name.strip(), email=args.email.strip())
    except ValueError:
        print("Error: Name and email required", file=sys.stderr)
        return 1

    try:
        settings = load_settings(config_path=resolve_config_path(args.config or os.getenv("USERAPI_CONFIG")))
    except (StartupError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    database = Database(settings.database_url, pool_config=settings.pool)
    try:
        return asyncio.run(create_user(database, payload.name, payload.email))
    except (DatabaseError, StartupError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
