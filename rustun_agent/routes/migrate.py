"""
Route Storage Migration

Copies clients between storage backends: ``import`` moves a routes.json file
into the SQLite database, ``export`` writes the database back out as a
routes.json file. Clients already present in the target are skipped, so a
migration can be re-run safely.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import BaseModel

from rustun_agent.config import Configuration

from .errors import ClientExistsError
from .file_repo import FileRouteRepository
from .repository import RouteRepository
from .sqlite_repo import SqliteRouteRepository

logger = logging.getLogger(__name__)


class MigrationReport(BaseModel):
    total: int = 0
    imported: int = 0
    skipped: int = 0


async def copy_routes(source: RouteRepository, target: RouteRepository) -> MigrationReport:
    """Copy every client of ``source`` into ``target``, in source order."""
    clients = await source.get_all()
    report = MigrationReport(total=len(clients))
    logger.info("Found %d clients to copy", len(clients))

    for client in clients:
        try:
            await target.create(client)
        except ClientExistsError:
            logger.warning("Skipping existing: %s/%s", client.cluster, client.identity)
            report.skipped += 1
            continue
        logger.info("Copied: %s/%s", client.cluster, client.identity)
        report.imported += 1

    return report


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Move Rustun routes between routes.json and SQLite")
    parser.add_argument("--config", help="YAML file merged over the packaged defaults")
    parser.add_argument("--db", help="SQLite database path (defaults to storage.sqlite.db_path)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="copy a routes.json file into the database")
    import_parser.add_argument("--json", default="./routes.json", help="routes.json file to import")

    export_parser = subparsers.add_parser("export", help="write the database out as routes.json")
    export_parser.add_argument("--output", default="./routes_export.json", help="routes.json file to write")

    args = parser.parse_args(argv)

    config = Configuration(args.config)
    db_path = args.db or config.get_storage_config()["sqlite"]["db_path"]
    database = SqliteRouteRepository(db_path)

    if args.command == "import":
        report = await copy_routes(FileRouteRepository(args.json), database)
    else:
        report = await copy_routes(database, FileRouteRepository(args.output))

    print(f"Migration completed: total {report.total}, copied {report.imported}, skipped {report.skipped}")
    return 0


def cli_main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
