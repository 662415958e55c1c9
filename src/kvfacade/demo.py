"""Movies walkthrough against a local DynamoDB: create, list, put, get, query and scan."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .batching import BatchWriteResult
from .cancel import CancellationToken
from .client import KeyValueClient, TableDescription, Throughput
from .codec import DataclassCodec
from .config import ClientConfig
from .errors import KvFacadeError
from .model import KeySchema, kv_field

logger = logging.getLogger(__name__)

MOVIES_TABLE = "Movies"


@dataclass(frozen=True)
class Movie:
    year: int = kv_field(roles=["pk"])
    title: str = kv_field(roles=["sk"])
    phase: str = kv_field(default="")
    has_favreau: bool = kv_field(name="hasFavreau", default=False)


MOVIES_SCHEMA = KeySchema.from_dataclass(Movie)
MOVIE_CODEC: DataclassCodec[Movie] = DataclassCodec(Movie)

MOVIES: tuple[Movie, ...] = (
    Movie(year=2008, phase="I", has_favreau=True, title="Iron Man"),
    Movie(year=2008, phase="I", has_favreau=False, title="The Incredible Hulk"),
    Movie(year=2010, phase="I", has_favreau=True, title="Iron Man 2"),
    Movie(year=2011, phase="I", has_favreau=False, title="Thor"),
    Movie(year=2011, phase="I", has_favreau=False, title="Captain America: The First Avenger"),
    Movie(year=2012, phase="I", has_favreau=False, title="Marvel's The Avengers"),
    Movie(year=2013, phase="II", has_favreau=True, title="Iron Man 3"),
    Movie(year=2008, phase="II", has_favreau=False, title="Thor: The Dark World"),
    Movie(year=2013, phase="II", has_favreau=False, title="Captain America: The Winter Soldier"),
    Movie(year=2014, phase="II", has_favreau=False, title="Guardians of the Galaxy"),
    Movie(year=2014, phase="II", has_favreau=False, title="Avengers: Age of Ultron"),
    Movie(year=2015, phase="II", has_favreau=False, title="Ant-Man"),
    Movie(year=2016, phase="III", has_favreau=False, title="Captain America: Civil War"),
    Movie(year=2016, phase="III", has_favreau=False, title="Doctor Strange"),
    Movie(year=2017, phase="III", has_favreau=False, title="Guardians of the Galaxy Vol. 2"),
    Movie(year=2017, phase="III", has_favreau=True, title="Spider-Man: Homecoming"),
    Movie(year=2017, phase="III", has_favreau=False, title="Thor: Ragnarok"),
    Movie(year=2018, phase="III", has_favreau=False, title="Black Panther"),
    Movie(year=2018, phase="III", has_favreau=True, title="Avengers: Infinity War"),
    Movie(year=2018, phase="III", has_favreau=False, title="Ant-Man and the Wasp"),
    Movie(year=2019, phase="III", has_favreau=False, title="Captian Marvel"),
    Movie(year=2019, phase="III", has_favreau=False, title="Avengers: Endgame"),
    Movie(year=2019, phase="III", has_favreau=True, title="Spider-Man: Far From Home"),
)


@dataclass(frozen=True)
class DemoReport:
    table: TableDescription
    tables: list[str]
    batch: BatchWriteResult
    lookup: Movie
    by_year: list[Movie]
    by_favreau: list[Movie]


def run_demo(
    client: KeyValueClient,
    *,
    has_favreau: bool = False,
    year: int = 2019,
    title: str = "Avengers: Endgame",
    table_name: str = MOVIES_TABLE,
    timeout: float = 300.0,
    clear_existing: bool = True,
    cancel: CancellationToken | None = None,
) -> DemoReport:
    if clear_existing:
        cleared = client.clear_tables(wait=True, cancel=cancel)
        if cleared:
            logger.info(f"Cleared tables: {cleared}")

    table = client.create_table(
        table_name,
        MOVIES_SCHEMA,
        Throughput(read_capacity_units=10, write_capacity_units=10),
        timeout=timeout,
        cancel=cancel,
    )
    tables = client.list_tables(cancel=cancel)

    # One single put, then the rest as a batch.
    client.put_item(table_name, MOVIES[0], schema=MOVIES_SCHEMA, codec=MOVIE_CODEC, cancel=cancel)
    batch = client.put_items(table_name, MOVIES[1:], schema=MOVIES_SCHEMA, codec=MOVIE_CODEC, cancel=cancel)

    lookup = client.get_item(
        table_name, {"year": year, "title": title}, schema=MOVIES_SCHEMA, codec=MOVIE_CODEC, cancel=cancel
    )
    by_year = list(client.query(table_name, year, schema=MOVIES_SCHEMA, codec=MOVIE_CODEC, cancel=cancel))
    by_favreau = list(
        client.scan(
            table_name,
            "hasFavreau = :hasFav",
            {":hasFav": has_favreau},
            codec=MOVIE_CODEC,
            cancel=cancel,
        )
    )

    return DemoReport(
        table=table, tables=tables, batch=batch, lookup=lookup, by_year=by_year, by_favreau=by_favreau
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kvfacade-demo", description=__doc__)
    parser.add_argument("--endpoint", help="store endpoint (default: $DYNAMODB_ENDPOINT or local instance)")
    parser.add_argument("--region", help="region tag (default: $AWS_REGION or us-east-1)")
    parser.add_argument(
        "--has-favreau",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="value of the hasFavreau flag to scan for",
    )
    parser.add_argument("--timeout", type=float, default=300.0, help="seconds to wait for the table")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ClientConfig.from_env()
    if args.endpoint or args.region:
        config = ClientConfig(
            endpoint_url=args.endpoint or config.endpoint_url,
            region=args.region or config.region,
            credentials=config.credentials,
        )

    client = KeyValueClient(config)
    try:
        report = run_demo(client, has_favreau=args.has_favreau, timeout=args.timeout)
    except KvFacadeError as err:
        logger.error(f"demo failed: {err}")
        return 1

    print(f"Created table `{report.table.name}` with status {report.table.status.value}")
    print(f"Tables: {report.tables}")
    print(f"Wrote {report.batch.items_written + 1} movies")
    print(f"Search for `{report.lookup.title}` from {report.lookup.year} returned {report.lookup}")
    print(f"Search for movies from {report.lookup.year} returned {report.by_year}")
    print(f"Search for movies by hasFavreau=={args.has_favreau} returned {report.by_favreau}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
