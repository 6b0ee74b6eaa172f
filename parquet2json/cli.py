"""
parquet2json: stream Parquet rows as newline-delimited JSON.

Usage:
    parquet2json [--timeout SECONDS] [--concurrency N] [--log-level LEVEL] FILE cat [-o N] [-l N] [-c COLS] [-n]
    parquet2json FILE schema
    parquet2json FILE rowcount

FILE is a local path, an http(s):// URL or an s3://bucket/key URL. Only the
footer and the column chunks of the selected row groups are fetched.
Exit codes are listed in parquet2json.errors.
"""
import argparse
import io
import logging
import os
import signal
import sys
import threading
from contextlib import closing, contextmanager

from .config import DEFAULT_MAX_CONCURRENT_FETCHES, RunConfig, default_timeout
from .emitter import JsonLineEmitter, render_schema
from .errors import Parquet2JsonError
from .footer import fetch_metadata
from .location import parse_location
from .projection import parse_columns, resolve_columns
from .reader import StreamingRowReader
from .sources import open_source
from .window import plan_window

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CANCELLED = 128 + signal.SIGTERM

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def build_parser(timeout_default):
    parser = argparse.ArgumentParser(prog="parquet2json", description="Outputs Parquet as JSON.")
    parser.add_argument(
        "--timeout",
        type=float,
        default=timeout_default,
        help="Seconds allowed for each individual range read (default: %(default)s)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_MAX_CONCURRENT_FETCHES,
        help="Maximum concurrent column chunk fetches per row group on remote sources (default: %(default)s)",
    )
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS, default="WARNING")
    parser.add_argument("file", metavar="FILE", help="Local path, http(s):// URL or s3://bucket/key")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)
    cat = commands.add_parser("cat", help="Outputs rows as newline-delimited JSON")
    cat.add_argument(
        "-o", "--offset", type=int, default=0,
        help="Starts outputting from this row; negative values count back from the last row",
    )
    cat.add_argument(
        "-l", "--limit", type=int, default=None,
        help="Maximum number of rows to output (default: no limit)",
    )
    cat.add_argument(
        "-c", "--columns", default=None,
        help="Comma-separated columns to output, in order; prefix a name with ? to allow it to be missing",
    )
    cat.add_argument("-n", "--nulls", action="store_true", help="Output null values explicitly")
    commands.add_parser("schema", help="Outputs the Parquet schema")
    commands.add_parser("rowcount", help="Outputs the number of rows")
    return parser


@contextmanager
def cancel_on_sigterm(event):
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: event.set())
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def cat(args, source, metadata, config, stdout):
    projection = resolve_columns(metadata.schema, parse_columns(args.columns))
    plan = plan_window(metadata.row_groups, args.offset, args.limit)
    cancel_event = threading.Event()
    reader = StreamingRowReader(
        source,
        metadata,
        plan,
        projection,
        max_concurrent_fetches=config.max_concurrent_fetches,
        cancel_event=cancel_event,
    )
    emitter = JsonLineEmitter(stdout, include_nulls=args.nulls)

    rows = reader.rows()
    with closing(rows), cancel_on_sigterm(cancel_event):
        for row in rows:
            emitter.emit(row)
    stdout.flush()
    logger.info("emitted %d rows", emitter.lines)
    return EXIT_CANCELLED if cancel_event.is_set() else EXIT_OK


def run(args, config, stdout):
    location = parse_location(args.file, region=config.s3.region)
    with open_source(location, config) as source:
        metadata = fetch_metadata(source)
        if args.command == "rowcount":
            print(metadata.num_rows, file=stdout)
            status = EXIT_OK
        elif args.command == "schema":
            print(render_schema(metadata), file=stdout)
            status = EXIT_OK
        else:
            status = cat(args, source, metadata, config, stdout)
        logger.info(
            "fetched %d bytes of %s in %d requests",
            source.bytes_fetched, location, source.requests,
        )
    return status


def main(argv=None, stdout=None):
    try:
        timeout_default = default_timeout()
    except ValueError as exc:
        print(f"parquet2json: error: {exc}", file=sys.stderr)
        return 2

    parser = build_parser(timeout_default)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.getLevelNamesMapping()[args.log_level],
        format="%(asctime)s %(name)s [%(threadName)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = RunConfig.from_args(args)
        if args.command == "cat":
            parse_columns(args.columns)
    except ValueError as exc:
        parser.error(str(exc))

    if stdout is None:
        stdout = sys.stdout
        if isinstance(stdout, io.TextIOWrapper):
            stdout.reconfigure(encoding="utf-8", newline="\n")

    try:
        return run(args, config, stdout)
    except Parquet2JsonError as exc:
        logger.debug("run failed", exc_info=True)
        stdout.flush()
        print(f"parquet2json: error: {exc}", file=sys.stderr)
        return exc.exit_code
    except BrokenPipeError:
        # Downstream stopped reading; silence the interpreter's final flush.
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
