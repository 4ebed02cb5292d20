"""
CLI (Command Line Interface).

Resolves portal entities through the cache and prints them as JSON:

    tucache init-db
    tucache module <id>
    tucache course <id>
    tucache exam <id>
    tucache registration [<id>]
    tucache my-modules | my-courses | my-exams
    tucache personal-data

Identifiers are URL-safe base64 (as printed by the commands themselves).
The portal session comes from --tu-id/--session-nr/--session-id or the
TUCAN_TU_ID / TUCAN_SESSION_NR / TUCAN_SESSION_ID environment variables;
logging in is not part of this tool.

Exit codes: 0 ok, 1 usage error, 3 session expired, 4 extraction or address
decoding error, 5 HTTP error.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import dataclasses
import json
import logging
import os
import sys
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import httpx
from rich.console import Console
from rich.logging import RichHandler

from tucache.config import Settings
from tucache.crawl import Crawler
from tucache.db import create_engine, init_db
from tucache.errors import AddressDecodeError, ExtractionError, SessionExpired
from tucache.model import Session
from tucache.scrape import open_fetcher
from tucache.storage import CacheStore
from tucache.url import CHUNK_SIZE

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_SESSION_EXPIRED = 3
EXIT_EXTRACTION = 4
EXIT_HTTP = 5


def encode_id(identifier: bytes) -> str:
    return base64.urlsafe_b64encode(identifier).decode("ascii").rstrip("=")


def decode_id(text: str) -> bytes:
    """argparse type for identifiers: URL-safe base64, padding optional."""
    try:
        identifier = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a base64 identifier: {text!r}") from e
    if len(identifier) % CHUNK_SIZE:
        raise argparse.ArgumentTypeError(f"identifier is not a multiple of {CHUNK_SIZE} bytes: {text!r}")
    return identifier


def _json_default(obj: Any) -> Any:
    if isinstance(obj, bytes):
        return encode_id(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.name
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def to_json(result: Any) -> str:
    if dataclasses.is_dataclass(result):
        result = dataclasses.asdict(result)
    elif isinstance(result, list):
        result = [dataclasses.asdict(r) if dataclasses.is_dataclass(r) else r for r in result]
    return json.dumps(result, default=_json_default, ensure_ascii=False, indent=2)


def _session_from(args: argparse.Namespace) -> Optional[Session]:
    tu_id = args.tu_id or os.environ.get("TUCAN_TU_ID")
    session_nr = args.session_nr or os.environ.get("TUCAN_SESSION_NR")
    session_id = args.session_id or os.environ.get("TUCAN_SESSION_ID")
    if not (tu_id and session_nr and session_id):
        return None
    try:
        return Session(tu_id=tu_id, session_nr=int(session_nr), session_id=session_id)
    except ValueError:
        return None


def _settings_from(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    overrides = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.max_concurrency:
        overrides["max_concurrent_requests"] = args.max_concurrency
    return dataclasses.replace(settings, **overrides) if overrides else settings


async def _dispatch(crawler: Crawler, args: argparse.Namespace) -> Any:
    if args.command == "module":
        return await crawler.resolve_module(args.id)
    if args.command == "course":
        return await crawler.resolve_course(args.id)
    if args.command == "exam":
        return await crawler.resolve_exam_details(args.id)
    if args.command == "registration":
        return await crawler.resolve_registration(args.id)
    if args.command == "my-modules":
        return await crawler.resolve_my_modules()
    if args.command == "my-courses":
        return await crawler.resolve_my_courses()
    if args.command == "my-exams":
        return await crawler.resolve_my_exams()
    if args.command == "personal-data":
        return await crawler.resolve_personal_data()
    raise ValueError(f"unknown command {args.command!r}")


async def run(args: argparse.Namespace, settings: Settings, session: Optional[Session]) -> Any:
    engine = create_engine(settings.database_url)
    try:
        await init_db(engine)
        if args.command == "init-db":
            return {"database": engine.url.render_as_string(hide_password=True)}

        store = CacheStore(engine)
        async with open_fetcher(settings) as fetcher:
            return await _dispatch(Crawler(fetcher, store, session), args)
    finally:
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="tucache", description="Caching crawler for the TUCaN portal")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--database-url", help="SQLAlchemy async database url")
    parser.add_argument("--base-url", help="Portal base url")
    parser.add_argument("--max-concurrency", type=int, help="Max in-flight portal requests")
    parser.add_argument("--tu-id", help="Login of the session owner")
    parser.add_argument("--session-nr", help="Portal session number")
    parser.add_argument("--session-id", help="Value of the cnsc cookie")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the cache tables")

    for name, help_text in (
        ("module", "Module details"),
        ("course", "Course or course group details"),
        ("exam", "Exam details"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("id", type=decode_id, help="Identifier (URL-safe base64)")

    p_reg = sub.add_parser("registration", help="One level of the registration menu")
    p_reg.add_argument("id", type=decode_id, nargs="?", default=None, help="Menu identifier; root when omitted")

    sub.add_parser("my-modules", help="Modules of the logged-in user")
    sub.add_parser("my-courses", help="Courses of the logged-in user")
    sub.add_parser("my-exams", help="Exams of the logged-in user")
    sub.add_parser("personal-data", help="Profile of the logged-in user")

    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, runs the command and exits via SystemExit
    with a return code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        raise SystemExit(EXIT_OK if e.code == 0 else EXIT_USAGE) from None

    setup_logging(args.verbose)

    session = None
    if args.command != "init-db":
        session = _session_from(args)
        if session is None:
            print("A portal session is required (--tu-id, --session-nr, --session-id).", file=sys.stderr)
            raise SystemExit(EXIT_USAGE)

    try:
        result = asyncio.run(run(args, _settings_from(args), session))
    except SessionExpired as e:
        log.error("%s, please log in again", e)
        raise SystemExit(EXIT_SESSION_EXPIRED)
    except (ExtractionError, AddressDecodeError) as e:
        log.error("%s", e)
        raise SystemExit(EXIT_EXTRACTION)
    except httpx.HTTPError as e:
        log.error("HTTP error: %s", e)
        raise SystemExit(EXIT_HTTP)

    print(to_json(result))
    raise SystemExit(EXIT_OK)
