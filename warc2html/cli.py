import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import ConfigError, Warc2HtmlError
from .index import ResourceIndex
from .resources import CaptureRecord
from .settings import (
    Settings,
    load_config_file,
    load_forced_extensions,
    parse_forced_extension_arg,
    parse_timestamp,
)
from .sources import CdxServerClient, PayloadFetcher, build_session, iter_input_file
from .writer import plan_lines, write_site

CONFIG_GROUPS = ("general", "input", "output", "window")


# -------------------- Pipeline --------------------


def ingest(index: ResourceIndex, records: Iterable[CaptureRecord]) -> int:
    accepted = 0
    for record in records:
        if index.add(record) is not None:
            accepted += 1
    return accepted


def build_index(settings: Settings) -> ResourceIndex:
    index = ResourceIndex(
        load_forced_extensions(settings.forced_extensions),
        after=settings.after,
        before=settings.before,
    )
    for filename in settings.inputs:
        n = ingest(index, iter_input_file(filename))
        logging.info("%s: %d captures accepted", filename, n)
    if settings.cdx_server and settings.cdx_url:
        client = CdxServerClient(
            settings.cdx_server, build_session(), timeout=settings.timeout
        )
        n = ingest(
            index, client.query(settings.cdx_url, settings.after, settings.before)
        )
        logging.info("%s: %d captures accepted", settings.cdx_server, n)
    index.resolve_redirects()
    return index


def run(settings: Settings) -> int:
    index = build_index(settings)
    if settings.dry_run:
        for line in plan_lines(index):
            print(line)
        return 0
    fetcher = PayloadFetcher(settings.warc_base, timeout=settings.timeout)
    write_site(index, fetcher, Path(settings.output_dir), workers=settings.workers)
    return 0


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="warc2html",
        description="Convert WARC or CDX captures into a static, browsable site.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument("inputs", nargs="*", help="WARC or CDX files")
    p.add_argument(
        "-o", "--output-dir", type=str, default=".", help="output directory"
    )
    p.add_argument(
        "-b",
        "--warc-base",
        type=str,
        default="",
        help="prefix (path or URL) for WARC filenames named in CDX records",
    )
    p.add_argument("--cdx-server", type=str, default=None, help="CDX server URL")
    p.add_argument(
        "--url", dest="cdx_url", type=str, default=None, help="URL prefix to query"
    )
    p.add_argument(
        "--after", type=str, default=None, help="skip captures before TS (inclusive)"
    )
    p.add_argument(
        "--before",
        type=str,
        default=None,
        help="skip captures at or after TS (exclusive)",
    )
    p.add_argument(
        "--dry-run", action="store_true", help="print the manifest, write nothing"
    )
    p.add_argument("--workers", type=int, default=4, help="concurrent writers")
    p.add_argument(
        "--timeout", type=float, default=30.0, help="request timeout seconds"
    )
    p.add_argument(
        "--force-ext",
        action="append",
        default=[],
        metavar="TYPE=EXT",
        help="force output extension for a media type",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        flat = dict(cfg)
        for g in CONFIG_GROUPS:
            if isinstance(cfg.get(g), dict):
                flat.update(cfg[g])
        flat = {k.replace("-", "_"): v for k, v in flat.items()}
        if "url" in flat and "cdx_url" not in flat:
            flat["cdx_url"] = flat.pop("url")
        parser.set_defaults(**flat)
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    forced: Dict[str, str] = {}
    for item in args.force_ext or []:
        forced.update(parse_forced_extension_arg(item))
    if bool(args.cdx_server) != bool(args.cdx_url):
        raise ConfigError("--cdx-server and --url must be given together")
    if not args.inputs and not args.cdx_server:
        raise ConfigError("no input files or CDX server given")
    return Settings(
        output_dir=args.output_dir,
        inputs=list(args.inputs),
        warc_base=args.warc_base or "",
        cdx_server=args.cdx_server,
        cdx_url=args.cdx_url,
        after=parse_timestamp(args.after),
        before=parse_timestamp(args.before),
        dry_run=args.dry_run,
        workers=max(1, args.workers),
        timeout=max(1.0, args.timeout),
        forced_extensions=forced,
        verbose=args.verbose,
    )


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(argv)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s: %(message)s",
        )
        settings = settings_from_args(args)
        return run(settings)
    except (Warc2HtmlError, OSError) as e:
        logging.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
