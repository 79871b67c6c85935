import logging
from datetime import datetime
from itertools import groupby
from threading import Lock
from typing import IO, Iterable, Iterator, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from warcio.archiveiterator import ArchiveIterator
from warcio.exceptions import ArchiveLoadFailed
from warcio.timeutils import iso_date_to_datetime, timestamp_to_datetime

from .errors import PayloadUnavailable
from .index import ERROR_STATUS, prefer_new
from .resources import CaptureRecord, PayloadLocator, base_media_type
from .urls import is_http_url

DEFAULT_HEADERS = {"User-Agent": "warc2html/0.1"}
# field order expected by parse_cdx_line
CDX_FIELDS = ",".join(
    (
        "urlkey",
        "timestamp",
        "original",
        "mimetype",
        "statuscode",
        "digest",
        "redirect",
        "robotflags",
        "length",
        "offset",
        "filename",
    )
)
WARC_FIRST_BYTES = (b"W", b"\x1f", b"f")


# -------------------- HTTP --------------------


def build_session(headers: Optional[dict] = None) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=5,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=32, pool_maxsize=32)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


# -------------------- WARC --------------------


def iter_warc_records(filename: str, stream: IO[bytes]) -> Iterator[CaptureRecord]:
    it = ArchiveIterator(stream)
    try:
        for record in it:
            if record.rec_type != "response" or record.http_headers is None:
                continue
            url = record.rec_headers.get_header("WARC-Target-URI") or ""
            if not is_http_url(url):
                continue
            try:
                ts = iso_date_to_datetime(record.rec_headers.get_header("WARC-Date"))
                status = int(record.http_headers.get_statuscode() or 0)
            except (TypeError, ValueError) as e:
                logging.warning("skipping malformed record for %s: %s", url, e)
                continue
            media_type = base_media_type(
                record.http_headers.get_header("Content-Type")
            )
            location = record.http_headers.get_header("Location")
            offset = it.get_record_offset()
            length = it.get_record_length()
            yield CaptureRecord(
                url=url,
                timestamp=ts,
                status=status,
                media_type=media_type,
                locator=PayloadLocator(filename, offset, length),
                location=location,
            )
    except ArchiveLoadFailed as e:
        logging.error("stopped reading %s: %s", filename, e)


# -------------------- CDX --------------------


def parse_cdx_line(line: str) -> Optional[CaptureRecord]:
    """Parse one ``N b a m s k r M S V [n] g`` CDX line."""
    if not line.strip() or line.startswith(" "):
        return None
    fields = line.split()
    if len(fields) < 11:
        raise ValueError(f"expected at least 11 fields, got {len(fields)}")
    return CaptureRecord(
        url=fields[2],
        timestamp=timestamp_to_datetime(fields[1]),
        status=0 if fields[4] == "-" else int(fields[4]),
        media_type=base_media_type(None if fields[3] == "-" else fields[3]),
        locator=PayloadLocator(fields[-1], int(fields[9]), int(fields[8])),
        location=None if fields[6] == "-" else fields[6],
    )


def iter_cdx_records(lines: Iterable[str]) -> Iterator[CaptureRecord]:
    for lineno, line in enumerate(lines, 1):
        line = line.rstrip("\r\n")
        try:
            rec = parse_cdx_line(line)
        except ValueError as e:
            logging.warning("skipping cdx line %d: %s", lineno, e)
            continue
        if rec is not None:
            yield rec


def _urlkey(line: str) -> str:
    return line.split(" ", 1)[0]


def pick_capture(
    records: Iterable[CaptureRecord],
    after: Optional[datetime] = None,
    before: Optional[datetime] = None,
) -> Optional[CaptureRecord]:
    best: Optional[CaptureRecord] = None
    for rec in records:
        if rec.status >= ERROR_STATUS:
            continue
        if after is not None and rec.timestamp < after:
            continue
        if before is not None and rec.timestamp >= before:
            continue
        if prefer_new(rec, best):
            best = rec
    return best


def coalesce_cdx_lines(
    lines: Iterable[str],
    after: Optional[datetime] = None,
    before: Optional[datetime] = None,
) -> Iterator[CaptureRecord]:
    """Keep one capture per run of lines sharing a urlkey."""
    content = (
        ln.rstrip("\r\n") for ln in lines if ln.strip() and not ln.startswith(" ")
    )
    for key, run in groupby(content, key=_urlkey):
        pick = pick_capture(iter_cdx_records(run), after, before)
        if pick is not None:
            yield pick
        else:
            logging.debug("no usable capture for %s", key)


class CdxServerClient:
    def __init__(
        self,
        server_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.server_url = server_url
        self.session = session or build_session()
        self.timeout = timeout

    def query_params(
        self, url: str, after: Optional[datetime], before: Optional[datetime]
    ) -> List[Tuple[str, str]]:
        params = [("url", url), ("matchType", "prefix"), ("fl", CDX_FIELDS)]
        if after is not None:
            params.append(("from", after.strftime("%Y%m%d%H%M%S")))
        if before is not None:
            params.append(("to", before.strftime("%Y%m%d%H%M%S")))
        return params

    def query(
        self,
        url: str,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> Iterator[CaptureRecord]:
        logging.info("querying %s for %s", self.server_url, url)
        r = self.session.get(
            self.server_url,
            params=self.query_params(url, after, before),
            timeout=self.timeout,
            stream=True,
        )
        r.raise_for_status()
        try:
            lines = r.iter_lines(decode_unicode=True)
            yield from coalesce_cdx_lines(
                (ln if isinstance(ln, str) else ln.decode("utf-8") for ln in lines),
                after,
                before,
            )
        finally:
            r.close()


# -------------------- Input sniffing --------------------


def is_warc_stream(first: bytes) -> bool:
    return first[:1] in WARC_FIRST_BYTES


def iter_input_file(filename: str) -> Iterator[CaptureRecord]:
    with open(filename, "rb") as f:
        first = f.read(1)
        f.seek(0)
        if is_warc_stream(first):
            logging.info("reading warc %s", filename)
            yield from iter_warc_records(filename, f)
            return
    logging.info("reading cdx %s", filename)
    with open(filename, "r", encoding="utf-8", errors="replace") as f:
        yield from iter_cdx_records(f)


# -------------------- Payload fetch --------------------


class PayloadFetcher:
    """Re-reads capture payloads from local files or over HTTP range requests."""

    def __init__(
        self,
        warc_base: str = "",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.warc_base = warc_base
        self.session = session
        self.timeout = timeout
        self._lock = Lock()

    def location_for(self, locator: PayloadLocator) -> str:
        return self.warc_base + locator.container

    def _open_remote(self, url: str, locator: PayloadLocator) -> IO[bytes]:
        with self._lock:
            if self.session is None:
                self.session = build_session()
        headers = {}
        if locator.length > 0:
            end = locator.offset + locator.length - 1
            headers["Range"] = f"bytes={locator.offset}-{end}"
        elif locator.offset > 0:
            headers["Range"] = f"bytes={locator.offset}-"
        try:
            r = self.session.get(
                url, headers=headers, timeout=self.timeout, stream=True
            )
        except requests.RequestException as e:
            raise PayloadUnavailable(f"{url}: {e}") from e
        if r.status_code >= 400:
            r.close()
            raise PayloadUnavailable(f"{url}: HTTP {r.status_code}")
        if headers and r.status_code != 206:
            r.close()
            raise PayloadUnavailable(f"{url}: range request not honoured")
        return r.raw

    def _open_local(self, path: str, locator: PayloadLocator) -> IO[bytes]:
        try:
            f = open(path, "rb")
        except OSError as e:
            raise PayloadUnavailable(f"{path}: {e}") from e
        f.seek(locator.offset)
        return f

    def open(self, locator: PayloadLocator) -> IO[bytes]:
        where = self.location_for(locator)
        if is_http_url(where):
            return self._open_remote(where, locator)
        return self._open_local(where, locator)

    def fetch(self, locator: PayloadLocator) -> bytes:
        """Return the HTTP body of the response record at the locator."""
        stream = self.open(locator)
        try:
            try:
                record = next(iter(ArchiveIterator(stream)), None)
            except ArchiveLoadFailed as e:
                raise PayloadUnavailable(f"{locator.container}: {e}") from e
            if record is None or record.rec_type != "response":
                raise PayloadUnavailable(
                    f"{locator.container}@{locator.offset}: not a response record"
                )
            return record.content_stream().read()
        finally:
            stream.close()
