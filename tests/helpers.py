from io import BytesIO
from typing import List, Optional

from warcio.statusandheaders import StatusAndHeaders
from warcio.timeutils import timestamp_to_datetime
from warcio.warcwriter import WARCWriter

from warc2html.resources import CaptureRecord, PayloadLocator

DEFAULT_DATE = "2021-01-01T00:00:00Z"


def capture(
    url: str,
    ts: str = "20210101000000",
    status: int = 200,
    media_type: str = "text/html",
    location: Optional[str] = None,
    container: str = "test.warc.gz",
    offset: int = 0,
) -> CaptureRecord:
    return CaptureRecord(
        url=url,
        timestamp=timestamp_to_datetime(ts),
        status=status,
        media_type=media_type,
        locator=PayloadLocator(container, offset, 0),
        location=location,
    )


def write_warc(path, responses: List[dict], gzip: bool = True) -> str:
    """Write response records; each dict has url and optionally status, type,
    body, location and date."""
    with open(path, "wb") as fh:
        writer = WARCWriter(fh, gzip=gzip)
        for r in responses:
            status = r.get("status", 200)
            headers = [("Content-Type", r.get("type", "text/html; charset=utf-8"))]
            if r.get("location"):
                headers.append(("Location", r["location"]))
            http_headers = StatusAndHeaders(
                f"{status} {'Found' if 300 <= status < 400 else 'OK'}",
                headers,
                protocol="HTTP/1.1",
            )
            record = writer.create_warc_record(
                r["url"],
                "response",
                payload=BytesIO(r.get("body", b"")),
                http_headers=http_headers,
                warc_headers_dict={"WARC-Date": r.get("date", DEFAULT_DATE)},
            )
            writer.write_record(record)
    return str(path)

