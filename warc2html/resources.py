from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from warcio.timeutils import datetime_to_timestamp

UNKNOWN_TYPE = "application/octet-stream"


def is_redirect(status: int, location: Optional[str]) -> bool:
    return 300 <= status <= 399 and location is not None


@dataclass(frozen=True)
class PayloadLocator:
    container: str
    offset: int = 0
    length: int = 0  # 0 means read to the end of the container


@dataclass(frozen=True)
class CaptureRecord:
    url: str
    timestamp: datetime
    status: int
    media_type: str
    locator: PayloadLocator
    location: Optional[str] = None

    @property
    def is_redirect(self) -> bool:
        return is_redirect(self.status, self.location)


@dataclass
class Resource:
    url: str
    timestamp: datetime
    status: int
    media_type: str
    locator: PayloadLocator
    location: Optional[str] = None
    path: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_record(cls, record: CaptureRecord) -> "Resource":
        return cls(
            url=record.url,
            timestamp=record.timestamp,
            status=record.status,
            media_type=record.media_type,
            locator=record.locator,
            location=record.location,
        )

    @property
    def is_redirect(self) -> bool:
        return is_redirect(self.status, self.location)

    def assign_path(self, path: str) -> None:
        if self.path is not None:
            raise ValueError(f"path already assigned: {self.path}")
        self.path = path

    def manifest_line(self) -> str:
        return " ".join(
            [
                self.path or "",
                datetime_to_timestamp(self.timestamp),
                self.url,
                self.media_type,
                str(self.status),
                self.location if self.location is not None else "-",
            ]
        )


def base_media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return UNKNOWN_TYPE
    ct = content_type.split(";")[0].strip().lower()
    if "/" not in ct:
        return UNKNOWN_TYPE
    return ct
