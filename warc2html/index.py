import logging
from bisect import bisect_left
from datetime import datetime
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Union

from .errors import IndexFrozenError
from .paths import ensure_unique_path, path_from_url
from .resources import CaptureRecord, Resource
from .urls import make_url_key, resolve_reference

ERROR_STATUS = 400


# -------------------- Path map --------------------


class PathMap:
    """Case-insensitive path -> Resource mapping enumerated in sorted order."""

    def __init__(self) -> None:
        self._keys: List[str] = []
        self._items: Dict[str, Resource] = {}

    @staticmethod
    def _fold(path: str) -> str:
        return path.lower()

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self._fold(path) in self._items

    def __len__(self) -> int:
        return len(self._keys)

    def __getitem__(self, path: str) -> Resource:
        return self._items[self._fold(path)]

    def get(self, path: str) -> Optional[Resource]:
        return self._items.get(self._fold(path))

    def add(self, path: str, resource: Resource) -> None:
        key = self._fold(path)
        if key in self._items:
            raise KeyError(f"path already taken: {path}")
        self._keys.insert(bisect_left(self._keys, key), key)
        self._items[key] = resource

    def __iter__(self) -> Iterator[Resource]:
        for key in self._keys:
            yield self._items[key]


# -------------------- Resource index --------------------


Capture = Union[CaptureRecord, Resource]


def prefer_new(new: Capture, existing: Optional[Capture]) -> bool:
    # Real content beats a redirect; otherwise the later capture wins, and an
    # equal timestamp goes to the record processed last.
    if existing is None:
        return True
    if existing.is_redirect and not new.is_redirect:
        return True
    if new.is_redirect and not existing.is_redirect:
        return False
    return new.timestamp >= existing.timestamp


class ResourceIndex:
    def __init__(
        self,
        forced_extensions: Mapping[str, str],
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ):
        self.forced_extensions = forced_extensions
        self.after = after
        self.before = before
        self.by_path = PathMap()
        self._by_url_key: Dict[str, Resource] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def by_url_key(self) -> Mapping[str, Resource]:
        return MappingProxyType(self._by_url_key)

    def __len__(self) -> int:
        return len(self.by_path)

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.by_path)

    def accepts(self, record: CaptureRecord) -> bool:
        if record.status >= ERROR_STATUS:
            return False
        if self.after is not None and record.timestamp < self.after:
            return False
        if self.before is not None and record.timestamp >= self.before:
            return False
        return True

    def add(self, record: CaptureRecord) -> Optional[Resource]:
        if self._frozen:
            raise IndexFrozenError("cannot add records after redirect resolution")
        if not self.accepts(record):
            logging.debug(
                "rejected %s %s %s", record.status, record.timestamp, record.url
            )
            return None

        try:
            path = path_from_url(
                record.url, self.forced_extensions.get(record.media_type)
            )
            url_key = make_url_key(record.url)
        except ValueError as e:
            logging.warning("skipping unmappable url %s: %s", record.url, e)
            return None

        resource = Resource.from_record(record)
        resource.assign_path(ensure_unique_path(path, self.by_path))
        self.by_path.add(resource.path, resource)

        if prefer_new(resource, self._by_url_key.get(url_key)):
            self._by_url_key[url_key] = resource
        return resource

    def resolve_redirects(self) -> None:
        """Point each redirect's url key at its destination, then freeze.

        Only one hop is followed: a redirect whose destination is itself a
        redirect stays pointed at that second redirect.
        """
        if self._frozen:
            raise IndexFrozenError("redirects already resolved")
        resolved: Dict[str, Resource] = {}
        for key, resource in self._by_url_key.items():
            if resource.is_redirect:
                target = self._lookup_in(
                    self._by_url_key, resource.location, resource.url
                )
                if target is not None:
                    resource = target
            resolved[key] = resource
        self._by_url_key = resolved
        self._frozen = True

    @staticmethod
    def _lookup_in(
        by_url_key: Mapping[str, Resource], url: Optional[str], base_url: Optional[str]
    ) -> Optional[Resource]:
        if not url:
            return None
        if base_url:
            url = resolve_reference(base_url, url)
            if url is None:
                return None
        try:
            return by_url_key.get(make_url_key(url))
        except ValueError:
            return None

    def lookup(self, url: str, base_url: Optional[str] = None) -> Optional[Resource]:
        return self._lookup_in(self._by_url_key, url, base_url)

    def resolve(self, url: str) -> Optional[str]:
        resource = self.lookup(url)
        return resource.path if resource is not None else None
