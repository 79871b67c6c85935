from typing import Optional, Tuple
from urllib.parse import quote, urldefrag, urljoin, urlsplit

import surt

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}
PATH_SAFE = "/%!$&'()*+,;=:@~"
QUERY_SAFE = PATH_SAFE + "?"
UNFETCHABLE_PREFIXES = (
    "#",
    "mailto:",
    "tel:",
    "javascript:",
    "data:",
    "blob:",
    "about:",
)


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u or u.lower().startswith(UNFETCHABLE_PREFIXES):
        return False
    return True


def is_http_url(u: str) -> bool:
    return u.startswith(("http://", "https://"))


def resolve_reference(base_url: str, ref: str) -> Optional[str]:
    try:
        return urljoin(base_url, ref.strip())
    except ValueError:
        return None


# -------------------- Canonical keys --------------------


def make_url_key(url: str) -> str:
    """Aggressively canonicalized key identifying the same logical resource.

    Raises ValueError for URLs that cannot be canonicalized.
    """
    url, _ = urldefrag(url.strip())
    try:
        return surt.surt(url)
    except ValueError:
        raise
    except Exception as e:
        raise ValueError(f"cannot canonicalize {url!r}: {e}") from e


# -------------------- Decomposition --------------------


def _remove_dot_segments(path: str) -> str:
    segs = path.split("/")
    out = []
    for i, seg in enumerate(segs):
        last = i == len(segs) - 1
        if seg == ".":
            if last:
                out.append("")
        elif seg == "..":
            if len(out) > 1:
                out.pop()
            if last:
                out.append("")
        else:
            out.append(seg)
    return "/".join(out)


def split_url_for_path(url: str) -> Tuple[str, Optional[int], str, Optional[str]]:
    """Return (host, explicit non-default port, path, query-or-None).

    Raises ValueError for URLs without a host.
    """
    url, _ = urldefrag(url.strip())
    parts = urlsplit(url)
    host = parts.hostname or ""
    if not host:
        raise ValueError(f"no host in {url!r}")
    try:
        host = host.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    port = parts.port
    if port is not None and DEFAULT_PORTS.get(parts.scheme.lower()) == port:
        port = None
    path = _remove_dot_segments(parts.path or "/")
    if not path.startswith("/"):
        path = "/" + path
    path = quote(path, safe=PATH_SAFE)
    query = quote(parts.query, safe=QUERY_SAFE) if "?" in url else None
    return host, port, path, query
