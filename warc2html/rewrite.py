import html
import logging
import re
from typing import Callable, List, Optional, Tuple
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup
from bs4.dammit import UnicodeDammit

from .paths import relativize
from .urls import can_fetch_url, resolve_reference

HTML_TYPES = {"text/html", "application/xhtml+xml"}
CSS_TYPES = {"text/css"}

# Attributes whose value is a single URL, on whatever element they appear.
URI_ATTRIBUTES = (
    "href",
    "src",
    "action",
    "background",
    "cite",
    "classid",
    "codebase",
    "data",
    "longdesc",
    "profile",
    "usemap",
    "formaction",
    "icon",
    "manifest",
    "poster",
    "lowsrc",
    "dynsrc",
)
DROP_ON_REWRITE = ("integrity", "crossorigin")

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"(@import\s+)([\"'])([^\"']+)\2", re.IGNORECASE)
CSS_BARE_ESCAPE_RE = re.compile(r"([\"'()\s\\])")
SRCSET_SEPARATOR_RE = re.compile(r"[\s,]*")
SRCSET_URL_RE = re.compile(r"\S+")
# descriptors run to the next comma outside parentheses
SRCSET_DESCRIPTOR_RE = re.compile(r"(?:[^,(]|\([^)]*\)?)*")

Resolver = Callable[[str], Optional[str]]
UrlMapper = Callable[[str], Optional[str]]


# -------------------- URL mapping --------------------


def make_url_mapper(base_url: str, base_path: str, resolve: Resolver) -> UrlMapper:
    """Build ref -> replacement for links found in the resource at base_path.

    Returns None for references that are not archived, which callers leave
    as they are.
    """

    def map_url(ref: str) -> Optional[str]:
        if not can_fetch_url(ref):
            return None
        absu = resolve_reference(base_url, ref)
        if absu is None:
            return None
        _, frag = urldefrag(absu)
        target = resolve(absu)
        if target is None:
            return None
        rel = relativize(target, base_path)
        if frag:
            rel = f"{rel}#{frag}"
        return rel

    return map_url


# -------------------- CSS --------------------


def _css_escape(value: str, quote: str) -> str:
    if quote:
        return value.replace("\\", "\\\\").replace(quote, "\\" + quote)
    return CSS_BARE_ESCAPE_RE.sub(r"\\\1", value)


def rewrite_css(css_text: str, map_url: UrlMapper) -> str:
    def repl_url(m: re.Match) -> str:
        q = m.group(1) or ""
        u = m.group(2).strip()
        nu = map_url(u)
        if nu is None or nu == u:
            return m.group(0)
        return f"url({q}{_css_escape(nu, q)}{q})"

    def repl_import(m: re.Match) -> str:
        q = m.group(2)
        u = m.group(3).strip()
        nu = map_url(u)
        if nu is None or nu == u:
            return m.group(0)
        return f"{m.group(1)}{q}{_css_escape(nu, q)}{q}"

    t = CSS_URL_RE.sub(repl_url, css_text)
    return CSS_IMPORT_RE.sub(repl_import, t)


def rewrite_stylesheet(
    payload: bytes, base_url: str, base_path: str, resolve: Resolver
) -> bytes:
    dammit = UnicodeDammit(payload, ["utf-8"])
    if dammit.unicode_markup is None:
        return payload
    encoding = dammit.original_encoding or "utf-8"
    text = rewrite_css(
        dammit.unicode_markup, make_url_mapper(base_url, base_path, resolve)
    )
    return text.encode(encoding)


# -------------------- HTML --------------------


def bs4_parse(markup: bytes) -> BeautifulSoup:
    try:
        return BeautifulSoup(markup, "lxml")
    except Exception:
        return BeautifulSoup(markup, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"])
    return fallback


def serialize_html(soup: BeautifulSoup) -> bytes:
    return soup.encode(soup.original_encoding or "utf-8", formatter="html")


def split_srcset(srcset: str) -> List[Tuple[str, str]]:
    """Split a srcset value into (url, descriptors) candidates.

    A URL runs to the next whitespace, so commas inside it are kept; trailing
    commas end the candidate instead.
    """
    candidates: List[Tuple[str, str]] = []
    pos = 0
    while True:
        pos = SRCSET_SEPARATOR_RE.match(srcset, pos).end()
        if pos >= len(srcset):
            return candidates
        m = SRCSET_URL_RE.match(srcset, pos)
        url, pos = m.group(0), m.end()
        descriptors = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            m = SRCSET_DESCRIPTOR_RE.match(srcset, pos)
            descriptors, pos = " ".join(m.group(0).split()), m.end()
        candidates.append((url, descriptors))


def rewrite_srcset(srcset: str, map_url: UrlMapper) -> Optional[str]:
    parts: List[Tuple[str, str]] = []
    mapped_any = False
    for url_part, desc in split_srcset(srcset):
        mapped = map_url(url_part)
        if mapped is not None and mapped != url_part:
            mapped_any = True
            url_part = mapped
        parts.append((url_part, desc))
    if not mapped_any:
        return None
    return ", ".join(f"{u} {d}".strip() for u, d in parts if u)


def rewrite_inline_css(soup: BeautifulSoup, map_url: UrlMapper) -> None:
    for tag in soup.select("[style]"):
        css = tag.get("style")
        if not css:
            continue
        new_css = rewrite_css(css, map_url)
        if new_css != css:
            tag["style"] = new_css
    for style in soup.find_all("style"):
        if style.string:
            new_text = rewrite_css(style.string, map_url)
            if new_text != style.string:
                # keep the string class so the content is not entity-escaped
                style.string.replace_with(type(style.string)(new_text))


def rewrite_html(
    payload: bytes, base_url: str, base_path: str, resolve: Resolver
) -> Tuple[bytes, int]:
    """Rewrite links in an HTML document to relative output paths.

    Returns the serialized document and the number of URL attributes that were
    changed. References inside stylesheets are rewritten but not counted.
    """
    soup = bs4_parse(payload)
    base = effective_base_url(soup, base_url)
    map_url = make_url_mapper(base, base_path, resolve)
    links_rewritten = 0

    for tag in soup.find_all(True):
        if tag.name == "base":
            # output paths are relative to the file, not the original base
            if "href" in tag.attrs:
                del tag.attrs["href"]
            continue
        changed = False
        for attr in URI_ATTRIBUTES:
            val = tag.get(attr)
            if not isinstance(val, str):
                continue
            mapped = map_url(val)
            if mapped is None or mapped == val:
                continue
            tag[attr] = mapped
            links_rewritten += 1
            changed = True
        srcset = tag.get("srcset")
        if isinstance(srcset, str) and srcset.strip():
            new_srcset = rewrite_srcset(srcset, map_url)
            if new_srcset is not None:
                tag["srcset"] = new_srcset
                links_rewritten += 1
                changed = True
        if changed:
            for rm in DROP_ON_REWRITE:
                if rm in tag.attrs:
                    del tag.attrs[rm]

    rewrite_inline_css(soup, map_url)
    logging.debug("rewrote %d links in %s", links_rewritten, base_url)
    return serialize_html(soup), links_rewritten


# -------------------- Redirects --------------------


def redirect_page(destination: str) -> bytes:
    return (
        '<meta http-equiv="refresh" content="0; url=%s">\n'
        % html.escape(destination, quote=True)
    ).encode("utf-8")
