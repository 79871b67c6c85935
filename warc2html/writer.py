import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import PayloadUnavailable, Warc2HtmlError
from .index import ResourceIndex
from .paths import relativize
from .resources import Resource
from .rewrite import (
    CSS_TYPES,
    HTML_TYPES,
    redirect_page,
    rewrite_html,
    rewrite_stylesheet,
)
from .sources import PayloadFetcher

MANIFEST_NAME = "filelist.txt"


# -------------------- Rendering --------------------


def redirect_destination(resource: Resource, index: ResourceIndex) -> str:
    target = index.lookup(resource.location, resource.url)
    if target is None or target.path == resource.path:
        return resource.location
    return relativize(target.path, resource.path)


def render_resource(
    resource: Resource, index: ResourceIndex, fetcher: PayloadFetcher
) -> Tuple[bytes, int]:
    if resource.is_redirect:
        return redirect_page(redirect_destination(resource, index)), 0
    payload = fetcher.fetch(resource.locator)
    if resource.media_type in HTML_TYPES:
        return rewrite_html(payload, resource.url, resource.path, index.resolve)
    if resource.media_type in CSS_TYPES:
        css = rewrite_stylesheet(payload, resource.url, resource.path, index.resolve)
        return css, 0
    return payload, 0


# -------------------- Output --------------------


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def write_atomic(path: Path, data: bytes) -> None:
    ensure_parent_dir(path)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".w2h-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def output_path(out_root: Path, path: str) -> Optional[Path]:
    target = out_root / path
    root = out_root.resolve()
    resolved = target.resolve()
    if resolved == root or root not in resolved.parents:
        return None
    return target


def write_one(
    resource: Resource, index: ResourceIndex, fetcher: PayloadFetcher, out_root: Path
) -> Optional[int]:
    target = output_path(out_root, resource.path)
    if target is None:
        logging.warning("refusing path outside output root: %s", resource.path)
        return None
    try:
        data, links = render_resource(resource, index, fetcher)
        write_atomic(target, data)
    except PayloadUnavailable as e:
        logging.warning("payload unavailable for %s: %s", resource.url, e)
        return None
    except OSError as e:
        logging.warning("cannot write %s: %s", resource.path, e)
        return None
    except Exception as e:
        logging.warning("failed %s: %s", resource.url, e)
        return None
    logging.info(
        "%s %s %s %d", resource.path, resource.url, resource.media_type, links
    )
    return links


def plan_lines(index: ResourceIndex) -> List[str]:
    return [resource.manifest_line() for resource in index]


def write_manifest(
    index: ResourceIndex, out_root: Path, written: Dict[str, int]
) -> Path:
    path = out_root / MANIFEST_NAME
    with open(path, "w", encoding="utf-8", newline="") as f:
        for resource in index:
            if resource.path in written:
                f.write(resource.manifest_line() + "\r\n")
    return path


def write_site(
    index: ResourceIndex,
    fetcher: PayloadFetcher,
    out_root: Path,
    *,
    workers: int = 1,
) -> Dict[str, int]:
    """Write every resource in the index under out_root plus the manifest.

    Returns path -> links rewritten for each file written. Resources that fail
    are logged and left out of both the tree and the manifest.
    """
    if not index.frozen:
        raise Warc2HtmlError("resolve redirects before writing output")
    out_root.mkdir(parents=True, exist_ok=True)

    written: Dict[str, int] = {}
    resources = list(index)
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        future_map = {
            pool.submit(write_one, r, index, fetcher, out_root): r for r in resources
        }
        for fut in as_completed(future_map):
            r = future_map[fut]
            links = fut.result()
            if links is not None:
                written[r.path] = links

    write_manifest(index, out_root, written)
    logging.info(
        "wrote %d of %d resources to %s", len(written), len(resources), out_root
    )
    return written
