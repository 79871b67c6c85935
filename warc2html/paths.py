import re
from typing import Container, Optional, Tuple

from .urls import split_url_for_path

BAD_FILENAME_CHARS_RE = re.compile(r'[\x00-\x1f<>:"/\\|?*]')
RESERVED_NAMES_RE = re.compile(
    r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])(?=$|\.)", re.IGNORECASE
)
DEFAULT_FILENAME = "index.html"


# -------------------- Filenames --------------------


def replace_bad_filename_chars(filename: str) -> str:
    filename = BAD_FILENAME_CHARS_RE.sub("_", filename)
    filename = RESERVED_NAMES_RE.sub(r"\1_", filename)
    if filename.endswith("."):
        filename += "_"
    return filename


def split_extension(path: str) -> Tuple[str, str]:
    slash = path.rfind("/")
    dot = path.rfind(".")
    if dot >= 0 and dot > slash:
        return path[:dot], path[dot:]
    return path, ""


# -------------------- Path mapping --------------------


def path_from_url(url: str, forced_extension: Optional[str] = None) -> str:
    """Map a captured URL to a relative output path.

    The result looks like ``host[;port]/dir/.../basename[;query]ext``. Distinct
    URLs can map to the same path, so callers must pass the result through
    :func:`ensure_unique_path`.
    """
    host, port, path, query = split_url_for_path(url)
    parts = [replace_bad_filename_chars(host)]
    if port is not None:
        parts.append(";" + str(port))
    parts.append("/")

    segments = path.split("/")
    for seg in segments[:-1]:
        if not seg:
            continue
        parts.append(replace_bad_filename_chars(seg))
        parts.append("/")

    filename = replace_bad_filename_chars(segments[-1]) or DEFAULT_FILENAME
    basename, extension = split_extension(filename)
    if forced_extension is not None:
        extension = "." + forced_extension

    parts.append(basename)
    if query is not None:
        parts.append(";" + replace_bad_filename_chars(query))
    parts.append(extension)
    return "".join(parts)


def ensure_unique_path(path: str, existing: Container[str]) -> str:
    # Suffixes depend on the order paths were assigned in; the same set of
    # inputs read in another order may get different ~N numbers.
    if path not in existing:
        return path
    basename, extension = split_extension(path)
    i = 1
    candidate = f"{basename}~{i}{extension}"
    while candidate in existing:
        i += 1
        candidate = f"{basename}~{i}{extension}"
    return candidate


# -------------------- Relative links --------------------


def relativize(path: str, base_path: str) -> str:
    segments = path.split("/")
    base_segments = base_path.split("/")

    # skip the common prefix
    i = 0
    while (
        i < len(segments)
        and i < len(base_segments)
        and segments[i] == base_segments[i]
    ):
        i += 1

    ups = max(0, len(base_segments) - 1 - i)
    return "../" * ups + "/".join(segments[i:])
