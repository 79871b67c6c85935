from .errors import ConfigError, IndexFrozenError, PayloadUnavailable, Warc2HtmlError
from .index import ResourceIndex
from .paths import path_from_url, relativize, replace_bad_filename_chars
from .resources import CaptureRecord, PayloadLocator, Resource
from .rewrite import rewrite_css, rewrite_html
from .settings import Settings, load_forced_extensions

__version__ = "0.1.0"

__all__ = [
    "CaptureRecord",
    "ConfigError",
    "IndexFrozenError",
    "PayloadLocator",
    "PayloadUnavailable",
    "Resource",
    "ResourceIndex",
    "Settings",
    "Warc2HtmlError",
    "load_forced_extensions",
    "path_from_url",
    "relativize",
    "replace_bad_filename_chars",
    "rewrite_css",
    "rewrite_html",
]
