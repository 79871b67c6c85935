class Warc2HtmlError(Exception):
    pass


class ConfigError(Warc2HtmlError):
    """Bad or missing configuration. Aborts the run."""


class PayloadUnavailable(Warc2HtmlError):
    """A capture's payload could not be re-read from its source."""


class IndexFrozenError(Warc2HtmlError):
    """The resource index was modified after redirect resolution."""
