import pytest

from warc2html.index import ResourceIndex
from warc2html.settings import load_forced_extensions


@pytest.fixture
def forced_extensions():
    return load_forced_extensions()


@pytest.fixture
def index(forced_extensions):
    return ResourceIndex(forced_extensions)
