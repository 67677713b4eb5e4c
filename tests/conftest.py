"""Pytest fixtures shared across all test modules."""

import json

import pytest

from notebook_bind import Cell, CellType, Notebook, SessionRegistry
from notebook_bind.config import ServerOptions
from notebook_bind.web import create_app


SLIDER_CELLS = [
    ("c_import", "from notebook_bind.widgets import bind, Slider"),
    ("c_x", "x = bind(Slider(1, 10))"),
    ("c_y", "y = x ** 2\ny"),
    ("c_z", "z = y + 1\nz"),
    ("c_w", "w = 100"),
]


def build_notebook(cells, name="test", markdown=None) -> Notebook:
    """Notebook with the given (cell_id, source) code cells."""
    nb = Notebook(metadata={"name": name})
    for cell_id, source in cells:
        nb.add_cell(Cell(id=cell_id, type=CellType.CODE, source=source))
    if markdown is not None:
        nb.add_cell(Cell(id="c_md", type=CellType.MARKDOWN, source=markdown))
    return nb


def notebook_bytes(cells, name="test", markdown=None) -> bytes:
    return json.dumps(build_notebook(cells, name, markdown).to_dict()).encode("utf-8")


@pytest.fixture
def slider_source() -> bytes:
    return notebook_bytes(SLIDER_CELLS, name="slider", markdown="# Squares")


@pytest.fixture
def registry(slider_source):
    """Registry with the slider notebook and a second, independent copy."""
    other = notebook_bytes(SLIDER_CELLS, name="other")
    return SessionRegistry.load([("slider.nblr", slider_source), ("other.nblr", other)])


@pytest.fixture
def slider_session(registry, slider_source):
    from notebook_bind.session import content_hash
    return registry.lookup(content_hash(slider_source))


@pytest.fixture
def other_session(registry, slider_session):
    return next(s for s in registry if s is not slider_session)


@pytest.fixture
def client(registry):
    """Flask test client serving the registry."""
    app = create_app(ServerOptions(), registry)
    app.config["TESTING"] = True
    return app.test_client()
