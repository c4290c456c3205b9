import pytest

from visit_counter.app import create_app
from visit_counter.store import VisitStore


@pytest.fixture
def stats_path(tmp_path):
    return tmp_path / "stats.json"


@pytest.fixture
def store(stats_path):
    s = VisitStore(stats_path)
    s.load()
    return s


@pytest.fixture
def app(store):
    app = create_app(store)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
