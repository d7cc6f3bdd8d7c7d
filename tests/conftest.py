import pytest
import httpx

from spanlight.api.deps import span_classifier
from spanlight.core import settings as settings_module
from spanlight.db.base import Base
from spanlight.db.session import get_engine, init_engine
from spanlight.main import app
from spanlight.services.contracts import LabelingRequest, LabelingResult
from spanlight.services.labeling_cache import reset_labeling_cache


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _use_test_db(tmp_path, monkeypatch):
    db_path = tmp_path / "test.db"
    database_url = f"sqlite+pysqlite:///{db_path}"

    monkeypatch.setattr(settings_module.settings, "database_url", database_url)
    monkeypatch.setattr(settings_module.settings, "db_auto_create", True)

    init_engine(database_url)
    Base.metadata.create_all(bind=get_engine())

    yield


@pytest.fixture(autouse=True)
def _fresh_labeling_cache():
    reset_labeling_cache()
    yield
    reset_labeling_cache()


class FakeClassifier:
    """Scripted classifier: returns canned spans, or raises, per call."""

    name = "fake"

    def __init__(self, spans=None, meta=None, error=None):
        self.spans = list(spans or [])
        self.meta = meta if meta is not None else {"version": "v1", "notes": ""}
        self.error = error
        self.requests: list[LabelingRequest] = []

    async def label(self, request, token=None):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return LabelingResult(spans=[dict(span) for span in self.spans], meta=dict(self.meta))


@pytest.fixture()
def classifier_factory():
    return FakeClassifier


@pytest.fixture()
def fake_classifier():
    classifier = FakeClassifier(
        spans=[
            {"text": "golden hour", "category": "lighting.timeOfDay", "confidence": 0.9, "start": 13, "end": 24},
            {"text": "cat", "category": "subject.identity", "confidence": 0.8, "start": 2, "end": 5},
        ]
    )
    app.dependency_overrides[span_classifier] = lambda: classifier
    yield classifier
    app.dependency_overrides.pop(span_classifier, None)


@pytest.fixture()
async def client():
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
