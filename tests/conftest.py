import pytest

import db
from config import AppConfiguration


class FakeChatModel:
    """Stands in for ChatOpenAI: replays one list of chunks per model step."""

    def __init__(self, steps, error=None):
        self.steps = list(steps)
        self.error = error
        self.calls = []
        self.bound_tools = None

    def bind_tools(self, tools):
        self.bound_tools = tools
        return self

    async def astream(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        chunks = self.steps.pop(0) if self.steps else []
        for chunk in chunks:
            yield chunk


@pytest.fixture(autouse=True)
def _reset_db_client():
    db.reset_client()
    yield
    db.reset_client()


@pytest.fixture
def sample_db(tmp_path):
    path = tmp_path / "sales.db"
    db.init_schema(str(path), seed=True)
    return path


@pytest.fixture
def app_config(sample_db):
    return AppConfiguration(database_url=str(sample_db))
