import fakeredis
import pytest

from app import create_app
from config import Config
from store import FileRecordStore, RedisRecordStore

TOKEN = "s3cret-token"


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "icecream.db")


@pytest.fixture
def file_store(db_path):
    store = FileRecordStore(db_path, timeout=0.2)
    yield store
    store.close()


@pytest.fixture
def redis_store():
    store = RedisRecordStore(fakeredis.FakeRedis())
    yield store
    store.close()


@pytest.fixture(params=["file", "redis"])
def store(request):
    """Each store test runs once per backend."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def config(db_path):
    return Config(token=TOKEN, db_path=db_path)


@pytest.fixture
def client(config, file_store):
    """Create a Flask test client."""
    app = create_app(config, file_store)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def post_command(client):
    def _post(text, token=TOKEN, **fields):
        return client.post("/", data={"token": token, "text": text, **fields})
    return _post
