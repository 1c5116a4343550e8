import os
import sys
import pathlib
from collections import defaultdict

import pytest

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))
os.environ.setdefault('DATABASE_URL', 'sqlite://')

from invoicer import create_app, db  # noqa: E402
from invoicer.context import SessionContext  # noqa: E402
from invoicer.errors import ExtractionServiceError, UnsupportedFileError  # noqa: E402
from invoicer.ocr import OcrClient, is_supported_mime_type  # noqa: E402
from invoicer.payments import SimulatedGateway  # noqa: E402
from invoicer.structured import StructuredExtractor  # noqa: E402

SAMPLE_TEXT = (
    "Acme Corporation\n"
    "12 Moi Avenue, Nairobi\n"
    "Invoice Number: 10234\n"
    "Date: 2024-03-01\n"
    "Subtotal: 1,000.00\n"
    "Total: KES 1,160.00\n"
)


class FakeRedis:
    """Just enough of redis-py for retry counters and the poll queue."""

    def __init__(self):
        self.store = {}
        self.queues = defaultdict(list)
        self.zsets = defaultdict(dict)

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = str(value)

    def delete(self, key):
        self.store.pop(key, None)

    def rpush(self, name, value):
        self.queues[name].append(value)

    def lpush(self, name, value):
        self.queues[name].insert(0, value)

    def zadd(self, name, mapping):
        self.zsets[name].update(mapping)
        return len(mapping)

    def zrem(self, name, member):
        return 1 if self.zsets[name].pop(member, None) is not None else 0

    def zrangebyscore(self, name, low, high, start=None, num=None):
        items = sorted(self.zsets[name].items(), key=lambda kv: kv[1])
        due = [m for m, score in items if score <= float(high)]
        if start is not None and num is not None:
            due = due[start:start + num]
        return due


class StaticOcrClient(OcrClient):
    def __init__(self, text=SAMPLE_TEXT, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def extract_text(self, file_bytes, mime_type, filename="upload"):
        self.calls.append((filename, mime_type))
        if not is_supported_mime_type(mime_type):
            raise UnsupportedFileError()
        if self.error:
            raise self.error
        return self.text


class StaticExtractor(StructuredExtractor):
    def __init__(self, fields=None, error=None):
        self.fields = fields or {}
        self.error = error

    def extract(self, text):
        if self.error:
            raise self.error
        return dict(self.fields)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def gateway():
    return SimulatedGateway(succeed_after=3)


@pytest.fixture
def ocr_client():
    return StaticOcrClient()


@pytest.fixture
def extractor():
    return StaticExtractor(error=ExtractionServiceError('not configured'))


@pytest.fixture
def app(gateway, ocr_client, extractor, fake_redis):
    app = create_app(
        {
            'TESTING': True,
            'SECRET_KEY': 'test',
            'SQLALCHEMY_DATABASE_URI': 'sqlite://',
            'PAYMENT_POLL_INTERVAL': 0,
        },
        gateway=gateway,
        ocr_client=ocr_client,
        extractor=extractor,
        redis_conn=fake_redis,
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield SessionContext.open('user_test0001', app.config)
