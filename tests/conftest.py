"""
Общие фикстуры для тестов
"""
from datetime import datetime, timedelta, timezone

import pytest

from certificates.database import DatabaseManager, DatabaseRecordStore
from certificates.exceptions import BackendUnavailableError
from certificates.generator import ReferenceIdGenerator
from certificates.health import BackendHealthMonitor
from certificates.models import CertificateRecord, CertificateUser
from certificates.service import CertificateService
from certificates.storage import InMemoryRecordStore


class FlakyStore(InMemoryRecordStore):
    """Хранилище в памяти, которое можно «отключить» как БД"""

    name = "flaky"

    def __init__(self):
        super().__init__()
        self.available = True

    def _check(self):
        if not self.available:
            raise BackendUnavailableError("connection refused")

    async def connect(self):
        self._check()

    async def ping(self):
        self._check()

    async def find_by_email(self, email):
        self._check()
        return await super().find_by_email(email)

    async def find_by_reference_id(self, reference_id):
        self._check()
        return await super().find_by_reference_id(reference_id)

    async def insert(self, record):
        self._check()
        return await super().insert(record)

    async def mark_downloaded(self, reference_id):
        self._check()
        return await super().mark_downloaded(reference_id)

    async def count_total(self):
        self._check()
        return await super().count_total()

    async def count_downloaded(self):
        self._check()
        return await super().count_downloaded()

    async def list_recent(self, limit):
        self._check()
        return await super().list_recent(limit)

    async def list_all(self):
        self._check()
        return await super().list_all()


@pytest.fixture
def record_factory():
    """Фабрика записей о сертификатах"""
    base_time = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)

    def make(reference_id="CSAC2025-AAAAA", name="Ada Lovelace",
             email="ada@example.com", minutes=0, **kwargs):
        return CertificateRecord(
            reference_id=reference_id,
            user=CertificateUser(name=name, email=email),
            timestamp=base_time + timedelta(minutes=minutes),
            **kwargs
        )

    return make


@pytest.fixture
def sample_record(record_factory):
    """Образец сертификата для тестов"""
    return record_factory()


@pytest.fixture
async def db_store(tmp_path):
    """Хранилище на SQLite через тот же асинхронный SQLAlchemy"""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'certificates.db'}")
    store = DatabaseRecordStore(manager)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def durable_store():
    return FlakyStore()


@pytest.fixture
def fallback_store():
    return InMemoryRecordStore()


@pytest.fixture
def monitor(durable_store, fallback_store):
    return BackendHealthMonitor(durable_store, fallback_store, check_interval=0.01)


@pytest.fixture
def service(monitor):
    return CertificateService(monitor, id_generator=ReferenceIdGenerator(year=2025))
