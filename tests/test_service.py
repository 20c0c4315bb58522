"""
Тесты для сервиса сертификатов
"""
import asyncio
import re
from unittest.mock import AsyncMock

import pytest

from certificates.exceptions import (
    CertificateNotFoundError, ConflictError, InvalidInputError, StorageError
)
from certificates.generator import ReferenceIdGenerator
from certificates.health import BackendHealthMonitor, BackendState
from certificates.service import CertificateService, create_certificate_service
from certificates.storage import InMemoryRecordStore
from config.settings import Settings


class SlowLookupStore(InMemoryRecordStore):
    """Ответ на поиск по email приходит с задержкой, как по сети"""

    async def find_by_email(self, email):
        record = await super().find_by_email(email)
        await asyncio.sleep(0)
        return record


class TestGenerate:
    """Тесты выдачи сертификатов"""

    async def test_generate_normalizes_input(self, service):
        """Имя и email нормализуются"""
        result = await service.generate("Ada Lovelace", "ADA@Example.com ")

        assert result.created is True
        assert result.record.user.email == "ada@example.com"
        assert result.record.user.name == "Ada Lovelace"
        assert result.record.certificate_type == "Attended"
        assert result.record.downloaded is False
        assert result.record.download_count == 0
        assert re.fullmatch(r"CSAC2025-[0-9A-Z]{5}", result.record.reference_id)

    async def test_generate_is_idempotent_per_email(self, service):
        """Повторный запрос с тем же email возвращает существующий сертификат"""
        first = await service.generate("Ada Lovelace", "ada@example.com")
        second = await service.generate("Ada King", "  ADA@EXAMPLE.COM")

        assert second.created is False
        assert second.record.reference_id == first.record.reference_id
        assert second.record.user.name == "Ada Lovelace"

    async def test_generate_empty_name(self, service):
        with pytest.raises(InvalidInputError):
            await service.generate("", "x@y.com")

    async def test_generate_invalid_email(self, service):
        with pytest.raises(InvalidInputError):
            await service.generate("Bob", "not-an-email")

    async def test_invalid_input_never_reaches_store(self, fallback_store, monitor):
        """Некорректные данные не доходят до хранилища"""
        fallback_store.find_by_email = AsyncMock()
        service = CertificateService(monitor)

        with pytest.raises(InvalidInputError):
            await service.generate("Bob", "not-an-email")

        fallback_store.find_by_email.assert_not_awaited()

    async def test_unique_reference_ids(self, service, fallback_store):
        """Коды уникальны в пределах хранилища"""
        for i in range(50):
            await service.generate(f"User {i}", f"user{i}@example.com")

        records = await fallback_store.list_all()
        assert len(records) == 50
        assert len({r.reference_id for r in records}) == 50

    async def test_concurrent_same_email(self, durable_store):
        """Параллельные запросы с одним email создают одну запись"""
        store = SlowLookupStore()
        monitor = BackendHealthMonitor(durable_store, store)
        service = CertificateService(monitor)

        first, second = await asyncio.gather(
            service.generate("Ada Lovelace", "ada@example.com"),
            service.generate("Ada Lovelace", "ada@example.com"),
        )

        assert sorted([first.created, second.created]) == [False, True]
        assert first.record.reference_id == second.record.reference_id
        assert await store.count_total() == 1

    async def test_conflict_retries_exhausted(self, monitor, fallback_store):
        """Постоянный конфликт кодов приводит к ConflictError"""
        fallback_store.insert = AsyncMock(side_effect=ConflictError("duplicate"))
        service = CertificateService(monitor, insert_max_attempts=3)

        with pytest.raises(ConflictError):
            await service.generate("Ada Lovelace", "ada@example.com")

        assert fallback_store.insert.await_count == 3

    async def test_conflict_then_success(self, monitor, fallback_store):
        """Конфликт кода повторяется с новым кодом"""
        original_insert = fallback_store.insert
        attempts = []

        async def insert(record):
            attempts.append(record.reference_id)
            if len(attempts) == 1:
                raise ConflictError("duplicate")
            return await original_insert(record)

        fallback_store.insert = insert
        service = CertificateService(monitor)

        result = await service.generate("Ada Lovelace", "ada@example.com")

        assert result.created is True
        assert len(attempts) == 2
        assert result.record.reference_id == attempts[1]
        assert await fallback_store.count_total() == 1

    async def test_unexpected_error_is_translated(self, monitor, fallback_store):
        """Сырые ошибки хранилища не выходят за пределы сервиса"""
        fallback_store.find_by_email = AsyncMock(side_effect=RuntimeError("driver exploded"))
        service = CertificateService(monitor)

        with pytest.raises(StorageError) as exc_info:
            await service.generate("Ada Lovelace", "ada@example.com")

        assert "driver exploded" not in str(exc_info.value)


class TestDownload:
    """Тесты скачивания сертификатов"""

    async def test_download_counts(self, service):
        """N скачиваний дают download_count == N"""
        created = await service.generate("Ada Lovelace", "ada@example.com")
        reference_id = created.record.reference_id

        for expected in range(1, 4):
            record = await service.get_for_download(reference_id)
            assert record.downloaded is True
            assert record.download_count == expected

    async def test_download_not_found(self, service):
        with pytest.raises(CertificateNotFoundError):
            await service.get_for_download("CSAC2025-ZZZZZ")

    async def test_download_requires_id(self, service):
        for reference_id in (None, "", "   "):
            with pytest.raises(InvalidInputError):
                await service.get_for_download(reference_id)


class TestStatistics:
    """Тесты статистики и списков"""

    async def test_stats(self, monitor):
        service = CertificateService(monitor, recent_limit=2)
        ids = []
        for i in range(3):
            result = await service.generate(f"User {i}", f"user{i}@example.com")
            ids.append(result.record.reference_id)
        await service.get_for_download(ids[0])

        stats = await service.stats()

        assert stats["total"] == 3
        assert stats["downloaded"] == 1
        assert stats["pending"] == 2
        assert len(stats["recent"]) == 2
        assert stats["recent"][0].timestamp >= stats["recent"][1].timestamp

    async def test_list_all(self, service):
        await service.generate("Ada Lovelace", "ada@example.com")
        await service.generate("Bob", "bob@example.com")

        records = await service.list_all()

        assert [r.user.email for r in records] == ["bob@example.com", "ada@example.com"]

    async def test_empty_stats(self, service):
        stats = await service.stats()

        assert stats == {"total": 0, "downloaded": 0, "pending": 0, "recent": []}


class TestFailover:
    """Тесты переключения между хранилищами"""

    async def test_generate_after_disconnect(self, service, monitor, durable_store, fallback_store):
        """После потери БД выдача продолжается в резервном хранилище"""
        await monitor.check()
        durable = await service.generate("Ada Lovelace", "ada@example.com")
        assert await durable_store.count_total() == 1

        durable_store.available = False
        await monitor.check()
        fallback = await service.generate("Bob", "bob@example.com")

        assert fallback.created is True
        assert await fallback_store.count_total() == 1

        # Сертификат из резервного хранилища доступен, пока БД недоступна
        record = await service.get_for_download(fallback.record.reference_id)
        assert record.download_count == 1

        # Сертификат из БД в этот момент не виден
        with pytest.raises(CertificateNotFoundError):
            await service.get_for_download(durable.record.reference_id)

    async def test_mid_operation_failure_switches_backend(self, service, monitor,
                                                          durable_store, fallback_store):
        """Ошибка соединения во время операции переключает на резервное хранилище"""
        await monitor.check()
        assert monitor.is_connected

        durable_store.available = False
        result = await service.generate("Ada Lovelace", "ada@example.com")

        assert result.created is True
        assert monitor.state is BackendState.DISCONNECTED
        assert await fallback_store.find_by_email("ada@example.com") is not None

    async def test_retry_uses_fallback_even_after_quick_reconnect(self, service, monitor,
                                                                durable_store, fallback_store):
        """Повтор идет в резервное хранилище, даже если монитор уже переподключился"""
        monitor.on_connected()
        mark_disconnected = monitor.on_disconnected

        def disconnect_and_reconnect(reason):
            mark_disconnected(reason)
            monitor.on_connected()

        monitor.on_disconnected = disconnect_and_reconnect
        durable_store.available = False

        result = await service.generate("Ada Lovelace", "ada@example.com")

        assert result.created is True
        assert await fallback_store.count_total() == 1

    async def test_no_replication_after_reconnect(self, service, monitor, durable_store):
        """После восстановления БД записи из резервного хранилища не видны"""
        durable_store.available = False
        offline = await service.generate("Ada Lovelace", "ada@example.com")

        durable_store.available = True
        await monitor.check()
        assert monitor.is_connected

        with pytest.raises(CertificateNotFoundError):
            await service.get_for_download(offline.record.reference_id)

        again = await service.generate("Ada Lovelace", "ada@example.com")
        assert again.created is True
        assert await durable_store.count_total() == 1

    def test_health(self, service, monitor):
        health = service.health()

        assert health["status"] == "ok"
        assert health["backend_connectivity"] == "disconnected"
        assert health["active_backend"] == "in_memory"

        monitor.on_connected()
        assert service.health()["backend_connectivity"] == "connected"


class TestDatabaseBackedService:
    """Сервис поверх настоящей БД (SQLite)"""

    async def test_generate_and_download(self, db_store):
        monitor = BackendHealthMonitor(db_store, InMemoryRecordStore())
        service = CertificateService(monitor, id_generator=ReferenceIdGenerator(year=2025))
        await monitor.check()
        assert monitor.is_connected

        created = await service.generate("Ada Lovelace", "ADA@Example.com ")
        repeated = await service.generate("Ada Lovelace", "ada@example.com")
        downloaded = await service.get_for_download(created.record.reference_id)

        assert repeated.created is False
        assert repeated.record.reference_id == created.record.reference_id
        assert downloaded.download_count == 1
        assert await db_store.count_total() == 1

    async def test_concurrent_same_email(self, db_store):
        """Уникальный индекс в БД не дает создать дубликат"""
        monitor = BackendHealthMonitor(db_store, InMemoryRecordStore())
        service = CertificateService(monitor)
        await monitor.check()

        results = await asyncio.gather(*[
            service.generate("Ada Lovelace", "ada@example.com") for _ in range(3)
        ])

        assert sum(result.created for result in results) == 1
        assert len({result.record.reference_id for result in results}) == 1
        assert await db_store.count_total() == 1


class TestServiceFactory:
    """Тесты сборки сервиса из настроек"""

    def test_create_from_settings(self, tmp_path):
        settings = Settings(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'certificates.db'}",
            certificate_year=2025,
            certificate_type="Speaker",
            recent_limit=5,
            health_check_interval=1.5
        )

        service = create_certificate_service(settings)

        assert service.id_generator.prefix == "CSAC2025-"
        assert service.certificate_type == "Speaker"
        assert service.recent_limit == 5
        assert service.monitor.check_interval == 1.5
        assert service.monitor.state is BackendState.DISCONNECTED
