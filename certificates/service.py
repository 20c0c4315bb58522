"""
Основная бизнес-логика для выдачи и скачивания сертификатов участия.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from config.settings import Settings, get_settings
from .database import DatabaseManager, DatabaseRecordStore
from .exceptions import (
    BackendUnavailableError, CertificateError, CertificateNotFoundError,
    ConflictError, InvalidInputError, StorageError
)
from .generator import ReferenceIdGenerator
from .health import BackendHealthMonitor, BackendState
from .models import (
    DEFAULT_CERTIFICATE_TYPE, CertificateRecord, CertificateUser, GenerationResult, utc_now
)
from .storage import InMemoryRecordStore, RecordStore
from .validators import DataValidator

# Настройка логирования
logger = logging.getLogger(__name__)

T = TypeVar("T")


class CertificateService:
    """Сервис для работы с сертификатами участия."""

    def __init__(self, monitor: BackendHealthMonitor,
                 id_generator: Optional[ReferenceIdGenerator] = None,
                 validator: Optional[DataValidator] = None,
                 certificate_type: str = DEFAULT_CERTIFICATE_TYPE,
                 recent_limit: int = 10,
                 insert_max_attempts: int = 5):
        """
        Инициализация сервиса.

        Args:
            monitor: Монитор хранилищ, владелец активного хранилища
            id_generator: Генератор кодов сертификатов
            validator: Валидатор данных участника
            certificate_type: Тип выдаваемых сертификатов
            recent_limit: Сколько последних сертификатов показывать в статистике
            insert_max_attempts: Предел повторов вставки при конфликте кодов
        """
        self.monitor = monitor
        self.id_generator = id_generator or ReferenceIdGenerator()
        self.validator = validator or DataValidator()
        self.certificate_type = certificate_type
        self.recent_limit = recent_limit
        self.insert_max_attempts = insert_max_attempts

    async def generate(self, name: Optional[str], email: Optional[str]) -> GenerationResult:
        """
        Выдает сертификат участнику или возвращает уже выданный.

        Args:
            name: Имя участника
            email: Email участника

        Returns:
            GenerationResult: created=False если сертификат для email уже есть

        Raises:
            InvalidInputError: При некорректных имени или email
            ConflictError: Если исчерпаны повторы вставки
            GenerationExhaustedError: Если не удалось подобрать свободный код
            StorageError: При внутренней ошибке хранилища
        """
        clean_name, clean_email = self.validator.normalize_participant(name, email)
        logger.info(f"Генерация сертификата для {clean_email}")

        result = await self._run(
            "generate",
            lambda store: self._generate_on(store, clean_name, clean_email)
        )

        if result.created:
            logger.info(
                f"Сертификат {result.record.reference_id} создан для {clean_name} ({clean_email})"
            )
        else:
            logger.info(f"Сертификат для {clean_email} уже существует: {result.record.reference_id}")
        return result

    async def _generate_on(self, store: RecordStore, name: str, email: str) -> GenerationResult:
        existing = await store.find_by_email(email)
        if existing:
            return GenerationResult(created=False, record=existing)

        for attempt in range(1, self.insert_max_attempts + 1):
            reference_id = await self.id_generator.generate(store)
            record = CertificateRecord(
                reference_id=reference_id,
                user=CertificateUser(name=name, email=email),
                certificate_type=self.certificate_type,
                timestamp=utc_now(),
                downloaded=False,
                download_count=0
            )

            try:
                stored = await store.insert(record)
            except ConflictError:
                # Параллельный запрос успел занять email или код
                existing = await store.find_by_email(email)
                if existing:
                    return GenerationResult(created=False, record=existing)
                logger.warning(f"Конфликт кода {reference_id}, попытка {attempt}")
                continue

            return GenerationResult(created=True, record=stored)

        raise ConflictError(
            f"Не удалось сохранить сертификат для {email} за {self.insert_max_attempts} попыток"
        )

    async def get_for_download(self, reference_id: Optional[str]) -> CertificateRecord:
        """
        Находит сертификат по коду и отмечает скачивание.

        Ищет только в активном хранилище: сертификаты, созданные в другом
        хранилище, в этот момент не видны.

        Raises:
            InvalidInputError: Если код не передан
            CertificateNotFoundError: Если сертификата нет в активном хранилище
        """
        reference_id = (reference_id or "").strip()
        if not reference_id:
            raise InvalidInputError("Certificate ID is required")

        logger.info(f"Запрос на скачивание сертификата {reference_id}")

        record = await self._run(
            "get_for_download",
            lambda store: self._download_on(store, reference_id)
        )
        if record is None:
            logger.info(f"Сертификат {reference_id} не найден")
            raise CertificateNotFoundError("Certificate not found")

        return record

    async def _download_on(self, store: RecordStore, reference_id: str) -> Optional[CertificateRecord]:
        if await store.find_by_reference_id(reference_id) is None:
            return None
        return await store.mark_downloaded(reference_id)

    async def stats(self) -> Dict:
        """
        Получает статистику по сертификатам.

        Returns:
            Dict: total, downloaded, pending и последние сертификаты
        """
        async def collect(store: RecordStore) -> Dict:
            total = await store.count_total()
            downloaded = await store.count_downloaded()
            recent = await store.list_recent(self.recent_limit)
            return {
                "total": total,
                "downloaded": downloaded,
                "pending": total - downloaded,
                "recent": recent
            }

        return await self._run("stats", collect)

    async def list_all(self) -> List[CertificateRecord]:
        """Все сертификаты активного хранилища, новые первыми."""
        return await self._run("list_all", lambda store: store.list_all())

    def health(self) -> Dict:
        """Состояние сервиса и подключения к основному хранилищу."""
        state, store = self.monitor.selector.snapshot()
        return {
            "status": "ok",
            "message": "Simple Certificate Generator API is running",
            "backend_connectivity": state.value,
            "active_backend": store.name,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    async def _run(self, operation: str, action: Callable[[RecordStore], Awaitable[T]]) -> T:
        """
        Выполняет операцию на зафиксированном хранилище.

        Хранилище выбирается один раз на всю операцию. Если основное
        хранилище отвалилось посреди операции, монитор переключается
        на резервное и операция повторяется там целиком.
        """
        state, store = self.monitor.selector.snapshot()
        try:
            try:
                return await action(store)
            except BackendUnavailableError as e:
                if state is not BackendState.CONNECTED:
                    raise
                logger.warning(f"Операция {operation} прервана потерей БД: {e}")
                self.monitor.on_disconnected(str(e))
                return await action(self.monitor.fallback)
        except CertificateError:
            raise
        except Exception as e:
            logger.exception(f"Неожиданная ошибка при операции {operation}: {e}")
            raise StorageError(f"Ошибка при операции {operation}") from e


def create_certificate_service(settings: Optional[Settings] = None) -> CertificateService:
    """
    Собирает сервис: БД, резервное хранилище, монитор и генератор.

    Args:
        settings: Настройки, по умолчанию глобальные

    Returns:
        CertificateService: Сервис, монитор которого еще не запущен
    """
    settings = settings or get_settings()

    db_manager = DatabaseManager(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow
    )
    monitor = BackendHealthMonitor(
        durable=DatabaseRecordStore(db_manager),
        fallback=InMemoryRecordStore(),
        check_interval=settings.health_check_interval
    )
    id_generator = ReferenceIdGenerator(
        year=settings.certificate_year,
        max_attempts=settings.id_max_attempts
    )

    return CertificateService(
        monitor,
        id_generator=id_generator,
        certificate_type=settings.certificate_type,
        recent_limit=settings.recent_limit,
        insert_max_attempts=settings.insert_max_attempts
    )


# Глобальный экземпляр сервиса, создается при первом обращении
certificate_service: Optional[CertificateService] = None


def get_certificate_service() -> CertificateService:
    """Возвращает экземпляр сервиса сертификатов."""
    global certificate_service
    if certificate_service is None:
        certificate_service = create_certificate_service()
    return certificate_service
