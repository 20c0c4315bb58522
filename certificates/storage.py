"""
Модуль для работы с хранилищем сертификатов: общий контракт и резервное
хранилище в памяти.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .exceptions import ConflictError
from .models import CertificateRecord

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Контракт хранилища сертификатов, общий для БД и памяти."""

    name = "abstract"

    async def connect(self) -> None:
        """Подключение к хранилищу"""

    async def ping(self) -> None:
        """Проверка доступности хранилища"""

    async def close(self) -> None:
        """Освобождение ресурсов хранилища"""

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[CertificateRecord]:
        """Поиск сертификата по email"""

    @abstractmethod
    async def find_by_reference_id(self, reference_id: str) -> Optional[CertificateRecord]:
        """Поиск сертификата по коду"""

    @abstractmethod
    async def insert(self, record: CertificateRecord) -> CertificateRecord:
        """
        Сохранение нового сертификата

        Raises:
            ConflictError: Если reference_id или email уже заняты
        """

    @abstractmethod
    async def mark_downloaded(self, reference_id: str) -> Optional[CertificateRecord]:
        """Отметка о скачивании и увеличение счетчика"""

    @abstractmethod
    async def count_total(self) -> int:
        """Общее количество сертификатов"""

    @abstractmethod
    async def count_downloaded(self) -> int:
        """Количество скачанных сертификатов"""

    @abstractmethod
    async def list_recent(self, limit: int) -> List[CertificateRecord]:
        """Последние сертификаты, новые первыми"""

    @abstractmethod
    async def list_all(self) -> List[CertificateRecord]:
        """Все сертификаты, новые первыми"""


class InMemoryRecordStore(RecordStore):
    """
    Резервное хранилище в памяти процесса.

    Данные теряются при перезапуске. Ни один метод не уступает управление
    event loop, поэтому проверка уникальности и вставка выполняются
    как один шаг.
    """

    name = "in_memory"

    def __init__(self):
        self._records: List[CertificateRecord] = []
        self._by_reference_id: Dict[str, CertificateRecord] = {}
        self._by_email: Dict[str, CertificateRecord] = {}

    async def find_by_email(self, email: str) -> Optional[CertificateRecord]:
        record = self._by_email.get(email)
        return record.model_copy(deep=True) if record else None

    async def find_by_reference_id(self, reference_id: str) -> Optional[CertificateRecord]:
        record = self._by_reference_id.get(reference_id)
        return record.model_copy(deep=True) if record else None

    async def insert(self, record: CertificateRecord) -> CertificateRecord:
        if record.reference_id in self._by_reference_id:
            raise ConflictError(f"Сертификат с ID {record.reference_id} уже существует")
        if record.user.email in self._by_email:
            raise ConflictError(f"Сертификат для {record.user.email} уже существует")

        stored = record.model_copy(deep=True)
        self._records.append(stored)
        self._by_reference_id[stored.reference_id] = stored
        self._by_email[stored.user.email] = stored

        logger.debug(f"Сертификат {stored.reference_id} сохранен в памяти")
        return stored.model_copy(deep=True)

    async def mark_downloaded(self, reference_id: str) -> Optional[CertificateRecord]:
        record = self._by_reference_id.get(reference_id)
        if record is None:
            return None

        record.downloaded = True
        record.download_count += 1
        return record.model_copy(deep=True)

    async def count_total(self) -> int:
        return len(self._records)

    async def count_downloaded(self) -> int:
        return sum(1 for record in self._records if record.downloaded)

    async def list_recent(self, limit: int) -> List[CertificateRecord]:
        return [record.model_copy(deep=True) for record in self._sorted()[:max(limit, 0)]]

    async def list_all(self) -> List[CertificateRecord]:
        return [record.model_copy(deep=True) for record in self._sorted()]

    def _sorted(self) -> List[CertificateRecord]:
        # При равном timestamp первой идет более поздняя вставка
        return sorted(reversed(self._records), key=lambda r: r.timestamp, reverse=True)
