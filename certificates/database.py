"""
Модели SQLAlchemy и основное (постоянное) хранилище сертификатов.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timezone
from typing import AsyncGenerator, List, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Index, Integer, String, func, select, text, update
)
from sqlalchemy.exc import (
    DBAPIError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .exceptions import BackendUnavailableError, ConflictError, StorageError
from .models import CertificateRecord, CertificateUser
from .storage import RecordStore

logger = logging.getLogger(__name__)

# Базовый класс для моделей
Base = declarative_base()


class CertificateRow(Base):
    """Модель сертификата в БД."""

    __tablename__ = "simple_certificates"

    # Порядковый номер вставки, нужен для стабильной сортировки
    id = Column(Integer, primary_key=True, autoincrement=True)
    reference_id = Column(String(16), nullable=False)
    user_name = Column(String(255), nullable=False)
    user_email = Column(String(320), nullable=False)
    certificate_type = Column(String(50), nullable=False, default="Attended")
    timestamp = Column(DateTime(timezone=True), nullable=False)
    downloaded = Column(Boolean, nullable=False, default=False)
    download_count = Column(Integer, nullable=False, default=0)

    # Метаданные
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
                        nullable=False)

    # Уникальность обеспечивается на уровне хранилища
    __table_args__ = (
        Index('idx_certificate_reference_id', 'reference_id', unique=True),
        Index('idx_certificate_user_email', 'user_email', unique=True),
        Index('idx_certificate_timestamp', 'timestamp'),
    )

    def __repr__(self):
        return f"<CertificateRow(reference_id={self.reference_id}, email={self.user_email})>"

    def to_record(self) -> CertificateRecord:
        """Конвертирует строку БД в модель записи."""
        timestamp = self.timestamp
        # SQLite не хранит часовой пояс
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return CertificateRecord(
            reference_id=self.reference_id,
            user=CertificateUser(name=self.user_name, email=self.user_email),
            certificate_type=self.certificate_type,
            timestamp=timestamp,
            downloaded=bool(self.downloaded),
            download_count=self.download_count
        )


class DatabaseManager:
    """Менеджер подключения к базе данных."""

    def __init__(self, database_url: str, pool_size: int = 5, max_overflow: int = 10):
        """
        Инициализация менеджера БД.

        Args:
            database_url: URL подключения к БД (postgresql+asyncpg://...)
            pool_size: Размер пула соединений
            max_overflow: Дополнительные соединения сверх пула
        """
        engine_options = {"pool_pre_ping": True, "echo": False}
        if not database_url.startswith("sqlite"):
            engine_options.update(pool_size=pool_size, max_overflow=max_overflow, pool_recycle=3600)

        self.database_url = database_url
        self.engine = create_async_engine(database_url, **engine_options)
        self.SessionLocal = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_tables(self):
        """Создает таблицы, если их еще нет."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Таблицы базы данных проверены")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Сессия с откатом транзакции при ошибке."""
        session = self.SessionLocal()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def dispose(self):
        await self.engine.dispose()


# SQLSTATE, при которых БД недоступна целиком, а не отклонила запрос
_UNAVAILABLE_SQLSTATES = ("08", "28", "53300", "57P")


def _sqlstate(error: DBAPIError) -> Optional[str]:
    """Код SQLSTATE исходной ошибки драйвера, если он есть."""
    for source in (error.orig, getattr(error.orig, "__cause__", None)):
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if code:
            return str(code)
    return None


def _is_connection_error(error: Exception) -> bool:
    """Ошибка связана с потерей соединения, а не с данными."""
    if isinstance(error, (OperationalError, InterfaceError, OSError, asyncio.TimeoutError)):
        return True
    if not isinstance(error, DBAPIError):
        return False
    if error.connection_invalidated:
        return True
    code = _sqlstate(error)
    return code is not None and code.startswith(_UNAVAILABLE_SQLSTATES)


class DatabaseRecordStore(RecordStore):
    """Основное хранилище сертификатов в БД."""

    name = "database"

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    @asynccontextmanager
    async def _translate_errors(self, operation: str):
        """Переводит ошибки драйвера в исключения хранилища."""
        try:
            yield
        except IntegrityError as e:
            raise ConflictError(f"Нарушена уникальность при операции {operation}") from e
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            if _is_connection_error(e):
                raise BackendUnavailableError(f"БД недоступна ({operation}): {e}") from e
            raise StorageError(f"Ошибка БД при операции {operation}: {e}") from e

    async def connect(self) -> None:
        """Подключение к БД и создание схемы"""
        async with self._translate_errors("connect"):
            await self.db_manager.create_tables()

    async def ping(self) -> None:
        async with self._translate_errors("ping"):
            async with self.db_manager.get_session() as session:
                await session.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.db_manager.dispose()

    async def find_by_email(self, email: str) -> Optional[CertificateRecord]:
        return await self._find_one(CertificateRow.user_email == email, "find_by_email")

    async def find_by_reference_id(self, reference_id: str) -> Optional[CertificateRecord]:
        return await self._find_one(CertificateRow.reference_id == reference_id, "find_by_reference_id")

    async def insert(self, record: CertificateRecord) -> CertificateRecord:
        """
        Сохранение сертификата в БД

        Args:
            record: Запись для сохранения

        Returns:
            Сохраненная запись

        Raises:
            ConflictError: Если reference_id или email уже существуют
        """
        row = CertificateRow(
            reference_id=record.reference_id,
            user_name=record.user.name,
            user_email=record.user.email,
            certificate_type=record.certificate_type,
            timestamp=record.timestamp,
            downloaded=record.downloaded,
            download_count=record.download_count
        )

        async with self._translate_errors("insert"):
            async with self.db_manager.get_session() as session:
                session.add(row)
                await session.commit()
                return row.to_record()

    async def mark_downloaded(self, reference_id: str) -> Optional[CertificateRecord]:
        statement = (
            update(CertificateRow)
            .where(CertificateRow.reference_id == reference_id)
            .values(downloaded=True, download_count=CertificateRow.download_count + 1)
        )

        async with self._translate_errors("mark_downloaded"):
            async with self.db_manager.get_session() as session:
                result = await session.execute(statement)
                if result.rowcount == 0:
                    await session.rollback()
                    return None

                row = (await session.execute(
                    select(CertificateRow).where(CertificateRow.reference_id == reference_id)
                )).scalar_one()
                await session.commit()
                return row.to_record()

    async def count_total(self) -> int:
        return await self._count(select(func.count(CertificateRow.id)), "count_total")

    async def count_downloaded(self) -> int:
        statement = select(func.count(CertificateRow.id)).where(CertificateRow.downloaded.is_(True))
        return await self._count(statement, "count_downloaded")

    async def list_recent(self, limit: int) -> List[CertificateRecord]:
        return await self._list(max(limit, 0), "list_recent")

    async def list_all(self) -> List[CertificateRecord]:
        return await self._list(None, "list_all")

    async def _find_one(self, condition, operation: str) -> Optional[CertificateRecord]:
        async with self._translate_errors(operation):
            async with self.db_manager.get_session() as session:
                row = (await session.execute(select(CertificateRow).where(condition))).scalar_one_or_none()
                return row.to_record() if row else None

    async def _count(self, statement, operation: str) -> int:
        async with self._translate_errors(operation):
            async with self.db_manager.get_session() as session:
                return (await session.execute(statement)).scalar_one()

    async def _list(self, limit: Optional[int], operation: str) -> List[CertificateRecord]:
        statement = select(CertificateRow).order_by(
            CertificateRow.timestamp.desc(), CertificateRow.id.desc()
        )
        if limit is not None:
            statement = statement.limit(limit)

        async with self._translate_errors(operation):
            async with self.db_manager.get_session() as session:
                rows = (await session.execute(statement)).scalars().all()
                return [row.to_record() for row in rows]
