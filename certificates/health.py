"""
Мониторинг доступности основного хранилища и переключение на резервное.
"""

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Optional, Tuple

from .storage import RecordStore

logger = logging.getLogger(__name__)


class BackendState(str, Enum):
    """Состояние подключения к основному хранилищу."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class BackendSelector:
    """
    Текущее активное хранилище.

    Состояние и хранилище хранятся одной неизменяемой парой, которая
    заменяется одним присваиванием. Читатели получают согласованный снимок.
    """

    def __init__(self, state: BackendState, store: RecordStore):
        self._current: Tuple[BackendState, RecordStore] = (state, store)

    def snapshot(self) -> Tuple[BackendState, RecordStore]:
        return self._current

    @property
    def state(self) -> BackendState:
        return self._current[0]

    @property
    def store(self) -> RecordStore:
        return self._current[1]

    def _swap(self, state: BackendState, store: RecordStore) -> None:
        self._current = (state, store)


class BackendHealthMonitor:
    """
    Конечный автомат CONNECTED / DISCONNECTED над основным хранилищем.

    Единственный, кто меняет BackendSelector. Стартует в DISCONNECTED с
    резервным хранилищем, первое подключение выполняется в фоне.
    Данные между хранилищами не переносятся.
    """

    def __init__(self, durable: RecordStore, fallback: RecordStore,
                 check_interval: float = 5.0):
        """
        Args:
            durable: Основное хранилище (БД)
            fallback: Резервное хранилище в памяти
            check_interval: Период проверки соединения в секундах
        """
        self.durable = durable
        self.fallback = fallback
        self.check_interval = check_interval
        self.selector = BackendSelector(BackendState.DISCONNECTED, fallback)
        self._task: Optional[asyncio.Task] = None
        self._connect_failure_logged = False

    @property
    def state(self) -> BackendState:
        return self.selector.state

    @property
    def is_connected(self) -> bool:
        return self.selector.state is BackendState.CONNECTED

    def on_connected(self) -> None:
        """Переход DISCONNECTED -> CONNECTED."""
        if self.selector.state is BackendState.CONNECTED:
            return
        self.selector._swap(BackendState.CONNECTED, self.durable)
        logger.info(f"Основное хранилище доступно, активно: {self.durable.name}")

    def on_disconnected(self, reason: Optional[str] = None) -> None:
        """Переход CONNECTED -> DISCONNECTED."""
        if self.selector.state is BackendState.DISCONNECTED:
            return
        self.selector._swap(BackendState.DISCONNECTED, self.fallback)
        logger.warning(
            f"Основное хранилище недоступно ({reason or 'нет подробностей'}), "
            f"активно: {self.fallback.name}"
        )

    async def check(self) -> BackendState:
        """
        Одна проверка соединения.

        В DISCONNECTED пытается подключиться (с созданием схемы),
        в CONNECTED выполняет ping.

        Returns:
            BackendState: Состояние после проверки
        """
        try:
            if self.is_connected:
                await self.durable.ping()
            else:
                await self.durable.connect()
        except Exception as e:
            if self.is_connected:
                self.on_disconnected(str(e))
            elif not self._connect_failure_logged:
                logger.warning(f"Подключение к основному хранилищу не удалось: {e}")
                self._connect_failure_logged = True
            else:
                logger.debug(f"Повторное подключение не удалось: {e}")
        else:
            self._connect_failure_logged = False
            self.on_connected()

        return self.state

    async def start(self) -> None:
        """Запускает фоновую проверку, не дожидаясь первого подключения."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._watch(), name="backend-health-monitor")
        logger.info("Мониторинг основного хранилища запущен")

    async def stop(self) -> None:
        """Останавливает фоновую проверку."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Мониторинг основного хранилища остановлен")

    async def _watch(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.check_interval)
