"""
Генератор уникальных кодов сертификатов участия.
"""

import logging
import random
import re
import string
from datetime import date
from typing import Optional

from .exceptions import GenerationExhaustedError, InvalidInputError
from .storage import RecordStore

logger = logging.getLogger(__name__)


class ReferenceIdGenerator:
    """Генератор уникальных кодов сертификатов."""

    def __init__(self, year: Optional[int] = None, max_attempts: int = 1000):
        # Символы для генерации кода (цифры + латинские буквы в верхнем регистре)
        self.characters = string.digits + string.ascii_uppercase
        self.code_length = 5
        self.year = year or date.today().year
        self.max_attempts = max_attempts  # Защитный предел попыток
        self.id_pattern = re.compile(r'^CSAC(\d{4})-[0-9A-Z]{5}$')

    @property
    def prefix(self) -> str:
        """Префикс кода, например CSAC2025-."""
        return f"CSAC{self.year}-"

    async def generate(self, store: RecordStore) -> str:
        """
        Генерирует код, которого еще нет в хранилище.

        Формат: CSAC<год>-XXXXX

        Args:
            store: Хранилище для проверки уникальности

        Returns:
            str: Свободный код сертификата

        Raises:
            GenerationExhaustedError: Если не удалось подобрать свободный код
        """
        for attempt in range(1, self.max_attempts + 1):
            reference_id = self.prefix + self._generate_code()

            if await store.find_by_reference_id(reference_id) is None:
                return reference_id

            logger.debug(f"Код {reference_id} уже занят, попытка {attempt}")

        raise GenerationExhaustedError(
            f"Не удалось сгенерировать уникальный код за {self.max_attempts} попыток"
        )

    def _generate_code(self) -> str:
        """Случайный блок из 5 символов."""
        return ''.join(random.choices(self.characters, k=self.code_length))

    def validate_id_format(self, reference_id: str) -> bool:
        """
        Проверяет корректность формата кода сертификата.

        Args:
            reference_id: Код для проверки

        Returns:
            bool: True если формат корректен, False иначе
        """
        if not reference_id:
            return False
        return bool(self.id_pattern.match(reference_id))

    def extract_year(self, reference_id: str) -> int:
        """
        Извлекает год из кода сертификата.

        Raises:
            InvalidInputError: Если код имеет неверный формат
        """
        match = self.id_pattern.match(reference_id or "")
        if not match:
            raise InvalidInputError(f"Неверный формат кода сертификата: {reference_id}")
        return int(match.group(1))
