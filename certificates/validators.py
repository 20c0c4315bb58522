"""
Модуль валидации входных данных для сертификатов участия.
"""

import re
from typing import List, Optional, Tuple
from .exceptions import InvalidInputError


class NameValidator:
    """Валидатор имени участника."""

    def __init__(self, max_length: int = 255):
        self.max_length = max_length

    def normalize(self, name: Optional[str]) -> str:
        """Убирает пробелы по краям."""
        return (name or "").strip()

    def validate(self, name: str) -> bool:
        """
        Валидация имени участника.

        Args:
            name: Нормализованное имя

        Returns:
            bool: True если имя валидно, False иначе
        """
        return bool(name) and len(name) <= self.max_length


class EmailValidator:
    """Валидатор email адресов вида local@domain.tld."""

    def __init__(self):
        # Без пробелов, ровно один @, в домене хотя бы одна точка
        self.email_pattern = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

    def normalize(self, email: Optional[str]) -> str:
        """Убирает пробелы по краям и приводит к нижнему регистру."""
        return (email or "").strip().lower()

    def validate(self, email: str) -> bool:
        """
        Валидация email.

        Args:
            email: Нормализованный email

        Returns:
            bool: True если email валиден, False иначе
        """
        if not email or len(email) > 320:
            return False

        return bool(self.email_pattern.match(email))


class DataValidator:
    """Общий валидатор данных участника."""

    def __init__(self):
        self.name_validator = NameValidator()
        self.email_validator = EmailValidator()

    def validate_all(self, name: str, email: str) -> List[str]:
        """
        Валидация уже нормализованных данных участника.

        Returns:
            List[str]: Список ошибок валидации (пустой если все в порядке)
        """
        errors = []

        if not name or not email:
            errors.append("Name and email are required")
            return errors

        if not self.name_validator.validate(name):
            errors.append("Invalid name")

        if not self.email_validator.validate(email):
            errors.append("Invalid email format")

        return errors

    def normalize_participant(self, name: Optional[str], email: Optional[str]) -> Tuple[str, str]:
        """
        Нормализует и проверяет данные участника.

        Args:
            name: Имя как пришло от клиента
            email: Email как пришел от клиента

        Returns:
            Tuple[str, str]: (имя, email) после нормализации

        Raises:
            InvalidInputError: Если данные некорректны
        """
        clean_name = self.name_validator.normalize(name)
        clean_email = self.email_validator.normalize(email)

        errors = self.validate_all(clean_name, clean_email)
        if errors:
            raise InvalidInputError(errors[0])

        return clean_name, clean_email
