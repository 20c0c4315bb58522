"""
Кастомные исключения для системы сертификатов участия.
"""


class CertificateError(Exception):
    """Базовое исключение для всех ошибок сертификатов."""
    pass


class InvalidInputError(CertificateError):
    """Некорректные входные данные (имя или email)."""
    pass


class CertificateNotFoundError(CertificateError):
    """Сертификат не найден в активном хранилище."""
    pass


class ConflictError(CertificateError):
    """Нарушение уникальности при вставке (reference_id или email)."""
    pass


class StorageError(CertificateError):
    """Внутренняя ошибка работы с хранилищем."""
    pass


class BackendUnavailableError(StorageError):
    """Основное хранилище недоступно."""
    pass


class GenerationExhaustedError(CertificateError):
    """Исчерпан лимит попыток генерации уникального ID."""
    pass
