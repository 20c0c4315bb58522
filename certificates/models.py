"""
Pydantic модели для валидации и сериализации данных сертификатов участия.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CERTIFICATE_TYPE = "Attended"

REFERENCE_ID_PATTERN = r"^CSAC\d{4}-[0-9A-Z]{5}$"


def utc_now() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


class CertificateUser(BaseModel):
    """Участник, на которого выписан сертификат."""
    name: str = Field(..., min_length=1, description="Имя участника")
    email: str = Field(..., min_length=3, description="Email участника в нижнем регистре")

    model_config = ConfigDict(from_attributes=True)


class CertificateRecord(BaseModel):
    """Запись о сертификате участия."""
    reference_id: str = Field(..., pattern=REFERENCE_ID_PATTERN, description="Код сертификата")
    user: CertificateUser
    certificate_type: str = Field(default=DEFAULT_CERTIFICATE_TYPE, description="Тип сертификата")
    timestamp: datetime = Field(default_factory=utc_now, description="Дата создания")
    downloaded: bool = Field(default=False, description="Был ли сертификат скачан")
    download_count: int = Field(default=0, ge=0, description="Количество скачиваний")

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "reference_id": "CSAC2025-7K2QX",
                "user": {"name": "Ada Lovelace", "email": "ada@example.com"},
                "certificate_type": "Attended",
                "timestamp": "2025-03-01T10:00:00+00:00",
                "downloaded": False,
                "download_count": 0
            }
        }
    )

    @property
    def name(self) -> str:
        return self.user.name

    @property
    def email(self) -> str:
        return self.user.email

    def to_dict(self) -> dict:
        """Конвертирует объект в словарь для JSON сериализации."""
        return {
            "reference_id": self.reference_id,
            "user": {
                "name": self.user.name,
                "email": self.user.email
            },
            "certificate_type": self.certificate_type,
            "timestamp": self.timestamp.isoformat(),
            "downloaded": self.downloaded,
            "download_count": self.download_count
        }


class GenerationResult(BaseModel):
    """Результат генерации: новый или уже существующий сертификат."""
    created: bool
    record: CertificateRecord


class GenerateRequest(BaseModel):
    """Модель запроса на генерацию сертификата."""
    name: Optional[str] = Field(None, description="Имя участника")
    email: Optional[str] = Field(None, description="Email участника")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Ada Lovelace",
                "email": "ada@example.com"
            }
        }
    )
