"""
HTTP API для выдачи и скачивания сертификатов
"""
import logging
from typing import Optional

import pydantic
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import CertificateError, CertificateNotFoundError, InvalidInputError
from .models import GenerateRequest
from .service import CertificateService

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def read_generate_request(request: Request) -> GenerateRequest:
    """
    Читает имя и email из JSON или из формы.

    Пустое или нечитаемое тело дает запрос без полей.

    Raises:
        InvalidInputError: Если поля не строки
    """
    content_type = request.headers.get("content-type", "")
    data = {}
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            data = {}
    elif content_type.startswith(FORM_CONTENT_TYPES):
        data = dict(await request.form())

    if not isinstance(data, dict):
        data = {}

    try:
        return GenerateRequest.model_validate(data)
    except pydantic.ValidationError as e:
        raise InvalidInputError("Name and email are required") from e


class CertificateAPI:
    """API для работы с сертификатами участия"""

    def __init__(self, service: CertificateService, lifespan=None, debug: bool = False):
        self.service = service
        self.logger = logging.getLogger(__name__)

        # Создание FastAPI приложения
        self.app = FastAPI(
            title="Simple Certificate Generator API",
            description="API для выдачи сертификатов участия",
            version="1.0.0",
            debug=debug,
            lifespan=lifespan
        )

        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self):
        """Единый формат ответов для ошибок"""

        @self.app.exception_handler(StarletteHTTPException)
        async def http_error_handler(request: Request, exc: StarletteHTTPException):
            if exc.status_code == 404:
                return JSONResponse(
                    status_code=404,
                    content={
                        "error": "Not Found",
                        "message": "The requested resource was not found"
                    }
                )
            return _error(exc.status_code, str(exc.detail))

        @self.app.exception_handler(Exception)
        async def unexpected_error_handler(request: Request, exc: Exception):
            self.logger.exception(f"Ошибка сервера: {exc}")
            return JSONResponse(
                status_code=500,
                content={"error": "Internal Server Error", "message": "Internal server error"}
            )

    def _setup_routes(self):
        """Настройка маршрутов API"""

        @self.app.get("/api/health")
        async def health_check():
            """Проверка здоровья API и подключения к БД"""
            return self.service.health()

        @self.app.post("/api/simple_generate")
        async def simple_generate(request: Request):
            """Выдача сертификата по имени и email (JSON или форма)"""
            try:
                payload = await read_generate_request(request)
                result = await self.service.generate(payload.name, payload.email)
            except InvalidInputError as e:
                self.logger.warning(f"Ошибка валидации: {e}")
                return _error(400, str(e))
            except CertificateError as e:
                self.logger.error(f"Ошибка генерации сертификата: {e}")
                return _error(500, "Internal server error")

            record = result.record
            if not result.created:
                return {
                    "success": True,
                    "existing": True,
                    "reference_id": record.reference_id,
                    "name": record.user.name,
                    "email": record.user.email,
                    "message": "Certificate already generated for this email"
                }

            return {
                "success": True,
                "reference_id": record.reference_id,
                "name": record.user.name,
                "email": record.user.email,
                "message": "Certificate generated successfully!"
            }

        @self.app.get("/api/simple_certificate")
        async def simple_certificate(id: Optional[str] = None):
            """Получение сертификата по коду с отметкой о скачивании"""
            try:
                record = await self.service.get_for_download(id)
            except InvalidInputError as e:
                return _error(400, str(e))
            except CertificateNotFoundError:
                return _error(404, "Certificate not found")
            except CertificateError as e:
                self.logger.error(f"Ошибка получения сертификата: {e}")
                return _error(500, "Internal server error")

            return {
                "success": True,
                "reference_id": record.reference_id,
                "name": record.user.name,
                "email": record.user.email,
                "certificate_type": record.certificate_type,
                "timestamp": record.timestamp.isoformat()
            }

        @self.app.get("/api/stats")
        async def stats():
            """Статистика по сертификатам"""
            try:
                data = await self.service.stats()
            except CertificateError as e:
                self.logger.error(f"Ошибка получения статистики: {e}")
                return _error(500, "Internal server error")

            return {
                "success": True,
                "stats": {
                    "total": data["total"],
                    "downloaded": data["downloaded"],
                    "pending": data["pending"]
                },
                "recent": [record.to_dict() for record in data["recent"]]
            }

        @self.app.get("/api/certificates")
        async def list_certificates():
            """Список всех сертификатов (для администрирования)"""
            try:
                certificates = await self.service.list_all()
            except CertificateError as e:
                self.logger.error(f"Ошибка получения списка сертификатов: {e}")
                return _error(500, "Internal server error")

            return {
                "success": True,
                "count": len(certificates),
                "certificates": [record.to_dict() for record in certificates]
            }
