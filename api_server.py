"""
FastAPI сервер для выдачи сертификатов участия
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from certificates.api import CertificateAPI
from certificates.service import CertificateService, create_certificate_service
from config.settings import Settings, get_settings


def setup_logging(settings: Settings):
    """Настройка логирования"""
    settings.create_directories()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(settings.log_file),
            logging.StreamHandler()
        ]
    )


def create_app(settings: Optional[Settings] = None,
               service: Optional[CertificateService] = None) -> FastAPI:
    """Создание FastAPI приложения"""
    settings = settings or get_settings()
    setup_logging(settings)

    service = service or create_certificate_service(settings)
    monitor = service.monitor

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Управление жизненным циклом приложения"""
        logging.info("Запуск API сервера...")

        # Подключение к БД идет в фоне, до него работает резервное хранилище
        await monitor.start()

        yield

        logging.info("Остановка API сервера...")
        await monitor.stop()
        await monitor.durable.close()
        logging.info("Соединение с БД закрыто")

    certificate_api = CertificateAPI(service, lifespan=lifespan, debug=settings.debug)
    app = certificate_api.app
    app.state.certificate_api = certificate_api

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
