"""
Основной модуль бизнес-логики системы сертификатов участия.
"""

from .service import CertificateService, create_certificate_service, get_certificate_service
from .models import CertificateRecord, CertificateUser, GenerationResult
from .generator import ReferenceIdGenerator
from .validators import DataValidator
from .storage import RecordStore, InMemoryRecordStore
from .database import DatabaseManager, DatabaseRecordStore
from .health import BackendHealthMonitor, BackendSelector, BackendState

__version__ = "1.0.0"

__all__ = [
    'CertificateService',
    'create_certificate_service',
    'get_certificate_service',
    'CertificateRecord',
    'CertificateUser',
    'GenerationResult',
    'ReferenceIdGenerator',
    'DataValidator',
    'RecordStore',
    'InMemoryRecordStore',
    'DatabaseManager',
    'DatabaseRecordStore',
    'BackendHealthMonitor',
    'BackendSelector',
    'BackendState'
]
