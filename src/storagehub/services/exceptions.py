# src/storagehub/services/exceptions.py

class ServiceException(Exception):
    """Base exception for all service layer errors."""
    kind: str = "ServiceError"
    status_code: int = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

class ConnectionFailed(ServiceException):
    """Raised when a tenant database cannot be reached or authenticated against."""
    kind = "ConnectionFailed"
    status_code = 503

class ConnectionUnavailable(ServiceException):
    """Raised when an operation is attempted through a connection that failed to dial."""
    kind = "ConnectionUnavailable"
    status_code = 503

class MaterializationFailed(ServiceException):
    """Raised when the target engine rejects the creation of a table or collection."""
    kind = "MaterializationFailed"
    status_code = 500

class NotFoundError(ServiceException):
    kind = "NotFound"
    status_code = 404

class StorageNotFound(NotFoundError):
    kind = "StorageNotFound"

class DatasourceNotFound(NotFoundError):
    kind = "DatasourceNotFound"

class ModelNotFound(NotFoundError):
    kind = "ModelNotFound"

class RecordNotFound(NotFoundError):
    kind = "RecordNotFound"

class ImportFailed(ServiceException):
    """Raised when a bulk import file cannot be downloaded or parsed."""
    kind = "ImportFailed"

class InvalidFilter(ServiceException):
    kind = "InvalidFilter"

class ConfigurationError(ServiceException):
    """Raised if a required system configuration is missing or unsupported."""
    kind = "ConfigurationError"
    status_code = 500
