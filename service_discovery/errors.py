"""Error taxonomy shared by the registry and the client.

The registry maps these to HTTP statuses, the client maps HTTP statuses back
to them, so both sides raise the same exception types.
"""

from typing import Optional


class ServiceDiscoveryError(Exception):
    """Base error for the service discovery system"""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidRequestError(ServiceDiscoveryError):
    """Malformed or out-of-range input"""

    status_code = 400


class ServiceNotFoundError(ServiceDiscoveryError):
    """Unknown service id"""

    status_code = 404

    def __init__(self, message: str = "service not found", status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code)


class ServiceAlreadyExistsError(ServiceDiscoveryError):
    """Id collision in the store. Internal only."""

    def __init__(self, message: str = "service already exists", status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code)


class InternalError(ServiceDiscoveryError):
    """Store or serialization failure"""

    status_code = 500


class ConnectionFailedError(ServiceDiscoveryError):
    """The registry could not be reached after all retries"""

    status_code = 503

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class RequestTimeoutError(ConnectionFailedError):
    """The last attempt to reach the registry timed out"""

    status_code = 504
