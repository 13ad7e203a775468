"""
Service errors. Each carries the HTTP status the API layer translates it to.
"""
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class Unauthorized(ServiceError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class AlreadyProcessed(ServiceError):
    status_code = 400
    default_message = "Already processed"


class InvalidTransition(ServiceError):
    status_code = 400
    default_message = "Invalid status transition"


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid input data"

    def __init__(self, message: Optional[str] = None, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["details"] = self.details
        return body
