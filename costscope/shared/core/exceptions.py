from typing import Optional, Dict, Any

class CostScopeException(Exception):
    """Base exception for all CostScope errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

class InvalidQueryError(CostScopeException):
    """
    Raised when a caller supplies an invalid filter or date range.
    The offending field is always reported so the caller can fix its request.
    """
    def __init__(self, message: str, field: str, details: Optional[Dict[str, Any]] = None):
        merged = {"field": field, **(details or {})}
        super().__init__(message, code="invalid_query", status_code=400, details=merged)
        self.field = field

class StoreError(CostScopeException):
    """
    Raised when the time-series store fails a read or write.
    Passes are idempotent, so callers may re-run the whole pass.
    Messages are sanitized to avoid leaking connection strings or SQL.
    """
    retryable = True

    def __init__(self, message: str, code: str = "store_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(self._sanitize(message), code=code, status_code=503, details=details)

    def _sanitize(self, msg: str) -> str:
        """Strip credentials and statement text from driver error messages."""
        import re
        msg = re.sub(r'(?i)(\w+://)[^@\s]+@', r'\1[REDACTED]@', msg)
        msg = re.sub(r'(?i)(password|token|secret)=[^&\s]+', r'\1=[REDACTED]', msg)
        # SQLAlchemy appends "[SQL: ...]" and "[parameters: ...]" blocks
        msg = re.sub(r'\[SQL:.*', '', msg, flags=re.DOTALL).strip()
        return msg or "Store operation failed."

class InvalidStatusTransitionError(CostScopeException):
    """Raised when a finding or alert would move backwards in its lifecycle."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="invalid_transition", status_code=409, details=details)

class ConfigurationError(CostScopeException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)

class ResourceNotFoundError(CostScopeException):
    """Raised when a requested resource is not found."""
    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)
