"""Boundary error catalog and the API error type.

The catalog is an immutable value built once at startup (built-in defaults,
optionally overridden from a JSON file) and handed to whatever needs to
produce an error response. Nothing here is mutated after construction.
"""

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorCode:
    """A stable, client-visible error code with its HTTP status."""

    code: str
    status: int
    message: str


_DEFAULT_ERRORS: tuple[ErrorCode, ...] = (
    ErrorCode("INTERNAL_ERROR", 500, "Internal server error"),
    ErrorCode("INVALID_REQUEST", 400, "Invalid request"),
    ErrorCode("MALICIOUS_INPUT_DETECTED", 400, "Request contains disallowed input"),
    ErrorCode("DATABASE_ERROR", 500, "Database error"),
    ErrorCode("INVALID_CREDENTIALS", 401, "Invalid username or password"),
    ErrorCode("AUTHENTICATION_REQUIRED", 401, "Authentication required"),
    ErrorCode("TOKEN_EXPIRED", 401, "Session expired or invalid"),
    ErrorCode("PERMISSION_DENIED", 403, "Permission denied"),
    ErrorCode("ACTION_NOT_ALLOWED", 403, "Action not allowed"),
    ErrorCode("RATE_LIMIT_EXCEEDED", 429, "Too many requests"),
    ErrorCode("SESSION_NOT_FOUND", 404, "Session not found"),
    ErrorCode("SESSION_ALREADY_REVOKED", 409, "Session already revoked"),
    ErrorCode("PM2_PROCESS_NOT_FOUND", 404, "Process not found"),
    ErrorCode("PROCESS_ALREADY_RUNNING", 409, "Process is already running"),
    ErrorCode("PROCESS_ALREADY_STOPPED", 409, "Process is already stopped"),
    ErrorCode("FAIL2BAN_JAIL_NOT_FOUND", 404, "Jail not found"),
    ErrorCode("FAIL2BAN_IP_NOT_BANNED", 404, "IP is not banned in this jail"),
    ErrorCode("COMMAND_EXECUTION_ERROR", 500, "Command execution failed"),
)


class ErrorCatalog(Mapping[str, ErrorCode]):
    """Read-only code -> ErrorCode mapping with attribute access.

    ``catalog.TOKEN_EXPIRED`` and ``catalog["TOKEN_EXPIRED"]`` are equivalent.
    """

    def __init__(self, entries: Mapping[str, ErrorCode]):
        self._entries = MappingProxyType(dict(entries))

    def __getitem__(self, code: str) -> ErrorCode:
        return self._entries[code]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getattr__(self, code: str) -> ErrorCode:
        if code.startswith("_"):
            raise AttributeError(code)
        try:
            return self._entries[code]
        except KeyError:
            raise AttributeError(f"Unknown error code: {code}") from None


def default_error_catalog() -> ErrorCatalog:
    """Catalog built from the built-in definitions only."""
    return ErrorCatalog({e.code: e for e in _DEFAULT_ERRORS})


def load_error_catalog(path: str | Path | None = None) -> ErrorCatalog:
    """Build the error catalog, overlaying definitions from a JSON file.

    The file format is ``{"errors": {"CODE": {"status": 404, "message": "..."}}}``.
    Codes the application does not define are ignored; codes absent from the
    file keep their built-in status and message.

    Raises:
        ValueError: If the file cannot be read or parsed, or an entry is malformed.
    """
    entries = {e.code: e for e in _DEFAULT_ERRORS}
    if path is None:
        return ErrorCatalog(entries)

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Could not load error catalog from {path}: {e}") from e

    overrides = raw.get("errors", {}) if isinstance(raw, dict) else {}
    if not isinstance(overrides, dict):
        raise ValueError(f"\"errors\" in {path} must be an object keyed by error code")
    for code, override in overrides.items():
        if code not in entries:
            logger.warning(f"Error code in catalog file is not defined by the application: {code}")
            continue
        if not isinstance(override, dict):
            raise ValueError(
                f"Catalog entry for {code} in {path} must be an object with status and message"
            )
        base = entries[code]
        try:
            status_code = int(override.get("status", base.status))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid status for {code} in {path}: {e}") from e
        entries[code] = ErrorCode(
            code=code,
            status=status_code,
            message=str(override.get("message", base.message)),
        )

    for code in entries.keys() - overrides.keys():
        logger.debug(f"Error code missing from catalog file, using default: {code}")

    return ErrorCatalog(entries)


class APIError(Exception):
    """An error destined for the HTTP boundary.

    Only ``error.code``, ``error.message`` and ``meta`` reach the client; the
    chained cause is for logs.
    """

    def __init__(self, error: ErrorCode, meta: dict[str, Any] | None = None):
        super().__init__(error.code)
        self.error = error
        self.meta = meta or {}

    @property
    def status_code(self) -> int:
        return self.error.status


def error_response(
    error: ErrorCode,
    meta: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render an ErrorCode as the standard JSON error body."""
    content: dict[str, Any] = {"code": error.code, "message": error.message}
    if meta:
        content.update(meta)
    return JSONResponse(status_code=error.status, content=content, headers=headers)


def register_exception_handlers(app: FastAPI, catalog: ErrorCatalog) -> None:
    """Install handlers that translate errors into catalog responses."""

    @app.exception_handler(APIError)
    async def handle_api_error(request: Request, exc: APIError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"{exc.error.code} on {request.method} {request.url.path}",
                exc_info=exc.__cause__,
            )
        else:
            logger.debug(f"{exc.error.code} on {request.method} {request.url.path}")
        headers = None
        if "retry_after" in exc.meta:
            headers = {"Retry-After": str(exc.meta["retry_after"])}
        return error_response(exc.error, exc.meta, headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug(f"Request validation failed on {request.method} {request.url.path}")
        return error_response(catalog.INVALID_REQUEST)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "code": catalog.INTERNAL_ERROR.code,
                "message": catalog.INTERNAL_ERROR.message,
            },
        )
