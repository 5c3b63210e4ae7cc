"""Input screening for the /api surface.

Rejects requests whose path segments, query values, body or selected headers
look like SQL injection, shell command injection or path traversal.
"""

import logging
import re

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from vpsctl.core.errors import ErrorCatalog, error_response
from vpsctl.core.request_utils import get_client_ip

logger = logging.getLogger(__name__)

# Inputs longer than this are rejected outright
MAX_INPUT_LENGTH = 10_000

# Logged values are cut to this many characters
LOG_VALUE_LENGTH = 200

SCREENED_HEADERS = ("X-Forwarded-For", "Referer", "User-Agent")

SQL_INJECTION = re.compile(
    r"(?i)\b(SELECT|INSERT|UPDATE|DELETE|DROP|UNION|ALTER|TRUNCATE|EXEC|EXECUTE|DECLARE|CAST)\b"
    r".*\b(FROM|INTO|TABLE|WHERE|SET|VALUES)\b"
    r"|--"
    r"|\b(OR|AND)\b\s+\d+\s*=\s*\d+"
    r"|'\s*(OR|AND)\s*'"
)

SHELL_INJECTION = re.compile(
    r"(?i)(^|[;&|])\s*(sudo|rm\s+-rf|wget|curl|nc|netcat|bash|sh\s+-c|eval|exec)\b"
    r"|\$\("
    r"|`"
    r"|>\s*/|<\s*/"
    r"|\|\s*(bash|sh)"
    r"|;\s*(rm|cat|chmod)"
)

# Matched against the lower-cased input
PATH_TRAVERSAL = re.compile(r"\.\./|\.\.\\|%2e%2e%2f|%2e%2e/|\.%2e/|%2e\./")


def is_malicious(value: str) -> bool:
    """Whether a single input value should be rejected."""
    if len(value) > MAX_INPUT_LENGTH:
        return True
    if not value:
        return False
    return bool(
        PATH_TRAVERSAL.search(value.lower())
        or SQL_INJECTION.search(value)
        or SHELL_INJECTION.search(value)
    )


def _truncate(value: str) -> str:
    if len(value) > LOG_VALUE_LENGTH:
        return value[:LOG_VALUE_LENGTH] + "..."
    return value


class InputSanitizerMiddleware(BaseHTTPMiddleware):
    """Screens every request under ``path_prefix`` with :func:`is_malicious`.

    Sources are checked in order: path segments, query values, the body
    (when a non-empty ``Content-Length`` is declared) and SCREENED_HEADERS.
    The first hit returns MALICIOUS_INPUT_DETECTED.
    """

    def __init__(
        self,
        app: ASGIApp,
        errors: ErrorCatalog,
        path_prefix: str = "/api",
        trusted_proxies: set[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.errors = errors
        self.path_prefix = path_prefix.rstrip("/")
        self.trusted_proxies = trusted_proxies or set()

    def _is_screened(self, path: str) -> bool:
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    async def _inputs(self, request: Request) -> list[tuple[str, str, str]]:
        """Collect (source, key, value) for everything that gets screened."""
        inputs: list[tuple[str, str, str]] = []

        for segment in request.url.path.split("/"):
            if segment:
                inputs.append(("path", "", segment))

        for key, value in request.query_params.multi_items():
            inputs.append(("query_param", key, value))

        content_length = request.headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > 0:
            body = await request.body()
            if body:
                inputs.append(("body", "", body.decode("utf-8", errors="replace")))

        for header in SCREENED_HEADERS:
            value = request.headers.get(header)
            if value:
                inputs.append(("header", header, value))

        return inputs

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or not self._is_screened(request.url.path):
            return await call_next(request)

        for source, key, value in await self._inputs(request):
            if is_malicious(value):
                client_ip = get_client_ip(request, self.trusted_proxies)
                logger.warning(
                    f"Malicious input detected in {source} {key or '-'} from {client_ip} "
                    f"on {request.method} {request.url.path}: {_truncate(value)}",
                    extra={"client_ip": client_ip, "path": request.url.path},
                )
                return error_response(self.errors.MALICIOUS_INPUT_DETECTED)

        return await call_next(request)
