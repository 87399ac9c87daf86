"""Structured error reports for connection failures.

Connection errors can nest: a failed connect to "localhost" may carry one
failure per resolved address, and handshake errors wrap their cause. The
ErrorReport model captures an exception as a recursive tree and renders it
as a single deterministic line, e.g.::

    create_connection failed (2 sub-exceptions) code=ECONNREFUSED
    address=localhost port=9999 inner=[...; ...]
"""

from __future__ import annotations

from errno import errorcode

from pydantic import BaseModel, ConfigDict, Field
from websockets.exceptions import InvalidStatus


class ErrorReport(BaseModel):
    """A recursive, renderable view of an exception.

    Attributes:
        kind: Exception class name
        message: Human readable message
        code: Symbolic errno name (e.g. ECONNREFUSED)
        errno: Numeric system error number
        status: HTTP status of a rejected handshake
        address: Remote address the error relates to
        port: Remote port the error relates to
        causes: Nested errors (exception group members or explicit cause)
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str = ""
    code: str | None = None
    errno: int | None = None
    status: int | None = None
    address: str | None = None
    port: int | None = None
    causes: list[ErrorReport] = Field(default_factory=list)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        address: str | None = None,
        port: int | None = None,
    ) -> ErrorReport:
        """Build a report from an exception and its nested causes.

        Args:
            exc: The exception to describe
            address: Remote address to attach to the top-level report
            port: Remote port to attach to the top-level report

        Returns:
            The error report tree
        """
        code: str | None = None
        errno_value: int | None = None
        status: int | None = None
        message = str(exc).strip()

        if isinstance(exc, OSError) and exc.errno is not None:
            errno_value = exc.errno
            code = errorcode.get(exc.errno)
            # Drop the "[Errno n]" prefix, errno is reported separately
            if exc.strerror:
                message = exc.strerror.strip()

        if isinstance(exc, InvalidStatus):
            status = exc.response.status_code

        causes = [cls.from_exception(inner) for inner in _inner_exceptions(exc)]

        # One code shared by every failed address is the code of the whole attempt
        if isinstance(exc, BaseExceptionGroup):
            codes = {cause.code for cause in causes}
            if len(codes) == 1:
                code = codes.pop()

        return cls(
            kind=type(exc).__name__,
            message=message,
            code=code,
            errno=errno_value,
            status=status,
            address=address,
            port=port,
            causes=causes,
        )

    def format(self) -> str:
        """Render the report as one line.

        Returns:
            The message followed by key=value fields and nested causes
        """
        parts: list[str] = []
        if self.message:
            parts.append(self.message)
        if self.code is not None:
            parts.append(f"code={self.code}")
        if self.errno is not None:
            parts.append(f"errno={self.errno}")
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.address is not None:
            parts.append(f"address={self.address}")
        if self.port is not None:
            parts.append(f"port={self.port}")
        if self.causes:
            inner = "; ".join(cause.format() for cause in self.causes)
            parts.append(f"inner=[{inner}]")

        if not parts:
            return self.kind
        return " ".join(parts)


def _inner_exceptions(exc: BaseException) -> list[BaseException]:
    """Return the nested exceptions of an exception group or cause chain."""
    if isinstance(exc, BaseExceptionGroup):
        return list(exc.exceptions)
    if exc.__cause__ is not None:
        return [exc.__cause__]
    return []


def format_error(
    exc: BaseException | None,
    *,
    address: str | None = None,
    port: int | None = None,
) -> str:
    """Format an exception as a single diagnostic line.

    Args:
        exc: The exception, or None when the error is unknown
        address: Remote address to include
        port: Remote port to include

    Returns:
        The formatted error line
    """
    if exc is None:
        return "Unknown error"
    return ErrorReport.from_exception(exc, address=address, port=port).format()
