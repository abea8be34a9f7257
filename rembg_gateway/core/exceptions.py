from enum import Enum


class ErrorKind(str, Enum):
    INPUT_DECODE_FAILURE = "INPUT_DECODE_FAILURE"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    EXTERNAL_TOOL_FAILURE = "EXTERNAL_TOOL_FAILURE"
    OUTPUT_DECODE_FAILURE = "OUTPUT_DECODE_FAILURE"
    CANCELLED = "CANCELLED"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    LISTENER_STARTUP_FAILURE = "LISTENER_STARTUP_FAILURE"
    SHUTDOWN_TIMEOUT = "SHUTDOWN_TIMEOUT"
    INTERNAL = "INTERNAL_ERROR"


class GatewayError(Exception):
    """Base exception for the gateway.

    Every error carries a ``kind`` tag for programmatic checks, the HTTP
    status it maps to, and optional structured ``details``. Wrapped causes
    are chained with ``raise ... from`` and can be read back with
    :meth:`causes` or rendered with :meth:`chain_message`.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def causes(self) -> list[BaseException]:
        """Return the chain of wrapped exceptions, outermost first."""
        chain = []
        current = self.__cause__
        while current is not None and current not in chain:
            chain.append(current)
            current = current.__cause__
        return chain

    def chain_message(self) -> str:
        """Render ``message: cause: cause`` like a wrapped error string."""
        parts = [self.message]
        parts.extend(str(cause) or type(cause).__name__ for cause in self.causes())
        return ": ".join(parts)


class InputDecodeFailure(GatewayError):
    """Request body is not a decodable image."""

    kind = ErrorKind.INPUT_DECODE_FAILURE
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(
            message=f"unable to decode request image: {reason}",
            details={"reason": reason},
        )


class PayloadTooLarge(GatewayError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE
    status_code = 413

    def __init__(self, size: int, limit: int):
        super().__init__(
            message=f"request body too large: {size} bytes (limit {limit})",
            details={"size": size, "limit": limit},
        )


class ExternalToolFailure(GatewayError):
    """External tool could not be started or exited non-zero."""

    kind = ErrorKind.EXTERNAL_TOOL_FAILURE
    status_code = 500

    def __init__(self, command: str, returncode: int | None, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            message = "failed to start external tool"
        else:
            message = f"external tool exited with status {returncode}"
        super().__init__(
            message=message,
            details={"command": command, "returncode": returncode, "stderr": stderr},
        )


class OutputDecodeFailure(GatewayError):
    """External tool reported success but its output is not an image."""

    kind = ErrorKind.OUTPUT_DECODE_FAILURE
    status_code = 502

    def __init__(self, command: str, output_size: int):
        self.command = command
        super().__init__(
            message="failed to decode external tool output",
            details={"command": command, "output_size": output_size},
        )


class ProcessCancelled(GatewayError):
    """Work was cancelled before it could complete."""

    kind = ErrorKind.CANCELLED
    status_code = 503

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(message=f"processing cancelled: {reason}", details={"reason": reason})


class ToolTimeout(ProcessCancelled):
    kind = ErrorKind.TOOL_TIMEOUT
    status_code = 504


class ListenerStartupFailure(GatewayError):
    """Listener could not bind or exited on its own."""

    kind = ErrorKind.LISTENER_STARTUP_FAILURE

    def __init__(self, reason: str, address: str | None = None):
        super().__init__(
            message=f"unable to start listener: {reason}",
            details={"address": address},
        )


class ShutdownTimeout(GatewayError):
    """Graceful drain exceeded the grace period."""

    kind = ErrorKind.SHUTDOWN_TIMEOUT

    def __init__(self, grace_period: float):
        self.grace_period = grace_period
        super().__init__(
            message=f"graceful shutdown did not finish within {grace_period:g}s",
            details={"grace_period": grace_period},
        )
