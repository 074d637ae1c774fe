"""Error types shared by the clients, the relay and the orchestrator."""


class DevorchError(RuntimeError):
    """Base class for every error devorch raises on purpose."""


class MissingCredentialError(DevorchError):
    """Raised when a token needed for an outbound call is not configured."""

    def __init__(self, kind: str, hint: str | None = None):
        self.kind = kind
        message = f"No {kind} credentials configured"
        if hint:
            message += f". {hint}"
        super().__init__(message)


class MissingFieldError(DevorchError):
    """Raised when an operation is missing a field it requires (e.g. a session id)."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing {field}")


class UpstreamError(DevorchError):
    """An external API answered with an HTTP error status."""

    def __init__(self, status_code: int, body: object, message: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Upstream returned {status_code}: {body}")


class TransportError(DevorchError):
    """The request never produced an HTTP response (DNS, refused, timeout...)."""


class ResponseShapeError(DevorchError):
    """An upstream response did not match the expected schema."""


class InvalidActionError(DevorchError):
    """A relay request named no known action and carried no method/path to pass through."""

    def __init__(self, action: object):
        self.action = action
        super().__init__("Invalid action")
