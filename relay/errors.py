from __future__ import annotations


class RelayError(RuntimeError):
    code = "relay_error"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = str(code)


class PersistenceError(RelayError):
    """Store unreachable or stored data malformed."""

    code = "persistence"


class CompletionError(RelayError):
    """Completion service unreachable, malformed response, or timeout."""

    code = "completion"


class NoReplyError(RelayError):
    """Well-formed completion response with no usable candidate."""

    code = "no_reply"


class TemplateError(RelayError):
    code = "template"


class GatewayError(RelayError):
    code = "gateway"
