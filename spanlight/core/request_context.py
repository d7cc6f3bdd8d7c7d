import contextvars
from contextlib import contextmanager

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
session_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("session_id", default=None)
span_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("span_id", default=None)


def set_request_id(request_id: str) -> contextvars.Token:
    """Store the current request ID in a context variable."""
    return request_id_var.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    """Reset the request ID context variable to a previous state."""
    request_id_var.reset(token)


def get_request_id() -> str | None:
    """Retrieve the current request ID from the context."""
    return request_id_var.get()


def get_session_id() -> str | None:
    """Retrieve the labeling session ID for logging."""
    return session_id_var.get()


def get_span_id() -> str | None:
    """Retrieve the span currently being processed, if any."""
    return span_id_var.get()


@contextmanager
def log_context(
    session_id: str | None = None,
    span_id: str | None = None,
):
    """Temporarily scope session/span context for structured logs."""
    tokens: list[tuple[contextvars.ContextVar[str | None], contextvars.Token]] = []
    if session_id is not None:
        tokens.append((session_id_var, session_id_var.set(str(session_id))))
    if span_id is not None:
        tokens.append((span_id_var, span_id_var.set(str(span_id))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
