class ProxyError(Exception):
    """Base class for failures raised by the automation core."""


class QueueError(ProxyError):
    pass


class QueueFull(QueueError):
    pass


class QueueTimeout(QueueError):
    pass


class QueueShutdown(QueueError):
    pass


class LoginTimeout(ProxyError):
    pass


class InteractionError(ProxyError):
    """An exchange with the chat page failed at ``step``."""

    def __init__(self, message: str, step: str):
        super().__init__(message)
        self.step = step


class InputNotFound(InteractionError):
    def __init__(self, message: str = "Chat input not found"):
        super().__init__(message, step="submit_message")


class ResponseTimeout(InteractionError):
    def __init__(self, message: str = "Response timeout - Copilot took too long to respond"):
        super().__init__(message, step="await_completion")


class ExtractionFailed(InteractionError):
    def __init__(self, message: str = "Could not extract response from page"):
        super().__init__(message, step="extract_response")
