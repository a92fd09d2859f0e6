import logging
import time
import uuid
from datetime import datetime, timezone

from fastapi import Request
from playwright.async_api import Error as PlaywrightError

from copilot import format_messages_as_prompt
from errors import ProxyError
from models import (
    DEFAULT_MODEL_NAME,
    get_copilot_model,
    is_valid_model,
    list_models,
    model_not_found_message,
)
from services import Services

logger = logging.getLogger(__name__)

VALID_ROLES = {"system", "user", "assistant"}


class ApiError(Exception):
    """An error rendered as an OpenAI-style error body."""

    def __init__(self, status_code: int, code: str, message: str, type: str = "invalid_request_error"):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.type = type

    def to_dict(self) -> dict:
        return {"error": {"message": self.message, "type": self.type, "code": self.code}}


def _services(request: Request) -> Services:
    return request.app.state.services


def _content_text(content):
    if isinstance(content, str):
        return content
    # OpenAI content parts: keep the text ones
    if isinstance(content, list):
        texts = [
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        if texts:
            return "\n".join(texts)
    return None


def normalize_messages(raw) -> list:
    if not isinstance(raw, list) or not raw:
        raise ApiError(400, "invalid_messages", "messages is required and must be a non-empty array")

    messages = []
    for msg in raw:
        role = msg.get("role") if isinstance(msg, dict) else None
        content = _content_text(msg.get("content")) if isinstance(msg, dict) else None
        if role not in VALID_ROLES or content is None:
            raise ApiError(
                400,
                "invalid_messages",
                "each message needs a role of system, user or assistant and text content",
            )
        messages.append({"role": role, "content": content})
    return messages


def last_user_message(messages: list):
    for msg in reversed(messages):
        if msg["role"] == "user":
            return msg["content"]
    return None


def completion_response(content: str, model: str, session_id) -> dict:
    return {
        "id": f"chatcmpl-{uuid.uuid4()}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        # Copilot does not report token usage
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
        "session_id": session_id,
    }


async def chat_completions(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ApiError(400, "invalid_json", "Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ApiError(400, "invalid_json", "Request body must be a JSON object")

    messages = normalize_messages(body.get("messages"))

    if body.get("stream"):
        raise ApiError(400, "streaming_not_supported", "Streaming is not supported by this server")

    requested_model = body.get("model")
    if requested_model and not is_valid_model(requested_model):
        raise ApiError(400, "model_not_found", model_not_found_message(requested_model))
    model = get_copilot_model(requested_model)

    services = _services(request)
    requested_session_id = body.get("session_id")
    logger.info(f"Chat completion: model={requested_model or 'default'} -> {model.value}, "
                f"messages={len(messages)}, session_id={requested_session_id or 'none'}")

    try:
        if services.settings.STATELESS_MODE and not requested_session_id:
            page = await services.browser.get_page()
            content = await services.queue.enqueue(
                lambda: services.driver.chat_completion(page, messages, model)
            )
            return completion_response(content, requested_model or DEFAULT_MODEL_NAME, None)

        session = await services.sessions.get_or_create(requested_session_id)
        is_first_message = session.message_count == 0

        if is_first_message:
            message = format_messages_as_prompt(messages)
        else:
            # Copilot keeps the history of an ongoing session itself
            message = last_user_message(messages)
            if message is None:
                raise ApiError(400, "no_user_message", "No user message found in messages array")

        logger.info(f"Using session {session.id} (first message: {is_first_message})")
        content = await services.queue.enqueue(
            lambda: services.driver.run_exchange(session.page, message, model, is_first_message)
        )
    except (ProxyError, PlaywrightError) as e:
        logger.error(f"Error processing chat completion: {e}")
        raise ApiError(500, "internal_error", str(e) or "Unknown error occurred", type="server_error") from e

    services.sessions.touch(session.id)
    logger.info(f"Response generated: {len(content)} chars, session: {session.id}")
    return completion_response(content, requested_model or DEFAULT_MODEL_NAME, session.id)


async def models() -> dict:
    return list_models()


async def sessions(request: Request) -> dict:
    return _services(request).sessions.stats()


async def delete_session(request: Request, session_id: str) -> dict:
    logger.info(f"Delete session request: {session_id}")
    if await _services(request).sessions.close(session_id):
        return {"success": True, "message": f"Session {session_id} closed"}
    raise ApiError(404, "session_not_found", f"Session {session_id} not found")


async def health(request: Request) -> dict:
    services = _services(request)
    stats = services.sessions.stats()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "queue": {
            "pending": services.queue.pending_count,
            "processing": services.queue.processing,
        },
        "sessions": {
            "active": stats["active_sessions"],
            "max": stats["max_sessions"],
        },
    }


def service_info(settings) -> dict:
    return {
        "name": "copilot-proxy",
        "description": "OpenAI-compatible API proxy for Microsoft 365 Copilot",
        "features": {
            "multi_turn_conversations": "Use session_id parameter to continue conversations",
            "session_timeout": f"{int(settings.SESSION_IDLE_TIMEOUT // 60)} minutes of inactivity",
            "max_concurrent_sessions": settings.MAX_SESSIONS,
        },
        "endpoints": {
            "chat_completions": "POST /v1/chat/completions",
            "models": "GET /v1/models",
            "sessions": "GET /v1/sessions",
            "delete_session": "DELETE /v1/sessions/{id}",
            "health": "GET /health",
        },
    }
