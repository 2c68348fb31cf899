"""
Chat endpoints.

POST /api/chat validates the conversation, resolves the chat mode and
returns a Server-Sent Events stream fed by the selected handler. Errors found
before the stream starts are ordinary JSON error responses; anything after
that is reported inside the stream.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from api.dependencies import AppSettings, HandlerRegistry
from api.middleware.exception_handlers import ConfigurationError, ValidationException
from api.middleware.request_context import update_request_context
from api.services.chat_handlers.factory import UnknownChatModeError
from api.services.event_sink import EventSink, stream_events
from core.constants import SSE_MEDIA_TYPE, SSE_RESPONSE_HEADERS
from models.chat_models import ChatRequest
from models.error_models import ErrorCode, ErrorDetail, ErrorResponseWrapper
from models.schemas.chat import ChatModeInfo, ChatModesResponse
from utils.logger import logger

router = APIRouter()


@router.post(
    "/chat",
    summary="Stream a chat turn",
    description="Runs one conversation turn in the selected mode and streams the answer as Server-Sent Events.",
    response_class=StreamingResponse,
    responses={
        200: {
            "description": "SSE stream terminated by `data: [DONE]`",
            "content": {SSE_MEDIA_TYPE: {"example": 'data: {"content":"Hello"}\n\ndata: [DONE]\n\n'}},
        },
        413: {"model": ErrorResponseWrapper, "description": "Request body too large"},
        422: {"model": ErrorResponseWrapper, "description": "Invalid conversation or unknown chat mode"},
        500: {"model": ErrorResponseWrapper, "description": "OPENAI_API_KEY is not configured"},
    },
    tags=["Chat"],
)
async def chat(body: ChatRequest, registry: HandlerRegistry, settings: AppSettings) -> StreamingResponse:
    """Stream a chat turn."""
    if not settings.openai_api_key:
        logger.error("OPENAI_API_KEY is not configured")
        raise ConfigurationError("Service configuration error")

    mode = body.mode if body.mode is not None else registry.default_mode()
    try:
        handler = registry.get_handler(mode)
    except UnknownChatModeError as e:
        raise ValidationException(
            str(e),
            errors=[ErrorDetail(field="mode", message=str(e), code="unknown_chat_mode")],
            code=ErrorCode.UNKNOWN_CHAT_MODE,
        ) from e

    update_request_context(chat_mode=mode)
    logger.info(f"Chat request: mode={mode} messages={len(body.messages)}", chat_mode=mode)

    config = settings.chat_handler_config()
    messages = list(body.messages)

    async def produce(sink: EventSink) -> None:
        await handler.handle(messages, config, sink)

    return StreamingResponse(
        stream_events(produce),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_RESPONSE_HEADERS,
    )


@router.get(
    "/chat/modes",
    response_model=ChatModesResponse,
    summary="List chat modes",
    tags=["Chat"],
)
async def list_chat_modes(registry: HandlerRegistry) -> ChatModesResponse:
    """Available chat modes in display order."""
    return ChatModesResponse(
        default=registry.default_mode(),
        modes=[
            ChatModeInfo(
                mode=mode,
                label=registry.mode_label(mode),
                description=registry.mode_description(mode),
            )
            for mode in registry.available_modes()
        ],
    )
