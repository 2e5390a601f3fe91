from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from contextlib import aclosing
from typing import Any, AsyncIterator
import json
import logging

from xat_api.db.crud_helper import ConversationStore
from xat_api.errors import (
    NotFoundError,
    SentimentFormatError,
    UpstreamError,
    UpstreamUnavailable,
    ValidationError,
)
from xat_api.settings import Config
from xat_api.utils.conversations import ConversationManager, validate_text
from xat_api.utils.inference import InferenceClient
from xat_api.utils.relay import ResponseRelay, StreamSession, STREAM_ERROR_MESSAGE
from xat_api.utils.sentiment import build_sentiment_prompt, parse_sentiment
from xat_api.routes.chat.schemas import (
    PromptRequest,
    PromptResponse,
    ConversationResponse,
    ModelsResponse,
    SentimentRequest,
    SentimentResponse,
    ErrorResponse,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

router = APIRouter()

SUCCESS_MESSAGE = "Prompt registered successfully"
DEGRADED_MESSAGE = "Prompt registered, but the model could not generate a response"


# --- Dependencies ---


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_inference(request: Request) -> InferenceClient:
    return request.app.state.inference


def get_conversations(request: Request) -> ConversationManager:
    return request.app.state.conversations


def get_relay(request: Request) -> ResponseRelay:
    return request.app.state.relay


def sse_event(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


async def stream_events(session: StreamSession) -> AsyncIterator[str]:
    """Frame relay events as server-sent events."""
    try:
        async with aclosing(session.events()) as events:
            async for event in events:
                yield sse_event(event)
    except Exception as e:
        logger.error(f"Streaming error for prompt {session.prompt_id}: {e}", exc_info=True)
        yield sse_event({"type": "error", "error": STREAM_ERROR_MESSAGE})


# --- ROUTES ---


@router.post(
    "/prompt",
    response_model=PromptResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Register a prompt",
    description="Create a prompt in a new or existing conversation and generate a response, optionally streamed",
)
async def register_prompt(
    request: PromptRequest,
    config: Config = Depends(get_config),
    conversations: ConversationManager = Depends(get_conversations),
    relay: ResponseRelay = Depends(get_relay),
):
    """
    Register a prompt and generate the model's response.

    Args:
        request: PromptRequest with the prompt, optional conversationId, model and stream flag

    Returns:
        PromptResponse (201) or a text/event-stream of start, chunk, end|error events
    """
    model = request.model or config.ollama_model
    logger.info(
        f"Prompt request received (conversation={request.conversation_id}, "
        f"model={model}, stream={request.stream})"
    )

    try:
        prompt = validate_text(request.prompt, "prompt")
        conversation = await conversations.resolve(request.conversation_id)

        if request.stream:
            session = await relay.open_stream(conversation["id"], prompt, model)
            return StreamingResponse(
                stream_events(session),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "Connection": "keep-alive",
                    "X-Accel-Buffering": "no",
                },
            )

        result = await relay.complete(conversation["id"], prompt, model)
        return PromptResponse(
            conversation_id=result.conversation_id,
            prompt_id=result.prompt_id,
            prompt=result.prompt,
            response=result.response,
            message=DEGRADED_MESSAGE if result.degraded else SUCCESS_MESSAGE,
        )

    except ValidationError as e:
        logger.warning(f"Validation error: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Error registering prompt: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register prompt",
        )


@router.get(
    "/conversation/{conversation_id}",
    response_model=ConversationResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get a conversation",
    description="Retrieve a conversation with its prompts ordered by creation time",
)
async def get_conversation(
    conversation_id: str,
    conversations: ConversationManager = Depends(get_conversations),
):
    try:
        conversation, prompts = await conversations.get_with_prompts(conversation_id)
        return ConversationResponse(
            id=conversation["id"],
            created_at=conversation.get("created_at"),
            updated_at=conversation.get("updated_at"),
            prompts=prompts,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting conversation: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve conversation",
        )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List models",
    description="Return the configured default model if the inference server has it",
)
async def list_models(
    config: Config = Depends(get_config),
    inference: InferenceClient = Depends(get_inference),
):
    try:
        models = await inference.list_models()
    except UpstreamUnavailable as e:
        logger.error(f"Error listing models: {e}")
        raise HTTPException(
            status_code=e.status_code or status.HTTP_502_BAD_GATEWAY,
            detail="Could not retrieve the model list",
        )
    except UpstreamError as e:
        logger.error(f"Error listing models: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not retrieve the model list",
        )

    default_model = next((m for m in models if m["name"] == config.ollama_model), None)
    filtered = [default_model] if default_model else []
    logger.info(
        f"Models retrieved: {len(models)} upstream, default {config.ollama_model} "
        f"{'present' if default_model else 'missing'}"
    )
    return ModelsResponse(total_models=len(filtered), models=filtered)


@router.post(
    "/sentiment-analysis",
    response_model=SentimentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Analyze sentiment",
    description="Score the sentiment of a text from 0 (very negative) to 10 (very positive)",
)
async def analyze_sentiment(
    request: SentimentRequest,
    config: Config = Depends(get_config),
    store: ConversationStore = Depends(get_store),
    inference: InferenceClient = Depends(get_inference),
):
    try:
        text = validate_text(request.text, "text")
    except ValidationError as e:
        logger.warning(f"Sentiment request rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Starting sentiment analysis ({len(text)} chars)")
    model = config.ollama_model

    try:
        raw = await inference.generate(build_sentiment_prompt(text), model)
        result = parse_sentiment(raw)
    except SentimentFormatError as e:
        logger.error(f"Could not parse sentiment output: {e}. Raw output: {e.raw!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="The text could not be analyzed",
        )
    except UpstreamError as e:
        logger.error(f"Upstream failure during sentiment analysis: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="The text could not be analyzed",
        )

    try:
        record = await store.sentiments.create_resource(
            {
                "text": request.text,
                "score": result.score,
                "sentiment": result.sentiment,
                "model": model,
                "raw_response": raw,
            }
        )
    except Exception as e:
        logger.error(f"Error storing sentiment analysis: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store sentiment analysis",
        )

    logger.info(
        f"Sentiment analysis {record['id']} stored: {record['sentiment']} ({record['score']})"
    )
    return SentimentResponse(
        id=record["id"],
        text=record["text"],
        score=float(record["score"]),
        sentiment=record["sentiment"],
        model=record["model"],
        created_at=record["created_at"],
    )
