import asyncio
import enum
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator

from xat_api.db.crud_helper import ConversationStore
from xat_api.errors import UpstreamError
from xat_api.utils.inference import InferenceClient

logger = logging.getLogger(__name__)

APOLOGY_RESPONSE = "Sorry, I could not generate a response right now."
STREAM_ERROR_MESSAGE = "Error while streaming the response"


class RelayState(str, enum.Enum):
    PENDING = "PENDING"
    STREAMING = "STREAMING"
    FINALIZED = "FINALIZED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class RelayResult:
    conversation_id: str
    prompt_id: str
    prompt: str
    response: str
    state: RelayState

    @property
    def degraded(self) -> bool:
        return self.state is RelayState.FAILED


class ResponseRelay:
    """Turns an accepted prompt into an upstream call and persists the answer.

    Both paths leave exactly one Prompt row per request. When the upstream
    fails, the row holds whatever text was received, or APOLOGY_RESPONSE if
    nothing was.
    """

    def __init__(self, inference: InferenceClient, store: ConversationStore) -> None:
        self.inference = inference
        self.store = store

    async def complete(
        self, conversation_id: str, prompt: str, model: str
    ) -> RelayResult:
        logger.debug(f"Generating non-streaming response for {conversation_id}")
        try:
            response = await self.inference.generate(prompt, model) or APOLOGY_RESPONSE
            state = RelayState.COMPLETED
        except UpstreamError as e:
            logger.error(f"Upstream failure for conversation {conversation_id}: {e}")
            response = APOLOGY_RESPONSE
            state = RelayState.FAILED

        record = await self.store.prompts.create_resource(
            {
                "conversation_id": conversation_id,
                "prompt": prompt,
                "response": response,
                "model": model,
                "stream": False,
            }
        )
        logger.info(f"Prompt {record['id']} stored for conversation {conversation_id}")
        return RelayResult(
            conversation_id=conversation_id,
            prompt_id=record["id"],
            prompt=record["prompt"],
            response=record["response"],
            state=state,
        )

    async def open_stream(
        self, conversation_id: str, prompt: str, model: str
    ) -> "StreamSession":
        """Create the Prompt row with an empty response and return its session."""
        record = await self.store.prompts.create_resource(
            {
                "conversation_id": conversation_id,
                "prompt": prompt,
                "response": "",
                "model": model,
                "stream": True,
            }
        )
        logger.debug(f"Streaming prompt {record['id']} for conversation {conversation_id}")
        return StreamSession(self, conversation_id, record["id"], prompt, model)


class StreamSession:
    """One forwarding session between an upstream stream and a client.

    ``events`` yields ``start``, one ``chunk`` per upstream fragment, then
    ``end`` or ``error``. Each fragment is accumulated before its event is
    yielded, and the next fragment is only requested once the consumer has
    taken the event. Closing the generator early stops forwarding; the
    accumulated text is still written.
    """

    def __init__(
        self,
        relay: ResponseRelay,
        conversation_id: str,
        prompt_id: str,
        prompt: str,
        model: str,
    ) -> None:
        self.relay = relay
        self.conversation_id = conversation_id
        self.prompt_id = prompt_id
        self.prompt = prompt
        self.model = model
        self.state = RelayState.PENDING
        self.parts: list[str] = []
        self._finalized = False

    @property
    def full_response(self) -> str:
        return "".join(self.parts)

    def _event(self, type_: str, **fields: Any) -> dict[str, Any]:
        return {
            "type": type_,
            "conversationId": self.conversation_id,
            "promptId": self.prompt_id,
            **fields,
        }

    async def _finalize(self, response: str) -> None:
        if self._finalized:
            return
        self._finalized = True
        await self.relay.store.prompts.update_resource(
            {"response": response}, resource_id=self.prompt_id
        )

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        try:
            yield self._event("start", prompt=self.prompt)
            self.state = RelayState.STREAMING

            try:
                async with aclosing(
                    self.relay.inference.generate_stream(self.prompt, self.model)
                ) as fragments:
                    async for fragment in fragments:
                        self.parts.append(fragment)
                        yield self._event("chunk", chunk=fragment)
            except UpstreamError as e:
                logger.error(
                    f"Streaming failed for prompt {self.prompt_id} after "
                    f"{len(self.parts)} chunks: {e}"
                )
                self.state = RelayState.FAILED
                yield {"type": "error", "error": STREAM_ERROR_MESSAGE}
                return

            # a finalized response is never empty
            response = self.full_response or APOLOGY_RESPONSE
            await self._finalize(response)
            self.state = RelayState.FINALIZED
            logger.info(
                f"Prompt {self.prompt_id} finalized ({len(self.full_response)} chars)"
            )
            yield self._event("end", fullResponse=response)
        finally:
            if not self._finalized:
                if self.state is not RelayState.FAILED:
                    logger.warning(
                        f"Client left prompt {self.prompt_id} after {len(self.parts)} chunks"
                    )
                    self.state = RelayState.FAILED
                # the write completes even if this task is being cancelled
                await asyncio.shield(
                    self._finalize(self.full_response or APOLOGY_RESPONSE)
                )
