import logging
import uuid
from typing import Any

from sqlalchemy.exc import IntegrityError

from xat_api.db.crud_helper import ConversationStore
from xat_api.errors import NotFoundError, ValidationError
from xat_api.models.chat import Prompt

logger = logging.getLogger(__name__)


def canonical_uuid(value: str) -> str:
    """
    Return the lowercase hyphenated form of a conversation id.

    Uppercase, bare-hex, braced and ``urn:uuid:`` spellings of one UUID all
    map to the same key.

    Raises:
        ValidationError: If the value is not a UUID
    """
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError, AttributeError):
        raise ValidationError("Invalid conversation id")


def validate_text(text: str | None, field: str = "prompt") -> str:
    """
    Validate and clean free text coming from a client.

    Args:
        text: Raw text
        field: Field name used in the error message

    Returns:
        The text without surrounding whitespace

    Raises:
        ValidationError: If the text is missing or blank
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(f"The {field} field is required and cannot be empty")
    return text.strip()


class ConversationManager:
    """Resolves the conversation a prompt belongs to.

    There is never more than one conversation per identifier: creation relies
    on the primary-key constraint, and a request that loses a creation race
    re-reads the row written by the winner.
    """

    def __init__(self, store: ConversationStore) -> None:
        self.store = store

    async def resolve(self, conversation_id: str | None = None) -> dict[str, Any]:
        if not conversation_id:
            logger.info("Creating new conversation without a supplied id")
            return await self.store.conversations.create_resource(
                {"id": str(uuid.uuid4())}
            )

        try:
            conversation_id = canonical_uuid(conversation_id)
        except ValidationError:
            logger.warning(f"Invalid conversation id: {conversation_id}")
            raise

        conversation = await self.store.conversations.get_resource(conversation_id)
        if conversation is not None:
            return conversation

        logger.info(f"Creating conversation with supplied id {conversation_id}")
        try:
            return await self.store.conversations.create_resource(
                {"id": conversation_id}
            )
        except IntegrityError:
            logger.info(f"Conversation {conversation_id} created concurrently, reusing it")
            conversation = await self.store.conversations.get_resource(conversation_id)
            if conversation is None:
                raise
            return conversation

    async def get_with_prompts(
        self, conversation_id: str
    ) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        try:
            conversation_id = canonical_uuid(conversation_id)
        except ValidationError:
            logger.warning(f"Invalid conversation id requested: {conversation_id}")
            raise

        conversation = await self.store.conversations.get_resource(conversation_id)
        if conversation is None:
            logger.warning(f"Conversation not found: {conversation_id}")
            raise NotFoundError("Conversation not found")

        prompts = await self.store.prompts.list_resource(
            where=[Prompt.conversation_id == conversation_id],
            order_by=["created_at"],
        )
        logger.info(f"Conversation {conversation_id} loaded with {len(prompts)} prompts")
        return conversation, prompts
