"""Chat persistence over the hosted store.

Tables: ``conversations(id, participant_ids uuid[])`` and
``messages(id, conversation_id, sender_id, content, image_url, created_at,
updated_at)``. Profiles are resolved through the
``get_user_profiles_by_ids(user_ids uuid[])`` function.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from marketchat.core.config import settings
from marketchat.core.errors import NotFoundError, UniqueViolationError, ValidationError
from marketchat.schemas.chat import ConversationRow, Message, Profile
from marketchat.services.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

CONVERSATIONS = "conversations"
MESSAGES = "messages"
PROFILES_RPC = "get_user_profiles_by_ids"


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    if not user_a or not user_b:
        raise ValidationError("Both participants are required")
    if user_a == user_b:
        raise ValidationError("Cannot start a conversation with yourself")
    first, second = sorted((user_a, user_b))
    return first, second


class ChatRepository:
    def __init__(self, client: SupabaseClient):
        self.client = client

    # --- conversations ---

    async def list_conversations(self, user_id: str) -> List[ConversationRow]:
        rows = await self.client.select(
            CONVERSATIONS,
            columns="id,participant_ids,messages(content,created_at,image_url)",
            filters=[("participant_ids", "cs", [user_id])],
            embedded={MESSAGES: {"order": "created_at.desc", "limit": 1}},
        )
        return [ConversationRow.model_validate(r) for r in rows]

    async def get_conversation(self, conversation_id: str) -> ConversationRow:
        rows = await self.client.select(
            CONVERSATIONS,
            columns="id,participant_ids",
            filters=[("id", "eq", conversation_id)],
            limit=1,
        )
        if not rows:
            raise NotFoundError("Conversation", conversation_id)
        return ConversationRow.model_validate(rows[0])

    async def find_conversation(self, pair: Tuple[str, str]) -> Optional[ConversationRow]:
        # cs + cd sobre el mismo array = igualdad de conjuntos
        rows = await self.client.select(
            CONVERSATIONS,
            columns="id,participant_ids",
            filters=[
                ("participant_ids", "cs", list(pair)),
                ("participant_ids", "cd", list(pair)),
            ],
            limit=1,
        )
        return ConversationRow.model_validate(rows[0]) if rows else None

    async def create_conversation(self, pair: Tuple[str, str]) -> ConversationRow:
        row = await self.client.insert(CONVERSATIONS, {"participant_ids": list(pair)})
        return ConversationRow.model_validate(row)

    async def get_or_create_conversation(self, user_id: str, other_user_id: str) -> ConversationRow:
        """Return the conversation for the pair, creating it on first contact.

        A unique violation on insert means another tab or device created the
        same pair in the meantime; the existing row wins.
        """
        pair = canonical_pair(user_id, other_user_id)
        existing = await self.find_conversation(pair)
        if existing:
            return existing
        try:
            created = await self.create_conversation(pair)
            logger.info("Conversacion creada %s para %s", created.id, pair)
            return created
        except UniqueViolationError:
            logger.info("Conversacion %s ya creada en paralelo; reutilizando", pair)
            existing = await self.find_conversation(pair)
            if existing is None:
                raise NotFoundError("Conversation", ",".join(pair))
            return existing

    # --- profiles ---

    async def get_profiles(self, user_ids: Iterable[str]) -> List[Profile]:
        ids = sorted(set(user_ids))
        if not ids:
            return []
        data = await self.client.rpc(PROFILES_RPC, {"user_ids": ids})
        return [Profile.model_validate(p) for p in data or []]

    # --- messages ---

    async def list_messages(self, conversation_id: str) -> List[Message]:
        rows = await self.client.select(
            MESSAGES,
            filters=[("conversation_id", "eq", conversation_id)],
            order="created_at.asc",
        )
        return [Message.model_validate(r) for r in rows]

    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: Optional[str],
        image_url: Optional[str],
    ) -> Message:
        if not content and not image_url:
            raise ValidationError("A message needs text or an image")
        row = await self.client.insert(
            MESSAGES,
            {
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "content": content,
                "image_url": image_url,
            },
        )
        return Message.model_validate(row)

    async def update_message_content(self, message_id: str, content: str) -> Optional[Message]:
        row = await self.client.update(
            MESSAGES,
            message_id,
            {"content": content, "updated_at": datetime.now(timezone.utc).isoformat()},
        )
        return Message.model_validate(row) if row else None

    async def delete_message(self, message_id: str) -> None:
        await self.client.delete(MESSAGES, message_id)

    # --- blobs ---

    async def upload_chat_image(self, user_id: str, data: bytes, content_type: str) -> str:
        path = f"{user_id}/{uuid.uuid4()}"
        url = await self.client.upload_blob(settings.CHAT_IMAGES_BUCKET, path, data, content_type)
        logger.info("Imagen subida a %s", path)
        return url
