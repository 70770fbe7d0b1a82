"""Pytest configuration and shared fixtures for the test suite."""

import asyncio
import itertools
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

# Antes de importar marketchat: los logs de test no van al repo
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="marketchat-logs-"))
os.environ.setdefault("DISPLAY_TIMEZONE", "UTC")

import pytest

from marketchat.core.errors import NotFoundError, TransientIOError, UniqueViolationError, ValidationError
from marketchat.schemas.chat import ChangeEvent, ConversationRow, Identity, LastMessage, Message, Profile
from marketchat.services.change_feed import ChangeFeed
from marketchat.services.chat_repository import ChatRepository
from marketchat.services.conversation_view import ConversationViewController

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeChatRepository(ChatRepository):
    """In-memory store with the same surface as ChatRepository.

    ``fail`` holds operation names that raise TransientIOError. When
    ``echo_feed`` is set, mutations publish the change the way the database
    webhook would.
    """

    def __init__(self) -> None:
        super().__init__(client=None)
        self.conversations: Dict[str, List[str]] = {}
        self.messages: List[Message] = []
        self.profiles: Dict[str, Profile] = {}
        self.fail: Set[str] = set()
        self.calls: List[str] = []
        self.uploads: List[Tuple[str, bytes, str]] = []
        self.echo_feed: Optional[ChangeFeed] = None
        self._ids = itertools.count(1)
        self._clock = BASE_TIME

    # --- helpers de test ---

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    async def _op(self, name: str) -> None:
        self.calls.append(name)
        await asyncio.sleep(0)
        if name in self.fail:
            raise TransientIOError(f"{name} failed")

    def add_profile(self, user_id: str, name: Optional[str] = None, avatar_url: Optional[str] = None) -> None:
        self.profiles[user_id] = Profile(id=user_id, name=name, avatar_url=avatar_url)

    def add_conversation(self, conversation_id: str, user_a: str, user_b: str) -> str:
        self.conversations[conversation_id] = sorted([user_a, user_b])
        return conversation_id

    def add_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: Optional[str] = "hi",
        image_url: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Message:
        message = Message(
            id=self._next_id("msg"),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            image_url=image_url,
            created_at=created_at or self._tick(),
        )
        self.messages.append(message)
        return message

    def _row(self, conversation_id: str, with_last: bool) -> ConversationRow:
        last: List[LastMessage] = []
        if with_last:
            msgs = [m for m in self.messages if m.conversation_id == conversation_id]
            if msgs:
                newest = max(msgs, key=lambda m: m.created_at)
                last = [LastMessage(content=newest.content, image_url=newest.image_url, created_at=newest.created_at)]
        return ConversationRow(id=conversation_id, participant_ids=list(self.conversations[conversation_id]), messages=last)

    async def _echo(self, kind: str, record: Optional[dict] = None, old_record: Optional[dict] = None) -> None:
        if self.echo_feed is not None:
            await self.echo_feed.publish(
                ChangeEvent(kind=kind, table="messages", record=record, old_record=old_record)
            )

    # --- ChatRepository ---

    async def list_conversations(self, user_id: str) -> List[ConversationRow]:
        await self._op("list_conversations")
        return [self._row(cid, True) for cid, pair in self.conversations.items() if user_id in pair]

    async def get_conversation(self, conversation_id: str) -> ConversationRow:
        await self._op("get_conversation")
        if conversation_id not in self.conversations:
            raise NotFoundError("Conversation", conversation_id)
        return self._row(conversation_id, False)

    async def find_conversation(self, pair: Tuple[str, str]) -> Optional[ConversationRow]:
        await self._op("find_conversation")
        for cid, members in self.conversations.items():
            if set(members) == set(pair):
                return self._row(cid, False)
        return None

    async def create_conversation(self, pair: Tuple[str, str]) -> ConversationRow:
        await self._op("create_conversation")
        if any(set(members) == set(pair) for members in self.conversations.values()):
            raise UniqueViolationError("duplicate key value violates unique constraint")
        cid = self._next_id("conv")
        self.conversations[cid] = list(pair)
        return self._row(cid, False)

    async def get_profiles(self, user_ids: Iterable[str]) -> List[Profile]:
        await self._op("get_profiles")
        return [self.profiles[u] for u in sorted(set(user_ids)) if u in self.profiles]

    async def list_messages(self, conversation_id: str) -> List[Message]:
        await self._op("list_messages")
        msgs = [m for m in self.messages if m.conversation_id == conversation_id]
        return sorted(msgs, key=lambda m: m.created_at)

    async def insert_message(self, conversation_id, sender_id, content, image_url) -> Message:
        await self._op("insert_message")
        if not content and not image_url:
            raise ValidationError("A message needs text or an image")
        message = self.add_message(conversation_id, sender_id, content, image_url)
        await self._echo("insert", record=message.model_dump(mode="json"))
        return message

    async def update_message_content(self, message_id: str, content: str) -> Optional[Message]:
        await self._op("update_message_content")
        for i, m in enumerate(self.messages):
            if m.id == message_id:
                updated = m.model_copy(update={"content": content, "updated_at": self._tick()})
                self.messages[i] = updated
                await self._echo("update", record=updated.model_dump(mode="json"))
                return updated
        return None

    async def delete_message(self, message_id: str) -> None:
        await self._op("delete_message")
        gone = [m for m in self.messages if m.id == message_id]
        self.messages = [m for m in self.messages if m.id != message_id]
        if gone:
            await self._echo("delete", old_record={"id": message_id, "conversation_id": gone[0].conversation_id})

    async def upload_chat_image(self, user_id: str, data: bytes, content_type: str) -> str:
        await self._op("upload_chat_image")
        self.uploads.append((user_id, data, content_type))
        return f"https://cdn.test/chat-images/{user_id}/{len(self.uploads)}"


@pytest.fixture
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def alice() -> Identity:
    return Identity(id="user-alice", email="alice@example.com", name="Alice")


@pytest.fixture
def bob() -> Identity:
    return Identity(id="user-bob", name="Bob")


@pytest.fixture
def repo(alice: Identity, bob: Identity) -> FakeChatRepository:
    repository = FakeChatRepository()
    repository.add_profile(alice.id, "Alice", "https://img.test/alice.png")
    repository.add_profile(bob.id, "Bob", "https://img.test/bob.png")
    return repository


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def view(alice: Identity, repo: FakeChatRepository, feed: ChangeFeed) -> ConversationViewController:
    return ConversationViewController(alice, repo, feed)
