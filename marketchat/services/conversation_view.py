"""Server-side state of one mounted chat view.

The controller owns the conversation list, the selected conversation and its
messages, and the compose/edit/delete buffers. Sends, edits and deletes are
not applied locally: the resulting rows come back through the change feed and
are merged by ``handle_event``.

All mutation happens on the event loop. Every awaited call re-checks that its
result still applies (list sequence numbers, selection tokens) before touching
state.
"""
import base64
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from marketchat.core.config import settings
from marketchat.core.errors import AppError, NotFoundError, ValidationError
from marketchat.schemas.chat import (
    ChangeEvent,
    ComposeState,
    ConversationSummary,
    ConversationViewState,
    EditState,
    Identity,
    Message,
    MessageRow,
    StagedImage,
)
from marketchat.services.change_feed import ChangeFeed, Subscription
from marketchat.services.chat_repository import MESSAGES, ChatRepository
from marketchat.services.formatting import build_summary, default_avatar, sort_summaries, time_label
from marketchat.services.notifier import Notifier

logger = logging.getLogger(__name__)


def event_applies(event: ChangeEvent, conversation_id: Optional[str], known_ids: Iterable[str]) -> bool:
    """Whether ``event`` touches the open message list.

    Deletes may carry only the primary key; those apply when the id is one of
    the messages on screen.
    """
    if conversation_id is None or event.table != MESSAGES:
        return False
    if event.conversation_id is not None:
        return event.conversation_id == conversation_id
    return event.kind == "delete" and event.row_id in set(known_ids)


class ConversationViewController:
    def __init__(
        self,
        identity: Optional[Identity],
        repository: ChatRepository,
        feed: ChangeFeed,
        notifier: Optional[Notifier] = None,
        view_id: Optional[str] = None,
    ):
        self.identity = identity
        self.repository = repository
        self.feed = feed
        self.notifier = notifier or Notifier()
        self.view_id = view_id or uuid.uuid4().hex

        self.conversations: List[ConversationSummary] = []
        self.selected: Optional[ConversationSummary] = None
        self.messages: List[Message] = []

        self.compose_text = ""
        self.staged_image: Optional[StagedImage] = None
        self.editing: Optional[Message] = None
        self.edit_text = ""
        self.deleting: Optional[Message] = None

        self.loading = False
        self.loading_messages = False
        self.sending = False

        self._subscription: Optional[Subscription] = None
        self._list_seq = 0
        self._list_applied = 0
        self._selection_seq = 0

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.id if self.identity else None

    def bind_repository(self, repository: ChatRepository) -> None:
        # El JWT de Supabase caduca; cada peticion trae el vigente
        self.repository = repository

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------
    @property
    def mounted(self) -> bool:
        return self._subscription is not None

    async def mount(self) -> None:
        if self._subscription is None:
            self._subscription = self.feed.subscribe(MESSAGES, self.handle_event)
            logger.info("Vista %s montada para %s", self.view_id, self.user_id)
        await self.load_conversations()

    def unmount(self) -> None:
        if self._subscription is not None:
            self.feed.unsubscribe(self._subscription)
            self._subscription = None
            logger.info("Vista %s desmontada", self.view_id)

    # ------------------------------------------------------------------
    # Lista de conversaciones
    # ------------------------------------------------------------------
    async def load_conversations(self) -> bool:
        """Replace the summary list, or leave it untouched on failure."""
        user_id = self.user_id
        if not user_id:
            self.conversations = []
            return False

        self._list_seq += 1
        seq = self._list_seq
        self.loading = True
        try:
            rows = await self.repository.list_conversations(user_id)
            other_ids = {r.other_participant(user_id) for r in rows} - {None}
            summaries: List[ConversationSummary] = []
            if other_ids:
                profiles = {p.id: p for p in await self.repository.get_profiles(other_ids)}
                built = (build_summary(r, user_id, profiles) for r in rows)
                summaries = sort_summaries([s for s in built if s is not None])
        except AppError as e:
            logger.warning("Error cargando conversaciones de %s: %s", user_id, e.message)
            if seq > self._list_applied:
                self.notifier.error("Could not load conversations.")
            return False
        finally:
            if seq == self._list_seq:
                self.loading = False

        if seq < self._list_applied:
            logger.debug("Descartada carga de conversaciones obsoleta (%s < %s)", seq, self._list_applied)
            return False
        self._list_applied = seq
        self.conversations = summaries
        if self.selected is not None:
            fresh = self._find_summary(self.selected.id)
            if fresh is not None:
                self.selected = fresh
        return True

    def _find_summary(self, conversation_id: str) -> Optional[ConversationSummary]:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    async def start_conversation(self, other_user_id: str) -> Optional[str]:
        """Get or create the conversation with ``other_user_id`` and open it."""
        if not self.user_id:
            return None
        try:
            row = await self.repository.get_or_create_conversation(self.user_id, other_user_id)
        except ValidationError as e:
            logger.debug("start_conversation rechazado: %s", e.message)
            return None
        except AppError as e:
            logger.warning("No se pudo iniciar conversacion con %s: %s", other_user_id, e.message)
            self.notifier.error("Could not start the conversation.")
            return None
        await self.open_conversation(row.id)
        return row.id

    async def open_conversation(self, conversation_id: str) -> bool:
        """Select a conversation by id, fetching it when it is not listed yet."""
        user_id = self.user_id
        if not user_id:
            return False
        if self.selected is not None and self.selected.id == conversation_id:
            return True
        existing = self._find_summary(conversation_id)
        if existing is not None:
            return await self._select(existing)

        token = self._selection_seq
        self.loading_messages = True
        try:
            row = await self.repository.get_conversation(conversation_id)
            other_id = row.other_participant(user_id)
            if user_id not in row.participant_ids or other_id is None:
                raise NotFoundError("Conversation", conversation_id)
            profiles = await self.repository.get_profiles([other_id])
        except NotFoundError as e:
            if token != self._selection_seq:
                logger.debug("Apertura de %s superada por otra seleccion", conversation_id)
                return False
            logger.warning("Conversacion no disponible: %s", e.message)
            self.notifier.error("This conversation is no longer available.")
            self._clear_selection()
            return False
        except AppError as e:
            if token != self._selection_seq:
                logger.debug("Apertura de %s superada por otra seleccion", conversation_id)
                return False
            logger.warning("Error abriendo conversacion %s: %s", conversation_id, e.message)
            self.notifier.error("Could not load this conversation.")
            return False
        finally:
            if token == self._selection_seq:
                self.loading_messages = False

        if token != self._selection_seq:
            logger.debug("Apertura de %s superada por otra seleccion", conversation_id)
            return False

        profile = profiles[0] if profiles else None
        summary = ConversationSummary(
            id=row.id,
            other_user_id=other_id,
            name=(profile.name if profile else None) or settings.UNKNOWN_USER_NAME,
            avatar=(profile.avatar_url if profile else None) or default_avatar(other_id),
            last_message=settings.NEW_CONVERSATION_PLACEHOLDER,
            timestamp=time_label(datetime.now(timezone.utc)),
        )
        if self._find_summary(summary.id) is None:
            self.conversations = [summary] + self.conversations
        else:
            summary = self._find_summary(summary.id)
        return await self._select(summary)

    # ------------------------------------------------------------------
    # Seleccion y mensajes
    # ------------------------------------------------------------------
    async def select_conversation(self, conversation_id: str) -> bool:
        summary = self._find_summary(conversation_id)
        if summary is None:
            logger.warning("Seleccion de conversacion desconocida %s", conversation_id)
            self.notifier.error("This conversation is no longer available.")
            return False
        return await self._select(summary)

    async def _select(self, summary: ConversationSummary) -> bool:
        self.selected = summary
        self._reset_staging()
        self._selection_seq += 1
        token = self._selection_seq

        self.loading_messages = True
        try:
            messages = await self.repository.list_messages(summary.id)
        except AppError as e:
            # La lista visible se conserva tal cual
            logger.warning("Error cargando mensajes de %s: %s", summary.id, e.message)
            self.notifier.error("Could not load messages.")
            return False
        finally:
            if token == self._selection_seq:
                self.loading_messages = False

        if token != self._selection_seq or self.selected is None or self.selected.id != summary.id:
            logger.debug("Descartados mensajes obsoletos de %s", summary.id)
            return False
        self.messages = messages
        return True

    def deselect(self) -> None:
        self._clear_selection()

    def _clear_selection(self) -> None:
        self._selection_seq += 1
        self.selected = None
        self.messages = []
        self.loading_messages = False
        self._reset_staging()

    def _reset_staging(self) -> None:
        self.editing = None
        self.edit_text = ""
        self.deleting = None

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------
    async def handle_event(self, event: ChangeEvent) -> None:
        if event.table != MESSAGES:
            return
        try:
            self.apply_event(event)
        except PydanticValidationError as e:
            logger.warning("Evento %s con fila invalida: %s", event.kind, e)
        await self.load_conversations()

    def apply_event(self, event: ChangeEvent) -> bool:
        """Merge one change into the open message list. Returns True if it changed."""
        conversation_id = self.selected.id if self.selected else None
        if not event_applies(event, conversation_id, (m.id for m in self.messages)):
            return False

        if event.kind == "insert":
            message = Message.model_validate(event.record)
            if any(m.id == message.id for m in self.messages):
                logger.debug("Insert redundante de %s ignorado", message.id)
                return False
            self.messages.append(message)
            return True

        index = next((i for i, m in enumerate(self.messages) if m.id == event.row_id), None)
        if index is None:
            return False

        if event.kind == "update":
            message = Message.model_validate(event.record)
            self.messages[index] = message
            if self.editing is not None and self.editing.id == message.id:
                self.editing = message
            return True

        removed = self.messages.pop(index)
        if self.editing is not None and self.editing.id == removed.id:
            self.editing = None
            self.edit_text = ""
        if self.deleting is not None and self.deleting.id == removed.id:
            self.deleting = None
        return True

    # ------------------------------------------------------------------
    # Compose / envio
    # ------------------------------------------------------------------
    def set_compose_text(self, text: str) -> None:
        self.compose_text = text or ""

    def stage_image(self, filename: str, content_type: Optional[str], data: bytes) -> bool:
        if not content_type or not content_type.startswith("image/") or not data:
            self.notifier.push("Invalid file", "Please select an image.", "warning")
            return False
        if len(data) > settings.MAX_IMAGE_BYTES:
            self.notifier.push("Invalid file", "The image is too large.", "warning")
            return False
        preview = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
        self.staged_image = StagedImage(
            filename=filename or "image",
            content_type=content_type,
            data=data,
            preview=preview,
        )
        return True

    def clear_staged_image(self) -> None:
        self.staged_image = None

    @property
    def can_send(self) -> bool:
        has_payload = bool(self.compose_text.strip()) or self.staged_image is not None
        return self.selected is not None and self.user_id is not None and has_payload and not self.sending

    async def send_message(self) -> bool:
        """Upload the staged image if any, then insert the message row.

        The compose buffer is cleared only on success; the new row shows up
        when the feed echoes it back.
        """
        if not self.can_send:
            logger.debug("send_message ignorado: nada que enviar o envio en curso")
            return False

        conversation_id = self.selected.id
        content = self.compose_text.strip()
        image = self.staged_image
        self.sending = True
        try:
            image_url = None
            if image is not None:
                image_url = await self.repository.upload_chat_image(self.user_id, image.data, image.content_type)
            await self.repository.insert_message(conversation_id, self.user_id, content or None, image_url)
        except AppError as e:
            logger.warning("Error enviando mensaje a %s: %s", conversation_id, e.message)
            self.notifier.error("The message could not be sent.")
            return False
        finally:
            self.sending = False

        self.compose_text = ""
        self.staged_image = None
        return True

    # ------------------------------------------------------------------
    # Edicion
    # ------------------------------------------------------------------
    def _own_message(self, message_id: str) -> Message:
        message = next((m for m in self.messages if m.id == message_id), None)
        if message is None:
            raise ValidationError(f"Message {message_id} is not in the open conversation")
        if message.sender_id != self.user_id:
            raise ValidationError("Only the sender can change a message")
        return message

    def begin_edit(self, message_id: str) -> bool:
        try:
            message = self._own_message(message_id)
        except ValidationError as e:
            logger.debug("begin_edit rechazado: %s", e.message)
            return False
        if not message.content:
            return False
        self.editing = message
        self.edit_text = message.content
        return True

    def set_edit_text(self, text: str) -> None:
        if self.editing is not None:
            self.edit_text = text or ""

    def cancel_edit(self) -> None:
        self.editing = None
        self.edit_text = ""

    async def confirm_edit(self) -> bool:
        target = self.editing
        if target is None:
            return False
        if not self.edit_text.strip():
            logger.debug("Edicion vacia rechazada para %s", target.id)
            return False
        try:
            await self.repository.update_message_content(target.id, self.edit_text)
        except AppError as e:
            logger.warning("Error editando %s: %s", target.id, e.message)
            self.notifier.error("Could not edit the message.")
            return False
        if self.editing is not None and self.editing.id == target.id:
            self.cancel_edit()
        return True

    # ------------------------------------------------------------------
    # Borrado
    # ------------------------------------------------------------------
    def stage_delete(self, message_id: str) -> bool:
        try:
            self.deleting = self._own_message(message_id)
        except ValidationError as e:
            logger.debug("stage_delete rechazado: %s", e.message)
            return False
        return True

    def cancel_delete(self) -> None:
        self.deleting = None

    async def confirm_delete(self) -> bool:
        target = self.deleting
        if target is None:
            return False
        try:
            await self.repository.delete_message(target.id)
            return True
        except AppError as e:
            logger.warning("Error borrando %s: %s", target.id, e.message)
            self.notifier.error("Could not delete the message.")
            return False
        finally:
            # El dialogo se cierra siempre, incluso si falla
            if self.deleting is not None and self.deleting.id == target.id:
                self.deleting = None

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------
    def _row(self, message: Message) -> MessageRow:
        is_own = message.sender_id == self.user_id
        return MessageRow(
            id=message.id,
            sender_id=message.sender_id,
            content=message.content,
            image_url=message.image_url,
            created_at=message.created_at,
            time_label=time_label(message.created_at),
            is_own=is_own,
            edited=message.edited,
            image_only=bool(message.image_url) and not message.content,
            can_edit=is_own and bool(message.content),
            can_delete=is_own,
            is_editing=self.editing is not None and self.editing.id == message.id,
        )

    def snapshot(self, message_limit: Optional[int] = None) -> ConversationViewState:
        """Render state; ``message_limit`` keeps only the newest rows."""
        messages = self.messages if self.selected is not None else []
        if message_limit is not None and message_limit >= 0:
            messages = messages[-message_limit:] if message_limit else []
        image = self.staged_image
        return ConversationViewState(
            view_id=self.view_id,
            user_id=self.user_id,
            loading=self.loading,
            loading_messages=self.loading_messages,
            conversations=list(self.conversations),
            selected=self.selected,
            messages=[self._row(m) for m in messages],
            compose=ComposeState(
                text=self.compose_text,
                image_preview=image.preview if image else None,
                image_filename=image.filename if image else None,
                can_send=self.can_send,
                sending=self.sending,
            ),
            editing=EditState(message_id=self.editing.id, text=self.edit_text) if self.editing else None,
            deleting_message_id=self.deleting.id if self.deleting else None,
            notifications=self.notifier.items,
        )
