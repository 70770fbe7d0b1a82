from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class StoreRow(BaseModel):
    # Supabase puede devolver ids bigint; se tratan siempre como texto
    model_config = ConfigDict(coerce_numbers_to_str=True)


class Identity(StoreRow):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class Profile(StoreRow):
    id: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class Message(StoreRow):
    id: str
    conversation_id: str
    sender_id: str
    content: Optional[str] = None
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @property
    def edited(self) -> bool:
        return self.updated_at is not None


class LastMessage(BaseModel):
    # Fila embebida: messages(content, created_at, image_url)
    content: Optional[str] = None
    image_url: Optional[str] = None
    created_at: datetime


class ConversationRow(StoreRow):
    id: str
    participant_ids: List[str]
    messages: List[LastMessage] = Field(default_factory=list)

    def other_participant(self, user_id: str) -> Optional[str]:
        return next((p for p in self.participant_ids if p != user_id), None)


class ConversationSummary(BaseModel):
    id: str
    other_user_id: str
    name: str
    avatar: str
    last_message: str
    timestamp: str = ""
    last_message_at: Optional[datetime] = None


ChangeKind = Literal["insert", "update", "delete"]


class ChangeEvent(BaseModel):
    """A row change pushed by the realtime feed.

    ``record`` holds the new row for insert/update. ``old_record`` holds the
    prior row for delete, which may carry only its primary key.
    """

    kind: ChangeKind
    table: str
    schema_name: str = "public"
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None

    @classmethod
    def from_webhook(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        """Parse a Supabase database-webhook body."""
        kind = str(payload.get("type") or payload.get("eventType") or "").lower()
        return cls(
            kind=kind,
            table=payload.get("table", ""),
            schema_name=payload.get("schema") or "public",
            record=payload.get("record") or payload.get("new") or None,
            old_record=payload.get("old_record") or payload.get("old") or None,
        )

    @property
    def row(self) -> Dict[str, Any]:
        if self.kind == "delete":
            return self.old_record or {}
        return self.record or {}

    @property
    def row_id(self) -> Optional[str]:
        value = self.row.get("id")
        return str(value) if value is not None else None

    @property
    def conversation_id(self) -> Optional[str]:
        value = self.row.get("conversation_id")
        return str(value) if value is not None else None


class StagedImage(BaseModel):
    filename: str
    content_type: str
    data: bytes = Field(repr=False)
    preview: str = Field(repr=False)


NotificationVariant = Literal["default", "destructive", "warning"]


class Notification(BaseModel):
    id: str
    title: str
    description: str
    variant: NotificationVariant = "default"
    created_at: datetime


class PendingAction(BaseModel):
    token: str
    kind: Literal["start_chat"]
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# --------------------------------------------------------------------
# Snapshot de la vista (lo que pinta el cliente)
# --------------------------------------------------------------------
class MessageRow(BaseModel):
    id: str
    sender_id: str
    content: Optional[str] = None
    image_url: Optional[str] = None
    created_at: datetime
    time_label: str
    is_own: bool
    edited: bool
    image_only: bool
    can_edit: bool
    can_delete: bool
    is_editing: bool = False


class ComposeState(BaseModel):
    text: str = ""
    image_preview: Optional[str] = None
    image_filename: Optional[str] = None
    can_send: bool = False
    sending: bool = False


class EditState(BaseModel):
    message_id: str
    text: str


class ConversationViewState(BaseModel):
    view_id: Optional[str] = None
    user_id: Optional[str] = None
    loading: bool = False
    loading_messages: bool = False
    conversations: List[ConversationSummary] = Field(default_factory=list)
    selected: Optional[ConversationSummary] = None
    messages: List[MessageRow] = Field(default_factory=list)
    compose: ComposeState = Field(default_factory=ComposeState)
    editing: Optional[EditState] = None
    deleting_message_id: Optional[str] = None
    notifications: List[Notification] = Field(default_factory=list)


# --------------------------------------------------------------------
# Requests / responses HTTP
# --------------------------------------------------------------------
class StartChatRequest(BaseModel):
    other_user_id: str


class StartChatResponse(BaseModel):
    conversation_id: str


class ComposeTextRequest(BaseModel):
    text: str = ""


class EditTextRequest(BaseModel):
    text: str = ""


class ViewActionResponse(BaseModel):
    accepted: bool = True
    view: ConversationViewState
