import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import JSONResponse

from marketchat.api.deps import get_current_identity, get_repository, require_identity
from marketchat.schemas.chat import (
    ComposeTextRequest,
    ConversationViewState,
    EditTextRequest,
    Identity,
    StartChatRequest,
    StartChatResponse,
    ViewActionResponse,
)
from marketchat.services.chat_repository import ChatRepository
from marketchat.services.conversation_view import ConversationViewController
from marketchat.services.identity import AuthGate, get_auth_gate
from marketchat.services.view_registry import ViewRegistry, get_view_registry

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------
# Routers
# --------------------------------------------------------------------
router = APIRouter()


def _view(
    view_id: str,
    identity: Identity = Depends(require_identity),
    registry: ViewRegistry = Depends(get_view_registry),
    repository: ChatRepository = Depends(get_repository),
) -> ConversationViewController:
    view = registry.get(view_id, identity)
    view.bind_repository(repository)
    return view


def _result(view: ConversationViewController, accepted: bool) -> ViewActionResponse:
    return ViewActionResponse(accepted=accepted, view=view.snapshot())


# --------------------------------------------------------------------
# Inicio de chat desde producto / vendedor
# --------------------------------------------------------------------
@router.post("/start", response_model=StartChatResponse)
async def start_chat(
    payload: StartChatRequest,
    identity: Optional[Identity] = Depends(get_current_identity),
    gate: AuthGate = Depends(get_auth_gate),
    repository: ChatRepository = Depends(get_repository),
):
    """
    Sin sesion devuelve 401 con un token de accion pendiente; el cliente
    muestra el login y luego llama a /auth/resume/{token}.
    """
    pending = gate.require(identity, "start_chat", {"other_user_id": payload.other_user_id})
    if pending is not None:
        return JSONResponse(
            status_code=401,
            content={"detail": "No autenticado", "pending_action": pending.token},
        )
    row = await repository.get_or_create_conversation(identity.id, payload.other_user_id)
    return StartChatResponse(conversation_id=row.id)


# --------------------------------------------------------------------
# Vistas
# --------------------------------------------------------------------
@router.post("/views", response_model=ConversationViewState, status_code=201)
async def mount_view(
    identity: Identity = Depends(require_identity),
    registry: ViewRegistry = Depends(get_view_registry),
    repository: ChatRepository = Depends(get_repository),
):
    view = await registry.mount(identity, repository)
    return view.snapshot()


@router.get("/views/{view_id}", response_model=ConversationViewState)
async def get_view(
    view: ConversationViewController = Depends(_view),
    limit: Optional[int] = Query(default=None, ge=0),
):
    return view.snapshot(message_limit=limit)


@router.delete("/views/{view_id}", status_code=204)
async def unmount_view(
    view_id: str,
    view: ConversationViewController = Depends(_view),
    registry: ViewRegistry = Depends(get_view_registry),
):
    registry.unmount(view_id)


@router.post("/views/{view_id}/refresh", response_model=ViewActionResponse)
async def refresh(view: ConversationViewController = Depends(_view)):
    return _result(view, await view.load_conversations())


@router.post("/views/{view_id}/open/{conversation_id}", response_model=ViewActionResponse)
async def open_conversation(conversation_id: str, view: ConversationViewController = Depends(_view)):
    return _result(view, await view.open_conversation(conversation_id))


@router.post("/views/{view_id}/select/{conversation_id}", response_model=ViewActionResponse)
async def select_conversation(conversation_id: str, view: ConversationViewController = Depends(_view)):
    return _result(view, await view.select_conversation(conversation_id))


@router.post("/views/{view_id}/deselect", response_model=ViewActionResponse)
async def deselect(view: ConversationViewController = Depends(_view)):
    view.deselect()
    return _result(view, True)


@router.post("/views/{view_id}/start", response_model=ViewActionResponse)
async def start_in_view(payload: StartChatRequest, view: ConversationViewController = Depends(_view)):
    conversation_id = await view.start_conversation(payload.other_user_id)
    return _result(view, conversation_id is not None)


# --------------------------------------------------------------------
# Compose
# --------------------------------------------------------------------
@router.put("/views/{view_id}/compose", response_model=ViewActionResponse)
async def set_compose_text(payload: ComposeTextRequest, view: ConversationViewController = Depends(_view)):
    view.set_compose_text(payload.text)
    return _result(view, True)


@router.post("/views/{view_id}/compose/image", response_model=ViewActionResponse)
async def stage_image(
    file: UploadFile = File(...),
    view: ConversationViewController = Depends(_view),
):
    data = await file.read()
    return _result(view, view.stage_image(file.filename or "image", file.content_type, data))


@router.delete("/views/{view_id}/compose/image", response_model=ViewActionResponse)
async def clear_image(view: ConversationViewController = Depends(_view)):
    view.clear_staged_image()
    return _result(view, True)


@router.post("/views/{view_id}/send", response_model=ViewActionResponse)
async def send_message(view: ConversationViewController = Depends(_view)):
    return _result(view, await view.send_message())


# --------------------------------------------------------------------
# Edicion
# --------------------------------------------------------------------
@router.post("/views/{view_id}/messages/{message_id}/edit", response_model=ViewActionResponse)
async def begin_edit(message_id: str, view: ConversationViewController = Depends(_view)):
    return _result(view, view.begin_edit(message_id))


@router.put("/views/{view_id}/edit", response_model=ViewActionResponse)
async def set_edit_text(payload: EditTextRequest, view: ConversationViewController = Depends(_view)):
    view.set_edit_text(payload.text)
    return _result(view, view.editing is not None)


@router.post("/views/{view_id}/edit/confirm", response_model=ViewActionResponse)
async def confirm_edit(view: ConversationViewController = Depends(_view)):
    return _result(view, await view.confirm_edit())


@router.delete("/views/{view_id}/edit", response_model=ViewActionResponse)
async def cancel_edit(view: ConversationViewController = Depends(_view)):
    view.cancel_edit()
    return _result(view, True)


# --------------------------------------------------------------------
# Borrado
# --------------------------------------------------------------------
@router.post("/views/{view_id}/messages/{message_id}/delete", response_model=ViewActionResponse)
async def stage_delete(message_id: str, view: ConversationViewController = Depends(_view)):
    return _result(view, view.stage_delete(message_id))


@router.post("/views/{view_id}/delete/confirm", response_model=ViewActionResponse)
async def confirm_delete(view: ConversationViewController = Depends(_view)):
    return _result(view, await view.confirm_delete())


@router.delete("/views/{view_id}/delete", response_model=ViewActionResponse)
async def cancel_delete(view: ConversationViewController = Depends(_view)):
    view.cancel_delete()
    return _result(view, True)


# --------------------------------------------------------------------
# Notificaciones
# --------------------------------------------------------------------
@router.delete("/views/{view_id}/notifications/{notification_id}", response_model=ViewActionResponse)
async def dismiss_notification(notification_id: str, view: ConversationViewController = Depends(_view)):
    return _result(view, view.notifier.dismiss(notification_id))
