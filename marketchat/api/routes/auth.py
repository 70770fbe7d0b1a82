import logging

from fastapi import APIRouter, Depends, HTTPException

from marketchat.api.deps import get_repository, require_identity
from marketchat.schemas.chat import Identity, StartChatResponse
from marketchat.services.chat_repository import ChatRepository
from marketchat.services.identity import AuthGate, get_auth_gate

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/me", response_model=Identity)
async def me(identity: Identity = Depends(require_identity)):
    """
    Devuelve la identidad de la sesion (token Bearer de Supabase).
    """
    return identity


@router.post("/resume/{token}", response_model=StartChatResponse)
async def resume_pending_action(
    token: str,
    identity: Identity = Depends(require_identity),
    gate: AuthGate = Depends(get_auth_gate),
    repository: ChatRepository = Depends(get_repository),
):
    """
    Reanuda la accion guardada antes del login. Cada token sirve una sola vez.
    """
    action = gate.resume(token)
    logger.info("Reanudando %s para %s", action.kind, identity.id)
    if action.kind == "start_chat":
        other_user_id = str(action.payload.get("other_user_id") or "")
        row = await repository.get_or_create_conversation(identity.id, other_user_id)
        return StartChatResponse(conversation_id=row.id)
    raise HTTPException(status_code=400, detail=f"Accion no soportada: {action.kind}")
