from typing import Optional

from fastapi import Depends, Header, HTTPException

from marketchat.schemas.chat import Identity
from marketchat.services.chat_repository import ChatRepository
from marketchat.services.identity import IdentityResolver, bearer_token, get_identity_resolver
from marketchat.services.supabase_client import SupabaseClient, get_supabase_client


def get_access_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    return bearer_token(authorization)


async def get_current_identity(
    token: Optional[str] = Depends(get_access_token),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Optional[Identity]:
    return await resolver.current_identity(token)


async def require_identity(
    identity: Optional[Identity] = Depends(get_current_identity),
) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="No autenticado")
    return identity


def get_repository(
    token: Optional[str] = Depends(get_access_token),
    client: SupabaseClient = Depends(get_supabase_client),
) -> ChatRepository:
    # Las consultas salen con el JWT del usuario para que apliquen las RLS
    return ChatRepository(client.with_token(token) if token else client)
