# marketchat/api/routes/webhook.py

import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from marketchat.core.config import settings
from marketchat.schemas.chat import ChangeEvent
from marketchat.services.change_feed import ChangeFeed, get_change_feed

logger = logging.getLogger(__name__)

router = APIRouter()

# --------------------------------------------------------------------------------------
# Firma
# --------------------------------------------------------------------------------------

def _clean_sig(sig: str) -> str:
    """Acepta 'sha256=abcd' o solo 'abcd'."""
    return (sig or "").split("=", 1)[-1].strip()


def _valid_signature(signature: Optional[str], body: bytes) -> bool:
    """HMAC-SHA256 del cuerpo crudo con WEBHOOK_SECRET."""
    secret = (settings.WEBHOOK_SECRET or "").strip().encode()
    if not secret or not signature:
        return False
    expected = hmac.new(secret, body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, _clean_sig(signature))


# --------------------------------------------------------------------------------------
# POST (eventos de la tabla messages)
# --------------------------------------------------------------------------------------

@router.post("/messages")
async def receive_message_change(
    request: Request,
    x_webhook_signature: Optional[str] = Header(default=None),
    feed: ChangeFeed = Depends(get_change_feed),
):
    body = await request.body()

    # Validacion de firma (solo estricta en produccion)
    if settings.WEBHOOK_SECRET and not _valid_signature(x_webhook_signature, body):
        if (settings.ENV or "development").lower() != "production":
            logger.warning("Firma invalida, bypass por entorno=%s", settings.ENV)
        else:
            raise HTTPException(status_code=401, detail="Firma invalida")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="JSON invalido")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON invalido")

    try:
        event = ChangeEvent.from_webhook(payload)
    except ValidationError:
        logger.info("Evento no manejado: type=%s table=%s", payload.get("type"), payload.get("table"))
        return {"received": True, "delivered": 0}

    logger.info("Cambio %s en %s (id=%s)", event.kind, event.table, event.row_id)
    delivered = await feed.publish(event)
    return {"received": True, "delivered": delivered}
