import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from marketchat.core.config import settings
from marketchat.core.errors import (
    AuthenticationError,
    TransientIOError,
    UniqueViolationError,
)

logger = logging.getLogger(__name__)

# (columna, operador PostgREST, valor)
Filter = Tuple[str, str, Any]

UNIQUE_VIOLATION_CODE = "23505"


def _format_value(op: str, value: Any) -> str:
    if op in ("cs", "cd", "ov"):
        items = value if isinstance(value, (list, tuple, set)) else [value]
        return "{" + ",".join(str(v) for v in items) + "}"
    if op == "in":
        return "(" + ",".join(str(v) for v in value) + ")"
    return str(value)


def build_params(
    columns: str = "*",
    filters: Iterable[Filter] = (),
    order: Optional[str] = None,
    limit: Optional[int] = None,
    embedded: Optional[Dict[str, Dict[str, Any]]] = None,
) -> List[Tuple[str, str]]:
    """Translate a query into PostgREST query-string pairs.

    Repeated columns are allowed (``participant_ids=cs.{..}`` together with
    ``participant_ids=cd.{..}``), so a list of pairs is returned instead of a
    dict. ``embedded`` maps a related table to its own ``order``/``limit``,
    which PostgREST applies per parent row.
    """
    params: List[Tuple[str, str]] = [("select", columns)]
    for column, op, value in filters:
        params.append((column, f"{op}.{_format_value(op, value)}"))
    if order:
        params.append(("order", order))
    if limit is not None:
        params.append(("limit", str(limit)))
    for relation, opts in (embedded or {}).items():
        if opts.get("order"):
            params.append((f"{relation}.order", opts["order"]))
        if opts.get("limit") is not None:
            params.append((f"{relation}.limit", str(opts["limit"])))
    return params


def _error_detail(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {"message": resp.text}
    return data if isinstance(data, dict) else {"message": str(data)}


class SupabaseClient:
    """Thin async client over the Supabase REST, Storage and Auth endpoints.

    ``access_token`` is the signed-in user's JWT; row level security on the
    project decides what that user may read and write. Without it the anon
    key is used as bearer.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SUPABASE_ANON_KEY
        self.access_token = access_token
        self._transport = transport

    def with_token(self, access_token: str) -> "SupabaseClient":
        return SupabaseClient(
            access_token=access_token,
            base_url=self.base_url,
            api_key=self.api_key,
            transport=self._transport,
        )

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT, transport=self._transport) as client:
                resp = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    content=content,
                    headers=self._headers(headers),
                )
        except httpx.HTTPError as e:
            logger.error("%s %s fallo de transporte: %s", method, path, e)
            raise TransientIOError(f"Supabase unreachable: {e}", cause=e) from e

        if resp.status_code >= 400:
            err = _error_detail(resp)
            logger.error("%s %s error (%s): %s", method, path, resp.status_code, err)
            if resp.status_code == 409 or err.get("code") == UNIQUE_VIOLATION_CODE:
                raise UniqueViolationError(err.get("message") or "Duplicate row")
            if resp.status_code == 401:
                raise AuthenticationError(err.get("message") or err.get("msg") or "Not authenticated")
            raise TransientIOError(
                f"Supabase error {resp.status_code}: {err.get('message') or err.get('msg') or err}"
            )
        return resp

    # --- PostgREST ---

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Iterable[Filter] = (),
        order: Optional[str] = None,
        limit: Optional[int] = None,
        embedded: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> List[Dict[str, Any]]:
        params = build_params(columns, filters, order, limit, embedded)
        resp = await self._request("GET", f"/rest/v1/{table}", params=params)
        return resp.json()

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        data = resp.json()
        return data[0] if isinstance(data, list) and data else data

    async def update(self, table: str, row_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        resp = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=[("id", f"eq.{row_id}")],
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        data = resp.json()
        return data[0] if isinstance(data, list) and data else None

    async def delete(self, table: str, row_id: str) -> None:
        await self._request("DELETE", f"/rest/v1/{table}", params=[("id", f"eq.{row_id}")])

    async def rpc(self, function: str, args: Dict[str, Any]) -> Any:
        resp = await self._request("POST", f"/rest/v1/rpc/{function}", json=args)
        return resp.json()

    # --- Storage ---

    async def upload_blob(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    # --- Auth ---

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        resp = await self._request(
            "GET",
            "/auth/v1/user",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return resp.json()


_supabase_client: Optional[SupabaseClient] = None


def get_supabase_client() -> SupabaseClient:
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client
