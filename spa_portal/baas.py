"""
Supabase client - PostgREST row access and GoTrue auth/admin calls over httpx.

All persisted state lives in the hosted project; this module is the only
place that knows the REST wire conventions (filter operators in query params,
Prefer headers, the single-object Accept header and its PGRST116 miss).
"""

import logging
from typing import Any, Optional

import httpx

from .config import BAAS_TIMEOUT, SUPABASE_ANON_KEY, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

SINGLE_OBJECT = "application/vnd.pgrst.object+json"


class BaasError(Exception):
    """A request to the hosted backend failed"""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class NotFoundError(BaasError):
    """Single-row query matched no row (PostgREST PGRST116)"""


def _encode_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def build_filters(
    eq: Optional[dict] = None,
    neq: Optional[dict] = None,
    gte: Optional[dict] = None,
    lte: Optional[dict] = None,
    is_: Optional[dict] = None,
) -> list[tuple[str, str]]:
    """Encode predicates as PostgREST query params (column=op.value)"""
    params: list[tuple[str, str]] = []
    for op, predicates in (("eq", eq), ("neq", neq), ("gte", gte), ("lte", lte), ("is", is_)):
        for column, value in (predicates or {}).items():
            params.append((column, f"{op}.{_encode_value(value)}"))
    return params


class BaasClient:
    """Thin async client for the Supabase REST and auth endpoints"""

    def __init__(
        self,
        url: str = SUPABASE_URL,
        api_key: Optional[str] = SUPABASE_SERVICE_ROLE_KEY,
        anon_key: Optional[str] = SUPABASE_ANON_KEY,
        timeout: float = BAAS_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url:
            raise ValueError("SUPABASE_URL not configured")
        self.url = url.rstrip("/")
        self.api_key = api_key or anon_key or ""
        self.anon_key = anon_key or self.api_key
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
            },
        )

    async def close(self):
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Low level
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[list[tuple[str, str]]] = None,
        json: Any = None,
        headers: Optional[dict] = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ {method} {path} failed: {type(e).__name__}: {e}")
            raise BaasError(f"Backend request failed: {e}") from e

        if response.status_code >= 400:
            raise self._error_from_response(method, path, response)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_from_response(method: str, path: str, response: httpx.Response) -> BaasError:
        code = None
        message = response.text[:500]
        try:
            body = response.json()
            code = body.get("code") or body.get("error_code")
            message = body.get("message") or body.get("msg") or body.get("error_description") or message
        except ValueError:
            pass

        if code == "PGRST116" or (response.status_code == 406 and code is None):
            logger.debug(f"{method} {path}: no matching row")
            return NotFoundError(message, status_code=response.status_code, code="PGRST116")

        logger.error(f"❌ {method} {path} returned {response.status_code}: {code} {message}")
        return BaasError(message, status_code=response.status_code, code=code)

    # ------------------------------------------------------------------
    # Rows (PostgREST)
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        eq: Optional[dict] = None,
        neq: Optional[dict] = None,
        gte: Optional[dict] = None,
        lte: Optional[dict] = None,
        is_: Optional[dict] = None,
        order: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Read rows matching equality/range predicates"""
        params = [("select", columns)]
        params += build_filters(eq=eq, neq=neq, gte=gte, lte=lte, is_=is_)
        if order:
            params.append(("order", f"{order}.{'desc' if desc else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        rows = await self._request("GET", f"/rest/v1/{table}", params=params)
        return rows or []

    async def select_one(
        self,
        table: str,
        columns: str = "*",
        *,
        eq: Optional[dict] = None,
    ) -> dict:
        """Read exactly one row; raises NotFoundError when nothing matches"""
        params = [("select", columns)] + build_filters(eq=eq)
        return await self._request(
            "GET", f"/rest/v1/{table}", params=params, headers={"Accept": SINGLE_OBJECT}
        )

    async def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        result = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            headers={"Prefer": "return=representation"},
        )
        return result or []

    async def upsert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        result = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            headers={"Prefer": "return=representation,resolution=merge-duplicates"},
        )
        return result or []

    async def update(self, table: str, patch: dict, *, eq: dict) -> list[dict]:
        """Patch every row matching eq; an empty predicate is refused"""
        if not eq:
            raise ValueError("update requires at least one equality predicate")
        result = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=build_filters(eq=eq),
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        return result or []

    # ------------------------------------------------------------------
    # Auth (GoTrue)
    # ------------------------------------------------------------------

    async def get_user(self, access_token: str) -> dict:
        """Resolve the user behind an access token"""
        return await self._request(
            "GET",
            "/auth/v1/user",
            headers={"apikey": self.anon_key, "Authorization": f"Bearer {access_token}"},
        )

    async def admin_create_user(
        self,
        *,
        email: str,
        password: str,
        email_confirm: bool = True,
        user_metadata: Optional[dict] = None,
    ) -> dict:
        return await self._request(
            "POST",
            "/auth/v1/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": email_confirm,
                "user_metadata": user_metadata or {},
            },
        )

    async def admin_update_user(self, user_id: str, attributes: dict) -> dict:
        return await self._request("PUT", f"/auth/v1/admin/users/{user_id}", json=attributes)
