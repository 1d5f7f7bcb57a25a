"""
Client for the remote sync executor (edge functions that pull from the ads
platform and write results).

The executor is opaque: it is invoked by function name with a JSON payload
and answers {success, data, error}. It runs its own retry/backoff, so every
invoke() here is a single attempt.
"""
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from adsync.errors import SyncError

logger = logging.getLogger(__name__)


class SyncExecutor(Protocol):
    async def invoke(self, function_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


class ExecutorResponse(BaseModel):
    """Executor reply. A missing ``success`` flag counts as failure."""
    success: bool = False
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def records_imported(self) -> int:
        data = self.data or {}
        for key in ("recordsImported", "records_imported", "daily_records_count"):
            if data.get(key) is not None:
                return int(data[key])
        return 0


def parse_response(raw: Any) -> ExecutorResponse:
    """Validate a raw executor reply; unparseable replies become failures."""
    if not isinstance(raw, dict):
        return ExecutorResponse(success=False, error="Malformed executor response")
    try:
        return ExecutorResponse.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Malformed executor response: %s", exc)
        return ExecutorResponse(success=False, error="Malformed executor response")


def build_payload(
    project_id: str,
    ad_account_id: Optional[str] = None,
    date_preset: Optional[str] = None,
) -> Dict[str, Any]:
    """Request body in the executor's snake_case wire format."""
    payload: Dict[str, Any] = {"project_id": project_id}
    if ad_account_id:
        payload["ad_account_id"] = ad_account_id
    if date_preset:
        payload["date_preset"] = date_preset
    return payload


class HttpSyncExecutor:
    """
    Invokes executor functions over HTTP:

        POST {base_url}/functions/v1/{function_name}
        Authorization: Bearer {api_key}

    Transport failures and non-JSON bodies raise SyncError; HTTP error
    statuses with a JSON body are returned as-is so the caller sees the
    executor's own error message.
    """

    def __init__(self, base_url: str, api_key: str = "", client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            base_url: Executor host, e.g. "https://xyz.supabase.co".
            api_key: Bearer token sent with every call.
            client: Optional shared httpx.AsyncClient (tests inject a MockTransport).
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = client

    async def invoke(self, function_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}/functions/v1/{function_name}"
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=None) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise SyncError(f"Executor request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise SyncError(
                f"Executor returned HTTP {response.status_code} with a non-JSON body"
            ) from exc

        if response.is_error:
            logger.warning(
                "Executor %s returned HTTP %d for project %s",
                function_name, response.status_code, payload.get("project_id"),
            )
        return body
