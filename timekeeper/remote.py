# timekeeper/remote.py
# -----------------------------------------------------------------------------
# Remote query/mutation API (GraphQL gateway) client.
#
# Only the four operations the timekeeper needs:
#   - uploadModelToCar            (mutation)  -> ssmCommandId
#   - getUploadModelToCarStatus   (query)     -> ssmCommandStatus
#   - getAllEvents                (query)     -> events for racer selection
#   - carsOnline                  (query)     -> upload targets
#
# One shared httpx.AsyncClient, opened on start() (or lazily on first call).
# -----------------------------------------------------------------------------
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from .errors import RemoteApiError, StatusQueryError, UploadInitiationError
from .models import Event

log = logging.getLogger("timekeeper.remote")

UPLOAD_MODEL_TO_CAR = """
mutation uploadModelToCar($entry: UploadModelToCarInput!) {
  uploadModelToCar(entry: $entry) { carInstanceId modelKey ssmCommandId }
}
"""

GET_UPLOAD_STATUS = """
query getUploadModelToCarStatus($carInstanceId: String!, $ssmCommandId: String!) {
  getUploadModelToCarStatus(carInstanceId: $carInstanceId, ssmCommandId: $ssmCommandId) {
    carInstanceId ssmCommandId ssmCommandStatus
  }
}
"""

GET_ALL_EVENTS = """
query getAllEvents {
  getAllEvents { eventId eventName raceTimeInSec numberOfResets }
}
"""

CARS_ONLINE = """
query carsOnline {
  carsOnline { InstanceId ComputerName IPAddress AgentVersion eventId eventName }
}
"""


class RemoteApi:
    def __init__(self, base_url: str, *, api_key: Optional[str] = None,
                 timeout_ms: int = 5000, path: str = "/graphql",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.api_key = api_key
        self.timeout = timeout_ms / 1000.0
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        if self._client is None:
            headers = {"x-api-key": self.api_key} if self.api_key else {}
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                             headers=headers, transport=self._transport)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if self._client is None:
            await self.start()
        assert self._client is not None
        t0 = time.perf_counter()
        try:
            resp = await self._client.post(self.path, json={"query": query, "variables": variables or {}})
        except httpx.HTTPError as ex:
            raise RemoteApiError(f"{type(ex).__name__}: {ex}") from ex

        latency_ms = round((time.perf_counter() - t0) * 1000, 1)
        if not (200 <= resp.status_code < 300):
            log.warning("[REMOTE] http %s after %sms", resp.status_code, latency_ms)
            raise RemoteApiError(f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as ex:
            raise RemoteApiError("response was not JSON") from ex

        if not isinstance(body, dict):
            raise RemoteApiError("response root must be an object")
        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else errors
            msg = first.get("message") if isinstance(first, dict) else str(first)
            raise RemoteApiError(f"graphql error: {msg}")
        log.debug("[REMOTE] ok in %sms", latency_ms)
        return body.get("data") or {}

    # ----------------------- uploads -----------------------
    async def submit_upload(self, car_id: str, model_key: str) -> Dict[str, Optional[str]]:
        variables = {"entry": {"carInstanceId": car_id, "modelKey": model_key}}
        try:
            data = await self._graphql(UPLOAD_MODEL_TO_CAR, variables)
        except RemoteApiError as ex:
            raise UploadInitiationError(str(ex)) from ex
        row = data.get("uploadModelToCar") or {}
        return {"command_id": row.get("ssmCommandId")}

    async def query_upload_status(self, car_id: str, command_id: str) -> Dict[str, Optional[str]]:
        variables = {"carInstanceId": car_id, "ssmCommandId": command_id}
        try:
            data = await self._graphql(GET_UPLOAD_STATUS, variables)
        except RemoteApiError as ex:
            raise StatusQueryError(str(ex)) from ex
        row = data.get("getUploadModelToCarStatus") or {}
        return {"status": row.get("ssmCommandStatus")}

    # ----------------------- lookups -----------------------
    async def list_events(self) -> List[Event]:
        data = await self._graphql(GET_ALL_EVENTS)
        events: List[Event] = []
        for row in data.get("getAllEvents") or []:
            try:
                events.append(Event.from_remote(row))
            except ValueError as ex:
                log.warning("[REMOTE] skipping event %r: %s", (row or {}).get("eventId"), ex)
        return events

    async def list_cars_online(self) -> List[Dict[str, Any]]:
        data = await self._graphql(CARS_ONLINE)
        return [dict(row) for row in (data.get("carsOnline") or []) if isinstance(row, dict)]
