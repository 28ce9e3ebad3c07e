from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from src.core.config import get_settings


class DispatchError(Exception):
    pass


@dataclass
class DispatchEvent:
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "data": self.data}
        if self.id:
            payload["id"] = self.id
        return payload


class JobDispatcher(Protocol):
    def send(self, event: DispatchEvent) -> List[str]:
        ...


def send_events(
    events: List[DispatchEvent],
    *,
    base_url: str,
    event_key: str,
    timeout_seconds: int = 10,
    trace_id: str = "",
    client: Optional[httpx.Client] = None,
) -> List[str]:
    """
    Send events to the dispatcher's event API:
      POST {base}/e/{event_key}  [{id?, name, data}]
    Response is expected to contain:
      {ids: [...], status: 200}

    Blocking and loop-free, so it works from any thread, including one that
    already runs an event loop. Pass `client` to reuse a connection pool.
    """
    base = (base_url or "").rstrip("/")
    if not base or not event_key:
        raise DispatchError("dispatcher is not configured")

    headers: Optional[Dict[str, str]] = {"x-trace-id": trace_id} if trace_id else None
    payload = [e.as_payload() for e in events]
    try:
        if client is not None:
            resp = client.post(f"{base}/e/{event_key}", json=payload, headers=headers)
        else:
            with httpx.Client(timeout=max(1, int(timeout_seconds or 10))) as c:
                resp = c.post(f"{base}/e/{event_key}", json=payload, headers=headers)
    except httpx.HTTPError as exc:
        raise DispatchError(f"dispatcher unreachable: {exc}") from exc

    if resp.status_code >= 400:
        raise DispatchError(f"dispatcher rejected event ({resp.status_code}): {resp.text[:300]}")

    try:
        data = resp.json()
    except ValueError:
        return []

    ids = data.get("ids") if isinstance(data, dict) else None
    return [str(i) for i in ids] if isinstance(ids, list) else []


class HttpJobDispatcher:
    def __init__(
        self,
        base_url: str,
        event_key: str,
        *,
        timeout_seconds: int = 10,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url
        self.event_key = event_key
        self.timeout_seconds = timeout_seconds
        self.client = client

    def send(self, event: DispatchEvent) -> List[str]:
        return send_events(
            [event],
            base_url=self.base_url,
            event_key=self.event_key,
            timeout_seconds=self.timeout_seconds,
            client=self.client,
        )


def get_dispatcher() -> JobDispatcher:
    settings = get_settings()
    return HttpJobDispatcher(
        settings.DISPATCHER_URL,
        settings.DISPATCHER_EVENT_KEY,
        timeout_seconds=settings.DISPATCHER_TIMEOUT_SECONDS,
    )
