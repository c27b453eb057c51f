"""
Pin Store Client — map pins through the VTT REST API relay (Async)

The pin store (the VTT's map annotation service) is reached through the same
relay the rest of the campaign tooling uses:

  Quest services  --(REST/HTTP)-->  Relay Server  --(WebSocket)-->  VTT + pins module

Requires:
  - FOUNDRY_API_KEY: Your relay API key
  - FOUNDRY_RELAY_URL: Relay server URL (default: public relay)
  - FOUNDRY_CLIENT_ID: Your world's client ID (auto-discovered if not set)

The integration is optional. `probe()` runs once at startup; afterwards
`is_available()` answers from the cached result and every quest service
treats a False as "no pin store", never as an error.

All public methods except `is_available()` are async.
"""

import os
import json
import random
import asyncio
import logging
from typing import Optional, Dict, Any, List, AsyncIterator, Protocol

import aiohttp
from pydantic import ValidationError

from integrations.pin_store_errors import (
    PinStoreError,
    PinStoreConnectionError,
    PinStoreTimeoutError,
    PinStoreRateLimitError,
    PinStoreUnavailableError,
    PinNotFoundError,
    PinStoreAuthError,
    PinPermissionError,
)
from models.pins import Pin, PinPlacement, PinEvent
from tools.rate_limiter import pin_store_limiter

logger = logging.getLogger('PinStoreClient')


def _retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header. The HTTP-date form is not used by the relay."""
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class PinStoreCapability(Protocol):
    """What the quest services need from a pin store."""

    def is_available(self) -> bool: ...

    async def create(self, pin: Pin, placement: Optional[PinPlacement] = None) -> Pin: ...

    async def get(self, pin_id: str) -> Optional[Pin]: ...

    async def update(self, pin_id: str, patch: Dict[str, Any],
                     scene_id: Optional[str] = None) -> Pin: ...

    async def delete(self, pin_id: str, scene_id: Optional[str] = None) -> None: ...

    async def place(self, pin_id: str, placement: PinPlacement) -> Pin: ...

    async def unplace(self, pin_id: str) -> Pin: ...

    async def list(self, owner_tag: str, scene_id: Optional[str] = None,
                   unplaced: bool = False) -> List[Pin]: ...

    async def exists(self, pin_id: str) -> bool: ...

    async def set_module_visibility(self, owner_tag: str, visible: bool) -> None: ...

    async def get_module_visibility(self, owner_tag: str) -> bool: ...


class PinStoreClient:
    """Async client for the pin endpoints of the VTT REST relay.

    Usage:
        client = PinStoreClient()
        await client.probe()        # creates aiohttp session, discovers clientId
        pins = await client.list("quest-pins", scene_id="Scene.abc")
        await client.close()        # cleans up the TCP session
    """

    def __init__(self):
        self.api_key = os.getenv('FOUNDRY_API_KEY')
        self.relay_url = os.getenv(
            'FOUNDRY_RELAY_URL',
            'https://foundryvtt-rest-api-relay.fly.dev'
        ).rstrip('/')
        self.client_id = os.getenv('FOUNDRY_CLIENT_ID')
        self._available = False
        self._session: Optional[aiohttp.ClientSession] = None

        # Retry settings
        self.max_retries = 3
        self.base_delay = 1.0  # seconds; doubles each retry (1, 2, 4)

        if not self.api_key:
            logger.warning("FOUNDRY_API_KEY not set — quest pins disabled.")

    # ------------------------------------------------------------------
    # Internal HTTP layer
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'x-api-key': self.api_key or '',
        }

    async def _raise_for_status(self, resp: aiohttp.ClientResponse) -> None:
        """Map HTTP status codes to specific pin store error types."""
        if resp.status < 400:
            return
        body = await resp.text()
        if resp.status == 401:
            raise PinStoreAuthError(f"Auth failed ({resp.status}): {body}")
        elif resp.status == 403:
            raise PinPermissionError(f"Permission denied ({resp.status}): {body}")
        elif resp.status == 404:
            raise PinNotFoundError(f"Not found ({resp.status}): {body}")
        elif resp.status == 429:
            raise PinStoreRateLimitError(
                f"Rate limited ({resp.status}): {body}",
                retry_after=_retry_after(resp.headers.get("Retry-After")),
            )
        elif resp.status == 503:
            raise PinStoreUnavailableError(f"Pin store not ready ({resp.status}): {body}")
        elif resp.status >= 500:
            raise PinStoreConnectionError(f"Server error ({resp.status}): {body}")
        else:
            raise PinStoreError(f"HTTP {resp.status}: {body}")

    async def _raw_request(
        self,
        method: str,
        path: str,
        body: Optional[Dict] = None,
        params: Optional[Dict] = None,
        timeout: int = 15,
        inject_client_id: bool = True,
    ) -> Any:
        """Execute a single HTTP request (no retry)."""
        session = self._session
        if session is None or session.closed:
            raise PinStoreConnectionError("No active aiohttp session — call probe() first.")

        url = f"{self.relay_url}{path}"
        params = dict(params or {})
        if inject_client_id and self.client_id and 'clientId' not in params:
            params['clientId'] = self.client_id

        client_timeout = aiohttp.ClientTimeout(total=timeout)
        kwargs: Dict[str, Any] = {
            'headers': self._headers(),
            'params': params,
            'timeout': client_timeout,
        }
        if method in ('POST', 'PUT'):
            kwargs['json'] = body or {}

        try:
            async with session.request(method, url, **kwargs) as resp:
                await self._raise_for_status(resp)
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise PinStoreConnectionError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise PinStoreTimeoutError(f"Request timed out after {timeout}s: {path}") from e

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict] = None,
        params: Optional[Dict] = None,
        timeout: int = 15,
    ) -> Any:
        """HTTP request with rate limiting and retry."""
        if not self._available:
            raise PinStoreUnavailableError("Pin store is not available.")

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            await pin_store_limiter.acquire()
            try:
                return await self._raw_request(method, path, body=body, params=params, timeout=timeout)
            except (PinStoreConnectionError, PinStoreTimeoutError, PinStoreRateLimitError) as e:
                last_error = e
                delay = self.base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                if isinstance(e, PinStoreRateLimitError):
                    # pauses the shared bucket; the next acquire() waits it out
                    delay = pin_store_limiter.penalize(e.retry_after if e.retry_after is not None else delay)
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Pin store request failed (attempt {attempt + 1}/{self.max_retries}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    if not isinstance(e, PinStoreRateLimitError):
                        await asyncio.sleep(delay)
            # Non-retryable errors (NotFound, Auth, Permission) propagate immediately

        raise last_error  # type: ignore[misc]

    @staticmethod
    def _data(result: Any) -> Any:
        if isinstance(result, dict) and 'data' in result:
            return result['data']
        return result

    # ------------------------------------------------------------------
    # Connection & Availability
    # ------------------------------------------------------------------

    async def probe(self) -> bool:
        """Check once whether the relay and the pins module are reachable.

        Auto-discovers clientId if not set. The result is cached for
        `is_available()`.
        """
        self._available = False
        if not self.api_key:
            logger.info("Pin store disabled (no API key set).")
            return False

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        try:
            clients = await self._raw_request('GET', '/clients', timeout=10, inject_client_id=False)
            if not clients:
                logger.warning("No VTT worlds connected to the relay.")
                return False

            if not self.client_id:
                if isinstance(clients, list):
                    self.client_id = clients[0].get('clientId') or clients[0].get('id')
                elif isinstance(clients, dict):
                    for val in clients.values():
                        if isinstance(val, list) and val:
                            self.client_id = val[0].get('clientId') or val[0].get('id')
                            break
                if not self.client_id:
                    logger.warning("Could not auto-discover clientId from response.")
                    return False
                logger.info(f"Auto-discovered clientId: {self.client_id}")

            status = self._data(await self._raw_request('GET', '/pins/status', timeout=10))
            ready = bool(status.get('ready')) if isinstance(status, dict) else bool(status)
            if not ready:
                logger.warning("Pins module present but not ready.")
                return False

            self._available = True
            logger.info(f"Pin store available via {self.relay_url} (client: {self.client_id})")
            return True

        except PinStoreError as e:
            logger.warning(f"Pin store unavailable: {e}")
            return False

    def is_available(self) -> bool:
        return self._available

    async def close(self) -> None:
        """Shut down the aiohttp session cleanly."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        self._available = False
        logger.info("Pin store client closed.")

    # ------------------------------------------------------------------
    # Pin CRUD
    # ------------------------------------------------------------------

    def _pin(self, data: Any) -> Pin:
        try:
            return Pin.model_validate(data)
        except ValidationError as e:
            raise PinStoreError(f"Malformed pin payload: {e}") from e

    async def create(self, pin: Pin, placement: Optional[PinPlacement] = None) -> Pin:
        """Create a pin (keeping its id). Unplaced unless a placement is given."""
        created = self._pin(self._data(await self._request('POST', '/pins', body=pin.to_wire())))
        if placement is not None:
            created = await self.place(created.id, placement)
        return created

    async def get(self, pin_id: str) -> Optional[Pin]:
        try:
            return self._pin(self._data(await self._request('GET', f'/pins/{pin_id}')))
        except PinNotFoundError:
            return None

    async def update(self, pin_id: str, patch: Dict[str, Any],
                     scene_id: Optional[str] = None) -> Pin:
        params = {'sceneId': scene_id} if scene_id else None
        return self._pin(self._data(
            await self._request('PUT', f'/pins/{pin_id}', body={'patch': patch}, params=params)
        ))

    async def delete(self, pin_id: str, scene_id: Optional[str] = None) -> None:
        params = {'sceneId': scene_id} if scene_id else None
        await self._request('DELETE', f'/pins/{pin_id}', params=params)

    async def place(self, pin_id: str, placement: PinPlacement) -> Pin:
        return self._pin(self._data(await self._request(
            'POST', f'/pins/{pin_id}/place', body=placement.model_dump(by_alias=True)
        )))

    async def unplace(self, pin_id: str) -> Pin:
        return self._pin(self._data(await self._request('POST', f'/pins/{pin_id}/unplace')))

    async def list(self, owner_tag: str, scene_id: Optional[str] = None,
                   unplaced: bool = False) -> List[Pin]:
        """Pins tagged with ``owner_tag``: on one scene, on all scenes, or unplaced."""
        params: Dict[str, Any] = {'moduleId': owner_tag}
        if unplaced:
            params['unplaced'] = 'true'
        elif scene_id:
            params['sceneId'] = scene_id
        rows = self._data(await self._request('GET', '/pins', params=params)) or []
        pins = []
        for row in rows:
            try:
                pins.append(Pin.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed pin {row.get('id') if isinstance(row, dict) else row}: {e}")
        return pins

    async def exists(self, pin_id: str) -> bool:
        return await self.get(pin_id) is not None

    async def set_module_visibility(self, owner_tag: str, visible: bool) -> None:
        await self._request('PUT', '/pins/visibility',
                            body={'moduleId': owner_tag, 'visible': bool(visible)})

    async def get_module_visibility(self, owner_tag: str) -> bool:
        result = self._data(await self._request('GET', '/pins/visibility',
                                                params={'moduleId': owner_tag}))
        if isinstance(result, dict):
            return bool(result.get('visible', True))
        return bool(result)

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    async def events(self, owner_tag: str) -> AsyncIterator[PinEvent]:
        """Yield pin store events for ``owner_tag`` from the relay websocket."""
        if not self._available or self._session is None:
            raise PinStoreUnavailableError("Pin store is not available.")
        url = f"{self.relay_url}/pins/events"
        params = {'clientId': self.client_id, 'moduleId': owner_tag}
        async with self._session.ws_connect(url, headers=self._headers(), params=params,
                                            heartbeat=30) as ws:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        yield PinEvent.model_validate(json.loads(msg.data))
                    except (ValueError, ValidationError) as e:
                        logger.warning(f"Ignoring malformed pin event: {e}")
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    logger.warning("Pin event stream closed.")
                    break
