import asyncio

import aiohttp
import structlog

from .config import Config

log = structlog.get_logger()


class ReflowClientError(Exception):
    """Raised when the service answers with an error body or is unreachable."""

    def __init__(self, message, status=None, code=None):
        super().__init__(message)
        self.status = status
        self.code = code


class ReflowClient:
    """
    Async client for the Reflow HTTP surface.

    GET requests are retried with linear backoff; mutations are sent once,
    since a claim or create must not be replayed blindly.
    """

    def __init__(self, base_url, config: Config = None, session_id=None, timeout=5):
        config = config or Config()
        self.base_url = base_url.rstrip("/")
        self.session_id = session_id
        self.retry_attempts = config.client_retries
        self.retry_backoff_ms = config.client_retry_backoff_ms
        self.timeout = timeout
        self.stats = {"requests": 0, "failures": 0, "retries": 0}

    def _headers(self):
        if self.session_id:
            return {"X-Session-Id": self.session_id}
        return {}

    async def _request(self, method, path, json=None, params=None):
        self.stats["requests"] += 1
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        ) as session:
            async with session.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=self._headers(),
            ) as response:
                body = await response.json()
                if response.status >= 400:
                    self.stats["failures"] += 1
                    code = body.get("code") if isinstance(body, dict) else None
                    message = body.get("message", str(body)) if isinstance(body, dict) else str(body)
                    raise ReflowClientError(message, status=response.status, code=code)
                return body

    async def _get(self, path, params=None):
        last_error = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self._request("GET", path, params=params)
            except ReflowClientError:
                raise
            except Exception as error:
                self.stats["failures"] += 1
                last_error = error
                if attempt < self.retry_attempts:
                    self.stats["retries"] += 1
                    await asyncio.sleep((self.retry_backoff_ms / 1000.0) * attempt)

        log.warning("client_request_failed", path=path, error=str(last_error))
        raise ReflowClientError(f"GET {path} failed: {last_error}")

    # --- materials ---

    async def list_materials(self, type=None, status=None, order="inserted"):
        params = {"order": order}
        if type:
            params["type"] = type
        if status:
            params["status"] = status
        return await self._get("/materials", params=params)

    async def get_material(self, material_id):
        return await self._get(f"/materials/{material_id}")

    async def summary(self):
        return await self._get("/materials/summary")

    async def create_material(self, type, weight, position=None, generator_id=None):
        payload = {"type": type, "weight": weight}
        if position is not None:
            payload["position"] = list(position)
        if generator_id is not None:
            payload["generatorId"] = generator_id
        return await self._request("POST", "/materials", json=payload)

    async def claim(self, material_id, collector_id=None):
        payload = {"collectorId": collector_id} if collector_id else None
        return await self._request("POST", f"/materials/{material_id}/claim", json=payload)

    async def complete(self, material_id):
        return await self._request("POST", f"/materials/{material_id}/complete")

    async def reset(self):
        return await self._request("POST", "/materials/reset")

    # --- simulation / notifications ---

    async def trucks(self):
        return await self._get("/trucks")

    async def set_simulation(self, enabled):
        return await self._request("POST", "/simulation/enable" if enabled else "/simulation/disable")

    async def list_notifications(self):
        return await self._get("/notifications")

    # --- session ---

    async def login(self, name="João Silva"):
        body = await self._request("POST", "/session/login", json={"name": name})
        self.session_id = body["session_id"]
        return body["identity"]

    async def complete_profile(self, role, details=None):
        return await self._request(
            "POST", "/session/profile", json={"role": role, "details": details or {}}
        )
