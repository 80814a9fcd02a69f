# chat_bridge/client.py
import logging

import httpx


class GameApiClient:
    """Async client for the game's HTTP endpoints. Every call returns the JSON payload."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self._transport) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logging.warning(f"Game API {method} {path} failed: {exc}")
            return {"ok": False, "error": "unreachable"}

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            return {"ok": False, "error": str(response.status_code)}
        return payload

    async def get_balance(self, user: str) -> dict:
        return await self._request("GET", "/balance", params={"user": user})

    async def get_leaderboard(self) -> dict:
        return await self._request("GET", "/leaderboard")

    async def place_bet(self, user: str, slot: int, amount: int) -> dict:
        return await self._request("POST", "/bet", json={"user": user, "slot": slot, "amount": amount})
