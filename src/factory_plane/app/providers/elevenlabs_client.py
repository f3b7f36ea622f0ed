"""Async client for the ElevenLabs conversational-agent API."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from .http import ProviderHTTP

logger = logging.getLogger(__name__)

SYSTEM = "eleven"


class ElevenLabsClient:
    """Create-or-fetch operations for tenant voice agents."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.elevenlabs.io",
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http = ProviderHTTP(
            system=SYSTEM,
            base_url=base_url,
            credential=api_key,
            credential_name="ELEVENLABS_API_KEY",
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        return {"xi-api-key": self._http.credential}

    async def find_agent(self, name: str) -> dict[str, Any] | None:
        resp = await self._http.request(
            "GET",
            "/v1/convai/agents",
            headers=self._headers(),
            params={"search": name, "page_size": 100},
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        agents = payload.get("agents", []) if isinstance(payload, dict) else []
        for agent in agents:
            if agent.get("name") == name:
                return agent
        return None

    async def create_agent(
        self, name: str, *, conversation_config: Mapping[str, Any],
    ) -> dict[str, Any]:
        resp = await self._http.request(
            "POST",
            "/v1/convai/agents/create",
            headers=self._headers(),
            json={"name": name, "conversation_config": dict(conversation_config)},
        )
        agent = ProviderHTTP.json_body(resp, system=SYSTEM)
        logger.info("Voice agent created: name=%s id=%s", name, agent.get("agent_id"))
        return agent

    async def get_signed_url(self, agent_id: str) -> str:
        """Signed websocket URL for a browser session with the agent."""
        resp = await self._http.request(
            "GET",
            "/v1/convai/conversation/get-signed-url",
            headers=self._headers(),
            params={"agent_id": agent_id},
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        return str(payload.get("signed_url") or "") if isinstance(payload, dict) else ""

    async def probe(self, agent_id: str, text: str = "ping") -> list[str]:
        """Send one synthetic user message; return the agent's replies."""
        resp = await self._http.request(
            "POST",
            f"/v1/convai/agents/{agent_id}/simulate-conversation",
            headers=self._headers(),
            json={
                "simulation_specification": {
                    "simulated_user_config": {"first_message": text},
                },
                "new_turns_limit": 1,
            },
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        turns = payload.get("simulated_conversation", []) if isinstance(payload, dict) else []
        return [
            str(turn.get("message"))
            for turn in turns
            if isinstance(turn, dict) and turn.get("role") == "agent" and turn.get("message")
        ]
