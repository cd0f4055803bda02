"""
LotL Client - minimal client for a local LotL controller

The controller forwards a plain-text prompt to a logged-in browser chat
session and returns the reply, so summaries can be produced without an API key.

Usage:
    client = LotLClient()
    if client.is_available():
        reply = client.chat("Summarize: ...")
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from threadcapture.config import settings

logger = logging.getLogger(__name__)


class LotLClient:
    """HTTP client for the LotL controller's ``/aistudio`` (or legacy ``/chat``) endpoint."""

    def __init__(
        self,
        base_url: str = settings.LOTL_BASE_URL,
        timeout: float = settings.LOTL_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def health(self) -> dict:
        """
        Check if the controller is running.

        Raises:
            ConnectionError: If controller is not reachable
        """
        try:
            with httpx.Client(timeout=5.0) as client:
                response = client.get(f"{self.base_url}/health")
                return response.json()
        except httpx.ConnectError as exc:
            raise ConnectionError(
                f"Cannot connect to LotL Controller at {self.base_url}"
            ) from exc

    def is_available(self) -> bool:
        try:
            return self.health().get("status") == "ok"
        except (ConnectionError, httpx.HTTPError, ValueError):
            return False

    def chat(self, prompt: str, timeout: Optional[float] = None) -> str:
        """
        Send a prompt and return the reply text.

        Raises:
            ConnectionError: If controller is not reachable
            TimeoutError: If the controller did not answer in time
            RuntimeError: If the controller reports a failure
        """
        payload = {"prompt": prompt}
        try:
            with httpx.Client(timeout=timeout or self.timeout) as client:
                response = client.post(f"{self.base_url}/aistudio", json=payload)
                if response.status_code == 404:
                    response = client.post(f"{self.base_url}/chat", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.ConnectError as exc:
            raise ConnectionError(
                f"Cannot connect to LotL Controller at {self.base_url}"
            ) from exc
        except httpx.TimeoutException as exc:
            raise TimeoutError(
                f"Request timed out after {timeout or self.timeout}s"
            ) from exc

        if data.get("success"):
            return data["reply"]
        raise RuntimeError(data.get("error", "Unknown error"))

    def __repr__(self) -> str:
        return f"LotLClient(base_url='{self.base_url}', timeout={self.timeout})"
