import logging
import os
from typing import Any

import requests

from kitflow.config.loader import engine_section
from kitflow.transport.base import BaseTransport, RoundDecision, RoundOutcome, TransportError
from kitflow.transport.codec import decode_outcome, encode_decision

logger = logging.getLogger(__name__)

START_PATH = "/api/v1/session/start"
ROUND_PATH = "/api/v1/play/round"
END_PATH = "/api/v1/session/end"


class HttpTransport(BaseTransport):
    """
    Session-based client for the evaluation platform. Every failure is
    surfaced as a TransportError; there is no retry, since a simulated hour
    cannot be replayed.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        config: dict[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        params = engine_section(config or {}, "transport")
        self.base_url = (base_url or params.get("base_url", "http://localhost:8080")).rstrip(
            "/"
        )
        self.timeout = float(params.get("timeout_seconds", 30))
        self.api_key = api_key or os.environ.get(params.get("api_key_env", "KITFLOW_API_KEY"), "")
        if not self.api_key:
            raise ValueError("An API key is required for the HTTP transport")

        self._session = session or requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        self._session.headers["API-KEY"] = self.api_key
        self.session_id: str | None = None

    def _post(self, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"POST {path} failed: {e}") from e
        return resp

    def _session_headers(self) -> dict[str, str]:
        if self.session_id is None:
            raise TransportError("Session not started")
        return {"SESSION-ID": self.session_id}

    def start(self) -> str:
        resp = self._post(START_PATH)
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise TransportError(f"Failed to start session: {e}") from e
        session_id = resp.text.strip().strip('"')
        if not session_id:
            raise TransportError("Session start returned an empty session id")
        self.session_id = session_id
        logger.info("Session started: %s", session_id)
        return session_id

    def play_round(self, decision: RoundDecision) -> RoundOutcome:
        headers = self._session_headers()
        resp = self._post(ROUND_PATH, json=encode_decision(decision), headers=headers)
        try:
            resp.raise_for_status()
            data = resp.json()
        except (requests.HTTPError, ValueError) as e:
            raise TransportError(
                f"Round failed (day {decision.day}, hour {decision.hour}): {e}"
            ) from e
        return decode_outcome(data)

    def end(self) -> RoundOutcome | None:
        headers = self._session_headers()
        resp = self._post(END_PATH, json={}, headers=headers)
        if resp.status_code == 404:
            logger.info("Session already ended by the platform")
            return None
        try:
            resp.raise_for_status()
            data = resp.json()
        except (requests.HTTPError, ValueError) as e:
            raise TransportError(f"Failed to end session: {e}") from e
        outcome = decode_outcome(data)
        logger.info("Session ended. Final cost: %.2f", outcome.total_cost)
        return outcome
