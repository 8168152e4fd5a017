"""
HTTP transcription engine.

Talks to a local ASR server (e.g. a Whisper server) that accepts base64 PCM.
Set ASR_SERVER_URL to point at a remote server:
    export ASR_SERVER_URL=http://100.x.x.x:9876
"""

import base64
import os
from typing import Dict, Optional
from urllib.parse import urlparse

import requests

from ..exceptions import EngineError, EngineTimeout, EngineUnavailable
from ..logger import get_logger
from .base import EngineRequest, EngineResult, TranscriptionEngine

logger = get_logger(__name__)

DEFAULT_SERVER_URL = "http://localhost:9876"


def _validate_server_url(url: str) -> str:
    """Validate server URL has valid scheme and netloc.

    Args:
        url: The server URL to validate

    Returns:
        The validated URL (stripped of trailing slash)

    Raises:
        ValueError: If URL is malformed
    """
    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https"):
        raise ValueError(
            f"Invalid ASR server URL: must start with http:// or https:// (got '{url}')"
        )

    if not parsed.netloc or not parsed.hostname:
        raise ValueError(
            f"Invalid ASR server URL: missing host (got '{url}')"
        )

    return url.rstrip("/")


class HttpTranscriptionEngine(TranscriptionEngine):
    """Engine backed by an ASR server's /transcribe endpoint."""

    ENGINE_ID = "http"
    ENGINE_NAME = "ASR Server"

    def __init__(self, server_url: Optional[str] = None, timeout: float = 60.0,
                 api_token: Optional[str] = None, language: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        url = server_url or os.environ.get("ASR_SERVER_URL", DEFAULT_SERVER_URL)
        self.server_url = _validate_server_url(url)
        self.timeout = timeout  # Read timeout
        self.connect_timeout = 5.0  # Fail fast if server unreachable
        self.api_token = api_token or os.environ.get("ASR_API_TOKEN")
        self.language = language
        self._session = session or requests.Session()

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for requests, including API token if configured."""
        headers = {}
        if self.api_token:
            headers["X-API-Token"] = self.api_token
        return headers

    def is_available(self) -> bool:
        """Check if the ASR server is running and ready."""
        try:
            response = self._session.get(
                f"{self.server_url}/status",
                timeout=2.0,
                headers=self._get_headers()
            )
            if response.status_code == 200:
                return bool(response.json().get("ready", False))
        except requests.RequestException:
            pass
        return False

    def transcribe(self, request: EngineRequest) -> EngineResult:
        payload = {
            "audio_base64": base64.b64encode(request.pcm_bytes).decode("utf-8"),
            "sample_rate": request.sample_rate,
            "vad_filter": True,
            "session_id": request.session_id,
            "seq": request.seq,
        }
        if self.language:
            payload["language"] = self.language

        # Base read timeout + 3x audio duration, capped at 15 min
        read_timeout = min(self.timeout + request.duration_seconds * 3, 900.0)

        try:
            response = self._session.post(
                f"{self.server_url}/transcribe",
                json=payload,
                timeout=(self.connect_timeout, read_timeout),
                headers=self._get_headers()
            )
        except requests.Timeout as e:
            raise EngineTimeout(f"ASR server timed out after {read_timeout:.0f}s") from e
        except requests.RequestException as e:
            raise EngineUnavailable(f"ASR server unreachable: {e}") from e

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError as e:
                raise EngineError(f"ASR server returned a malformed response: {e}") from e
            return EngineResult(
                text=data.get("text", ""),
                start_ts=float(data.get("start_ts", 0.0)),
                end_ts=float(data.get("end_ts", data.get("duration_seconds", request.duration_seconds))),
                confidence=float(data.get("confidence", 1.0))
            )
        if response.status_code in (502, 503, 504):
            raise EngineUnavailable(f"ASR server not ready ({response.status_code})")
        if response.status_code == 401:
            # Auth errors are not retryable
            raise EngineError("ASR server rejected the API token")
        raise EngineError(f"ASR server error: {response.status_code}")

    def close(self) -> None:
        self._session.close()
