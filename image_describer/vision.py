"""Client for the external image description API."""
import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import DEFAULT_VISION_PARAMS, DEFAULT_VISION_URL

logger = logging.getLogger(__name__)


class DescribeError(Exception):
    """A single describe call failed. Returned to the caller, never raised out of describe()."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class DescribeResult:
    description: Optional[Dict[str, Any]] = None
    error: Optional[DescribeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.description is not None


def to_data_uri(data: bytes, media_type_hint: str) -> str:
    payload = base64.b64encode(data).decode("ascii")
    return f"data:image/{media_type_hint};base64,{payload}"


def create_http_client(timeout: float, max_connections: int) -> httpx.AsyncClient:
    """
    Shared client for all describe calls. The pool is shared by every request
    in flight, so it is sized independently of the wave width.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        limits=httpx.Limits(
            max_keepalive_connections=max_connections,
            max_connections=max_connections,
        ),
    )


class VisionClient:
    """
    Sends one image per call to the describe endpoint.

    Every failure mode (non-2xx status, transport error or timeout, a body
    that is not a JSON object, or an explicit error status in the body) is
    reported as a DescribeResult carrying a DescribeError. No retries.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        url: str = DEFAULT_VISION_URL,
        model_version: str = "2.1_full",
        vision_params: str = DEFAULT_VISION_PARAMS,
        gpt_prompt: str = "",
        prompt_length: int = 95,
    ):
        self.http_client = http_client
        self.url = url
        self.model_version = model_version
        self.vision_params = vision_params
        self.gpt_prompt = gpt_prompt
        self.prompt_length = prompt_length

    def build_request(self, data: bytes, media_type_hint: str, api_key: str) -> Dict[str, Any]:
        return {
            "tkn": api_key,
            "modelVersion": self.model_version,
            "input": to_data_uri(data, media_type_hint),
            "visionParams": self.vision_params,
            "gpt_prompt": self.gpt_prompt,
            "prompt_length": self.prompt_length,
        }

    async def describe(self, data: bytes, media_type_hint: str, api_key: str) -> DescribeResult:
        body = self.build_request(data, media_type_hint, api_key)

        try:
            response = await self.http_client.post(self.url, json=body)
        except httpx.HTTPError as e:
            return DescribeResult(error=DescribeError(f"Request failed: {e!r}"))

        if not response.is_success:
            return DescribeResult(
                error=DescribeError(
                    f"Unexpected status {response.status_code}",
                    status_code=response.status_code,
                )
            )

        try:
            payload = response.json()
        except ValueError:
            return DescribeResult(
                error=DescribeError("Response body is not JSON", status_code=response.status_code)
            )

        if not isinstance(payload, dict) or not payload:
            return DescribeResult(
                error=DescribeError("Response body is not an object", status_code=response.status_code)
            )

        # the API reports some failures (bad key, unreadable image) with a 200
        if str(payload.get("status", "")).lower() == "error":
            return DescribeResult(
                error=DescribeError(
                    f"API error: {payload.get('error', 'unknown')}",
                    status_code=response.status_code,
                )
            )

        return DescribeResult(description=payload)
