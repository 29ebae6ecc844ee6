"""HTTP client for a running DiagnosiX server."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from diagnosix.api.schemas import HealthResponse, PredictionResponse


class DiagnosisClientError(RuntimeError):
    """Raised when the server cannot be reached or rejects a request."""


def image_to_base64(path: str | Path) -> str:
    """Read an image file and return it as a base64 data URL."""
    image_path = Path(path)
    mime_type = "image/png" if image_path.suffix.lower() == ".png" else "image/jpeg"
    encoded = base64.b64encode(image_path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


@dataclass
class DiagnosisClient:
    base_url: str = "http://localhost:3000"
    timeout: float = 30.0
    api_key: str | None = None
    transport: httpx.BaseTransport | None = field(default=None, repr=False)

    def predict_file(self, path: str | Path) -> PredictionResponse:
        data = self._request("POST", "/api/v1/predict", json={"image": image_to_base64(path)})
        return PredictionResponse.model_validate(data)

    def check_status(self) -> HealthResponse:
        data = self._request("GET", "/api/v1/health")
        return HealthResponse.model_validate(data)

    def _request(self, method: str, path: str, **kwargs: object) -> dict[str, object]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        try:
            with httpx.Client(
                base_url=self.base_url.rstrip("/"),
                timeout=self.timeout,
                headers=headers,
                transport=self.transport,
            ) as client:
                response = client.request(method, path, **kwargs)  # type: ignore[arg-type]
                response.raise_for_status()
                data: dict[str, object] = response.json()
        except httpx.TimeoutException as exc:
            raise DiagnosisClientError(f"Timed out calling {path}") from exc
        except httpx.HTTPStatusError as exc:
            raise DiagnosisClientError(f"{path} returned {exc.response.status_code}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise DiagnosisClientError(f"Failed to call {path}: {exc}") from exc
        return data
