"""Tests for the DiagnosiX HTTP client."""

from __future__ import annotations

import base64
import json
from typing import TYPE_CHECKING

import httpx
import pytest

from diagnosix.client import DiagnosisClient, DiagnosisClientError, image_to_base64

if TYPE_CHECKING:
    from pathlib import Path

_TIMESTAMP = "2026-01-01T12:00:00Z"


def _client(handler: httpx.MockTransport, **kwargs: object) -> DiagnosisClient:
    return DiagnosisClient(base_url="http://diagnosix.local/", transport=handler, **kwargs)  # type: ignore[arg-type]


class TestImageToBase64:
    def test_png_data_url(self, tmp_path: Path) -> None:
        path = tmp_path / "scan.PNG"
        path.write_bytes(b"\x89PNG")
        assert image_to_base64(path) == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()

    def test_other_extensions_are_jpeg(self, tmp_path: Path) -> None:
        path = tmp_path / "scan.jpg"
        path.write_bytes(b"\xff\xd8")
        assert image_to_base64(path).startswith("data:image/jpeg;base64,")


class TestDiagnosisClient:
    def test_predict_file(self, tmp_path: Path, png_bytes: bytes) -> None:
        path = tmp_path / "scan.png"
        path.write_bytes(png_bytes)
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"success": True, "diagnosis": "Benign", "confidence": 97.31, "timestamp": _TIMESTAMP},
            )

        result = _client(httpx.MockTransport(handler)).predict_file(path)

        assert seen["url"] == "http://diagnosix.local/api/v1/predict"
        assert seen["body"] == {"image": image_to_base64(path)}
        assert result.diagnosis == "Benign"
        assert result.confidence == 97.31

    def test_check_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/health"
            return httpx.Response(
                200,
                json={
                    "status": "ok",
                    "model_loaded": False,
                    "concurrent_requests": 0,
                    "queue_depth": 0,
                    "timestamp": _TIMESTAMP,
                },
            )

        status = _client(httpx.MockTransport(handler)).check_status()
        assert status.model_loaded is False

    def test_api_key_is_sent(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer s3cret"
            return httpx.Response(
                200,
                json={
                    "status": "ok",
                    "model_loaded": True,
                    "concurrent_requests": 1,
                    "queue_depth": 0,
                    "timestamp": _TIMESTAMP,
                },
            )

        assert _client(httpx.MockTransport(handler), api_key="s3cret").check_status().model_loaded

    def test_error_status_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "model_unavailable", "message": "loading"})

        with pytest.raises(DiagnosisClientError, match="503"):
            _client(httpx.MockTransport(handler)).check_status()

    def test_connection_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DiagnosisClientError, match="Failed to call"):
            _client(httpx.MockTransport(handler)).check_status()
