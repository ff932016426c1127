import asyncio
import json

import httpx
import pytest

from image_client import (
    EmptyResultError,
    ImageAPIClient,
    ImageAPIError,
    image_payload,
    normalize_images,
    to_data_uri,
)
from request_builder import build_edit_request, build_generate_request, build_variation_request
from schemas import RequestOptions


def call(handler, request):
    async def run():
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with ImageAPIClient(api_key="sk-test", base_url="https://api.test/v1",
                                  http_client=http_client) as client:
            return await client.execute(request)
    return asyncio.run(run())


def recording(status=200, payload=None, text=None):
    calls = []

    def handler(request):
        calls.append(request)
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=payload)
    return handler, calls


def test_normalize_images_urls_and_base64():
    data = [{"url": "https://img/1.png"}, {"b64_json": "aGVsbG8="}, {}]
    assert normalize_images(data) == ["https://img/1.png", "data:image/png;base64,aGVsbG8="]
    assert normalize_images(None) == []
    assert normalize_images([], "webp") == []


def test_image_payload():
    assert image_payload(to_data_uri("aGVsbG8=")) == b"hello"
    assert image_payload("https://img/1.png") == "https://img/1.png"


def test_generate_posts_json_body():
    handler, calls = recording(payload={"created": 1, "data": [{"url": "https://img/1.png"}]})
    request = build_generate_request(RequestOptions(model="dall-e-3", style="natural"), "a red ball")

    images = call(handler, request)

    assert images == ["https://img/1.png"]
    assert len(calls) == 1
    sent = calls[0]
    assert sent.method == "POST"
    assert sent.url.path == "/v1/images/generations"
    assert sent.headers["authorization"] == "Bearer sk-test"
    body = json.loads(sent.content)
    assert body["prompt"] == "a red ball"
    assert body["model"] == "dall-e-3"
    assert body["style"] == "natural"
    assert "background" not in body


def test_generate_multiple_base64_images():
    handler, _ = recording(payload={"created": 1, "data": [{"b64_json": "AAAA"}, {"b64_json": "BBBB"}]})
    request = build_generate_request(RequestOptions(model="dall-e-2", n=2, response_format="b64_json"), "x")

    assert call(handler, request) == ["data:image/png;base64,AAAA", "data:image/png;base64,BBBB"]


def test_base64_uses_reported_output_format():
    handler, _ = recording(payload={"created": 1, "output_format": "webp", "data": [{"b64_json": "AAAA"}]})
    request = build_generate_request(RequestOptions(model="gpt-image-1", output_format="webp"), "x")

    assert call(handler, request) == ["data:image/webp;base64,AAAA"]


def test_edit_sends_multipart(png_asset):
    handler, calls = recording(payload={"created": 1, "data": [{"url": "https://img/edit.png"}]})
    image = png_asset(32, 32)
    mask = png_asset(32, 32, filename="mask.png")
    request = build_edit_request(RequestOptions(), "add a hat", image, mask)

    assert call(handler, request) == ["https://img/edit.png"]
    sent = calls[0]
    assert sent.url.path == "/v1/images/edits"
    assert sent.headers["content-type"].startswith("multipart/form-data")
    assert b'name="image"' in sent.content
    assert b'name="mask"' in sent.content
    assert b"add a hat" in sent.content


def test_variation_endpoint(png_asset):
    handler, calls = recording(payload={"created": 1, "data": [{"url": "https://a"}, {"url": "https://b"}]})
    request = build_variation_request(RequestOptions(n=2), png_asset(16, 16))

    assert call(handler, request) == ["https://a", "https://b"]
    assert calls[0].url.path == "/v1/images/variations"


def test_http_error_message_from_body():
    handler, _ = recording(status=400, payload={"error": {"message": "Invalid size", "type": "invalid_request_error"}})
    request = build_generate_request(RequestOptions(), "x")

    with pytest.raises(ImageAPIError) as excinfo:
        call(handler, request)
    assert excinfo.value.message == "Invalid size"
    assert excinfo.value.status_code == 400


def test_unparsable_error_body_falls_back(png_asset):
    handler, calls = recording(status=500, text="<html>bad gateway</html>")
    request = build_edit_request(RequestOptions(), "x", png_asset())

    with pytest.raises(ImageAPIError) as excinfo:
        call(handler, request)
    assert excinfo.value.message == "Failed to edit image"
    # no retries
    assert len(calls) == 1


def test_empty_result_is_reported():
    handler, _ = recording(payload={"created": 1, "data": []})
    with pytest.raises(EmptyResultError, match="No image returned."):
        call(handler, build_generate_request(RequestOptions(), "x"))


def test_empty_variation_result(png_asset):
    handler, _ = recording(payload={"created": 1, "data": []})
    with pytest.raises(EmptyResultError, match="No variation images returned."):
        call(handler, build_variation_request(RequestOptions(), png_asset()))


def test_timeout_is_reported():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ImageAPIError, match="Request timed out."):
        call(handler, build_generate_request(RequestOptions(), "x"))


def test_connection_error_uses_generic_message():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ImageAPIError, match="Failed to generate image"):
        call(handler, build_generate_request(RequestOptions(), "x"))


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr("config.OPENAI_API_KEY", None)
    with pytest.raises(ValueError, match="No API key provided"):
        ImageAPIClient()
