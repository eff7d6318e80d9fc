"""Tests for provider adapters over a mocked HTTP transport."""

from __future__ import annotations

import asyncio
import base64
import json

import allure
import httpx
import pytest

from product_studio.config import JimengSettings, OcrSettings, OpenRouterSettings
from product_studio.pipeline.models import CurrencyClass
from product_studio.providers.baidu_ocr import AccessToken, AccessTokenCache, BaiduOcrClient
from product_studio.providers.base import ImageRequest, ProviderError
from product_studio.providers.http import AsyncHttpClient
from product_studio.providers.jimeng import JimengImageGenerator
from product_studio.providers.openrouter import OpenRouterClient, parse_json_response

pytestmark = [
    allure.epic("External Collaborators"),
    allure.feature("Provider Adapters"),
]


def _client(handler) -> AsyncHttpClient:
    return AsyncHttpClient(
        max_retries=1,
        retry_delay_seconds=0,
        transport=httpx.MockTransport(handler),
    )


class TestAsyncHttpClient:
    def test_transport_error_is_retried_once(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request.url.path)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"ok": True})

        async def scenario():
            async with _client(handler) as http:
                return await http.get_json("https://api.test/ping", provider="test")

        assert asyncio.run(scenario()) == {"ok": True}
        assert len(attempts) == 2

    def test_exhausted_retries_raise_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async def scenario():
            async with _client(handler) as http:
                await http.get_json("https://api.test/ping", provider="test")

        with pytest.raises(ProviderError, match=r"timeout \(attempt 2/2\)"):
            asyncio.run(scenario())

    def test_http_error_status_is_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(503, text="overloaded")

        async def scenario():
            async with _client(handler) as http:
                await http.post_json("https://api.test/x", provider="test", json={})

        with pytest.raises(ProviderError, match="HTTP 503") as error:
            asyncio.run(scenario())
        assert error.value.status_code == 503
        assert len(attempts) == 1

    def test_non_object_json_is_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[1, 2])

        async def scenario():
            async with _client(handler) as http:
                await http.get_json("https://api.test/x", provider="test")

        with pytest.raises(ProviderError, match="JSON object"):
            asyncio.run(scenario())


class TestAccessTokenCache:
    def test_token_is_reused_until_refresh_margin(self):
        now = [1_000.0]
        fetched = []

        async def fetch() -> AccessToken:
            fetched.append(now[0])
            return AccessToken(value=f"token-{len(fetched)}", expires_at=now[0] + 100)

        cache = AccessTokenCache(fetch, refresh_margin_seconds=10, clock=lambda: now[0])

        async def scenario() -> list[str]:
            values = [await cache.get()]
            now[0] += 80
            values.append(await cache.get())
            now[0] += 15
            values.append(await cache.get())
            return values

        assert asyncio.run(scenario()) == ["token-1", "token-1", "token-2"]
        assert len(fetched) == 2

    def test_concurrent_callers_share_one_refresh(self):
        fetched = []

        async def fetch() -> AccessToken:
            fetched.append(1)
            await asyncio.sleep(0.01)
            return AccessToken(value="shared", expires_at=10_000.0)

        cache = AccessTokenCache(fetch, refresh_margin_seconds=0, clock=lambda: 0.0)

        async def scenario():
            return await asyncio.gather(*(cache.get() for _ in range(5)))

        assert asyncio.run(scenario()) == ["shared"] * 5
        assert len(fetched) == 1


class TestBaiduOcrClient:
    def test_extract_text_fetches_token_once(self):
        token_requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/oauth/2.0/token"):
                token_requests.append(request.url.params["grant_type"])
                return httpx.Response(200, json={"access_token": "abc", "expires_in": 2592000})
            assert request.url.params["access_token"] == "abc"
            return httpx.Response(
                200,
                json={"words_result": [{"words": "50% OFF"}, {"words": ""}, {"words": "NEW"}]},
            )

        async def scenario():
            async with _client(handler) as http:
                client = BaiduOcrClient(OcrSettings(api_key="k", secret_key="s"), http)
                return [await client.extract_text(b"img"), await client.extract_text(b"img")]

        assert asyncio.run(scenario()) == [["50% OFF", "NEW"], ["50% OFF", "NEW"]]
        assert token_requests == ["client_credentials"]

    def test_recognition_errors_degrade_to_no_text(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/oauth/2.0/token"):
                return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})
            return httpx.Response(200, json={"error_code": 17, "error_msg": "limit reached"})

        async def scenario():
            async with _client(handler) as http:
                client = BaiduOcrClient(OcrSettings(api_key="k", secret_key="s"), http)
                return await client.extract_text(b"img")

        assert asyncio.run(scenario()) == []


class TestOpenRouterClient:
    def test_analysis_parses_fenced_json_and_reports_call(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "id": "gen-123",
                    "choices": [
                        {"message": {"content": '```json\n{"layout": {"grid": "center"}}\n```'}},
                    ],
                },
            )

        async def scenario():
            async with _client(handler) as http:
                client = OpenRouterClient(OpenRouterSettings(api_key="key"), http)
                return await client.analyze_style(b"img", ["SALE"])

        response = asyncio.run(scenario())

        assert response.payload == {"layout": {"grid": "center"}}
        assert response.call.call_id == "gen-123"
        assert response.call.is_metered
        assert "SALE" in bodies[0]["messages"][0]["content"][0]["text"]

    def test_generate_decodes_inline_image(self):
        encoded = base64.b64encode(b"png-bytes").decode("ascii")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "id": "gen-9",
                    "choices": [
                        {
                            "message": {
                                "content": "",
                                "images": [
                                    {"image_url": {"url": f"data:image/png;base64,{encoded}"}},
                                ],
                            },
                        },
                    ],
                },
            )

        async def scenario():
            async with _client(handler) as http:
                client = OpenRouterClient(OpenRouterSettings(api_key="key"), http)
                return await client.generate(
                    ImageRequest(product_image=b"p", prompt="make it shine", model="m"),
                )

        image = asyncio.run(scenario())

        assert image.data == b"png-bytes"
        assert image.mime_type == "image/png"
        assert image.call.call_id == "gen-9"

    def test_lookup_reads_generation_stats(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["id"] == "gen-1"
            return httpx.Response(
                200,
                json={"data": {"total_cost": 0.0042, "tokens_prompt": 900, "latency": 1200}},
            )

        async def scenario():
            async with _client(handler) as http:
                client = OpenRouterClient(OpenRouterSettings(api_key="key"), http)
                return await client.lookup("gen-1")

        quote = asyncio.run(scenario())

        assert quote.amount == pytest.approx(0.0042)
        assert quote.currency_class == CurrencyClass.METERED_USD
        assert quote.tokens_prompt == 900
        assert quote.latency_ms == 1200

    def test_parse_json_response_rejects_prose(self):
        with pytest.raises(ProviderError, match="not JSON"):
            parse_json_response("I cannot analyze this image.")


class TestJimengImageGenerator:
    def test_generate_returns_url_with_fixed_price(self):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={"created": 1700000000, "data": [{"url": "https://cdn.test/img.png"}]},
            )

        async def scenario():
            async with _client(handler) as http:
                generator = JimengImageGenerator(
                    JimengSettings(api_key="key", cost_per_image=0.25),
                    http,
                )
                return await generator.generate(
                    ImageRequest(product_image=b"p", prompt="studio", model="seedream"),
                )

        image = asyncio.run(scenario())

        assert image.url == "https://cdn.test/img.png"
        assert image.call.fixed_cost == pytest.approx(0.25)
        assert image.call.currency_class == CurrencyClass.FIXED_CNY
        assert image.call.call_id == "jimeng-1700000000"
        assert sent[0]["watermark"] is False
        assert "studio" in sent[0]["prompt"]

    def test_missing_api_key_fails_before_any_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async def scenario():
            async with _client(handler) as http:
                await JimengImageGenerator(JimengSettings(), http).generate(
                    ImageRequest(product_image=b"p", prompt="x", model="m"),
                )

        with pytest.raises(ProviderError, match="JIMEN_API_KEY"):
            asyncio.run(scenario())
