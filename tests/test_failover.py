"""视觉服务故障转移测试"""

import pytest

from conftest import PNG_DATA_URL, FakeVisionClient
from docreader.exceptions import VisionServiceError
from docreader.failover import FailoverVisionClient, is_auth_error
from docreader.models import VisionResult


def failing(error):
    return lambda image_data, prompt: VisionResult.fail(error, source="primary")


def succeeding(text, source):
    return lambda image_data, prompt: VisionResult.ok(text, source=source)


class TestIsAuthError:
    """认证类错误识别"""

    @pytest.mark.parametrize("error", [
        "OCR extraction failed: HTTP 401: Unauthorized",
        "HTTP 403: access denied",
        "Forbidden",
        "Z.AI API key not configured. Set Z_AI_API_KEY environment variable.",
        "token EXPIRED",
        "Invalid token supplied",
        "Authentication required",
    ])
    def test_auth_errors(self, error):
        """状态码 401/403 和认证关键词都视为认证错误"""
        assert is_auth_error(error) is True

    @pytest.mark.parametrize("error", [
        None,
        "",
        "OCR extraction failed: Request timeout after 300000ms",
        "HTTP 500: internal server error",
        "HTTP 429: rate limited",
        "request id 14013 failed",
    ])
    def test_non_auth_errors(self, error):
        """超时、服务端错误和包含 401 片段的数字不视为认证错误"""
        assert is_auth_error(error) is False


class TestFailoverCalls:
    """extract_text / analyze_image 的回退规则"""

    @pytest.mark.asyncio
    async def test_auth_failure_falls_back_once(self):
        """主服务认证失败时调用备用服务一次并返回备用服务的结果"""
        primary = FakeVisionClient(failing("HTTP 401: Unauthorized"), name="Primary")
        fallback = FakeVisionClient(succeeding("page text", "lm-studio-vlm"), name="Fallback")
        client = FailoverVisionClient(primary, fallback)

        result = await client.extract_text(PNG_DATA_URL, "read it")

        assert result.success is True
        assert result.text == "page text"
        assert result.source == "lm-studio-vlm"
        assert len(primary.calls) == 1
        assert len(fallback.calls) == 1
        assert fallback.calls[0]["image_data"] == PNG_DATA_URL
        assert fallback.calls[0]["prompt"] == "read it"
        assert client.use_fallback is True
        assert client.active is fallback

    @pytest.mark.asyncio
    async def test_returns_fallback_result_unchanged(self):
        """主服务返回 401，备用服务成功：返回值就是备用服务的结果"""
        fallback_result = VisionResult.ok("X")
        primary = FakeVisionClient(failing("401 Unauthorized"))
        fallback = FakeVisionClient(lambda image_data, prompt: fallback_result)
        client = FailoverVisionClient(primary, fallback)

        result = await client.extract_text(PNG_DATA_URL)

        assert result is fallback_result
        assert client.use_fallback is True

    @pytest.mark.asyncio
    async def test_non_auth_failure_is_returned_verbatim(self):
        """非认证错误原样返回主服务的结果，不调用备用服务"""
        primary = FakeVisionClient(failing("OCR extraction failed: Request timeout after 300000ms"))
        fallback = FakeVisionClient(succeeding("unused", "fallback"))
        client = FailoverVisionClient(primary, fallback)

        result = await client.extract_text(PNG_DATA_URL)

        assert result.success is False
        assert result.error == "OCR extraction failed: Request timeout after 300000ms"
        assert result.source == "primary"
        assert fallback.calls == []
        assert client.use_fallback is False

    @pytest.mark.asyncio
    async def test_fallback_failure_is_returned(self):
        """备用服务也失败时返回备用服务的失败结果，不再重试"""
        primary = FakeVisionClient(failing("HTTP 401"))
        fallback = FakeVisionClient(lambda image_data, prompt: VisionResult.fail("LM Studio down", source="fallback"))
        client = FailoverVisionClient(primary, fallback)

        result = await client.extract_text(PNG_DATA_URL)

        assert result.success is False
        assert result.error == "LM Studio down"
        assert len(primary.calls) == 1
        assert len(fallback.calls) == 1
        assert client.use_fallback is False

    @pytest.mark.asyncio
    async def test_primary_is_retried_on_every_call(self):
        """每次调用都先尝试主服务，主服务恢复后清除备用标记"""
        responses = [VisionResult.fail("HTTP 401: Unauthorized"), VisionResult.ok("recovered", source="primary")]
        primary = FakeVisionClient(lambda image_data, prompt: responses.pop(0))
        fallback = FakeVisionClient(succeeding("from fallback", "fallback"))
        client = FailoverVisionClient(primary, fallback)

        first = await client.extract_text(PNG_DATA_URL)
        assert first.text == "from fallback"
        assert client.use_fallback is True

        second = await client.extract_text(PNG_DATA_URL)
        assert second.text == "recovered"
        assert client.use_fallback is False
        assert len(primary.calls) == 2
        assert len(fallback.calls) == 1

    @pytest.mark.asyncio
    async def test_analyze_image_follows_same_rules(self):
        """analyze_image 认证失败同样回退，结果可通过 analysis 读取"""
        primary = FakeVisionClient(failing("Image analysis failed: HTTP 403: Forbidden"))
        fallback = FakeVisionClient(succeeding("a bar chart", "fallback"))
        client = FailoverVisionClient(primary, fallback)

        result = await client.analyze_image(PNG_DATA_URL)

        assert result.analysis == "a bar chart"
        assert primary.calls[0]["method"] == "analyze_image"
        assert fallback.calls[0]["method"] == "analyze_image"


class TestFailoverInitialize:
    """initialize 的主备切换"""

    @pytest.mark.asyncio
    async def test_primary_available(self):
        """主服务可用时使用主服务，不初始化备用服务"""
        primary = FakeVisionClient(name="Primary")
        fallback = FakeVisionClient(name="Fallback")
        client = FailoverVisionClient(primary, fallback)

        assert await client.initialize() == "Primary"
        assert client.use_fallback is False
        assert fallback.initialize_calls == 0

    @pytest.mark.asyncio
    async def test_primary_unavailable_switches_to_fallback(self):
        """主服务初始化失败（任何原因）时切换到备用服务"""
        primary = FakeVisionClient(init_error=VisionServiceError("Z.AI API key not configured"), name="Primary")
        fallback = FakeVisionClient(name="Fallback")
        client = FailoverVisionClient(primary, fallback)

        assert await client.initialize() == "Fallback"
        assert client.use_fallback is True
        assert client.active is fallback

    @pytest.mark.asyncio
    async def test_both_unavailable(self):
        """主备都不可用时抛出 VisionServiceError，信息包含两边的原因"""
        primary = FakeVisionClient(init_error=VisionServiceError("no key"))
        fallback = FakeVisionClient(init_error=VisionServiceError("LM Studio server is not accessible"))
        client = FailoverVisionClient(primary, fallback)

        with pytest.raises(VisionServiceError) as exc_info:
            await client.initialize()

        assert "no key" in str(exc_info.value)
        assert "LM Studio server is not accessible" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_aclose_closes_both(self):
        """aclose 同时释放主备服务"""
        primary = FakeVisionClient()
        fallback = FakeVisionClient()

        await FailoverVisionClient(primary, fallback).aclose()

        assert primary.closed is True
        assert fallback.closed is True
