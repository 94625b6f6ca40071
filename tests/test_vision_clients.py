"""LM Studio / Z.AI 视觉服务客户端测试（httpx.MockTransport 模拟服务端）"""

import asyncio
import json

import httpx
import pytest

from conftest import PNG_DATA_URL
from docreader.cloud_vision import CloudVisionClient
from docreader.config import CloudVisionSettings, LocalVisionSettings
from docreader.exceptions import VisionServiceError
from docreader.failover import is_auth_error
from docreader.local_vision import LocalVisionClient
from docreader.vision_client import build_messages, is_likely_vision_model, validate_data_url

LOCAL_BASE_URL = "http://lmstudio.test/api/v0"
CLOUD_BASE_URL = "https://cloud.test/api/paas/v4/"

MODELS = [
    {"id": "llama-3-8b-instruct", "state": "loaded"},
    {"id": "qwen2-vl-7b-instruct", "state": "not-loaded"},
    {"id": "llava-v1.6-mistral-7b", "state": "loaded"},
]


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def local_client(handler, **kwargs):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LocalVisionClient(LocalVisionSettings(base_url=LOCAL_BASE_URL), http_client=http_client, **kwargs)


def cloud_client(handler, api_key="sk-test-123", timeout=5.0):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    settings = CloudVisionSettings(base_url=CLOUD_BASE_URL, api_key=api_key, timeout=timeout)
    return CloudVisionClient(settings, http_client=http_client)


class TestVisionHelpers:
    """模型识别、data URL 校验和消息构造"""

    def test_is_likely_vision_model(self):
        assert is_likely_vision_model({"id": "Qwen2-VL-7B"}) is True
        assert is_likely_vision_model({"id": "llava-1.6"}) is True
        assert is_likely_vision_model({"id": "llama-3-8b"}) is False
        assert is_likely_vision_model({}) is False

    def test_validate_data_url(self):
        assert validate_data_url(PNG_DATA_URL) == PNG_DATA_URL
        with pytest.raises(ValueError):
            validate_data_url("not a data url")
        with pytest.raises(ValueError):
            validate_data_url("data:image/png;base64,@@@@")

    def test_build_messages_with_image(self):
        """data URL 作为 image_url 片段发送"""
        messages = build_messages(PNG_DATA_URL, "read", system_prompt="system")

        assert messages[0] == {"role": "system", "content": "system"}
        content = messages[1]["content"]
        assert content[0] == {"type": "image_url", "image_url": {"url": PNG_DATA_URL}}
        assert content[1] == {"type": "text", "text": "read"}

    def test_build_messages_with_text_input(self):
        """纯文本输入拼接在提示词之前；已包含在提示词中时不重复"""
        assert build_messages("raw", "fix it")[0]["content"] == "raw\n\nfix it"
        assert build_messages("raw", "Text:\nraw\nfix it")[0]["content"] == "Text:\nraw\nfix it"


class TestLocalVisionClient:
    """LM Studio 客户端"""

    @pytest.mark.asyncio
    async def test_initialize_prefers_loaded_vision_model(self):
        """优先选择已加载的视觉模型"""
        def handler(request):
            assert request.url.path == "/api/v0/models"
            return httpx.Response(200, json={"data": MODELS})

        client = local_client(handler)
        model = await client.initialize()

        assert model["id"] == "llava-v1.6-mistral-7b"
        assert client.vlm_model_id == "llava-v1.6-mistral-7b"

    @pytest.mark.asyncio
    async def test_initialize_uses_first_vision_model_when_none_loaded(self):
        """没有已加载的视觉模型时使用第一个视觉模型"""
        models = [
            {"id": "llama-3", "state": "loaded"},
            {"id": "qwen2-vl-7b", "state": "not-loaded"},
            {"id": "llava-1.6", "state": "not-loaded"},
        ]
        client = local_client(lambda request: httpx.Response(200, json={"data": models}))

        await client.initialize()

        assert client.vlm_model_id == "qwen2-vl-7b"

    @pytest.mark.asyncio
    async def test_custom_model_classifier(self):
        """可替换视觉模型判定函数（例如按 type 字段判断）"""
        models = [{"id": "custom-a", "type": "llm"}, {"id": "custom-b", "type": "vlm"}]
        client = local_client(
            lambda request: httpx.Response(200, json={"data": models}),
            model_classifier=lambda model: model.get("type") == "vlm",
        )

        await client.initialize()

        assert client.vlm_model_id == "custom-b"

    @pytest.mark.asyncio
    async def test_initialize_without_vision_models(self):
        """没有视觉模型时 initialize 抛出 VisionServiceError"""
        client = local_client(lambda request: httpx.Response(200, json={"data": [{"id": "llama-3"}]}))

        with pytest.raises(VisionServiceError, match="No VLM"):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_initialize_unreachable_server(self):
        """服务不可达时 initialize 抛出 VisionServiceError"""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = local_client(handler)

        with pytest.raises(VisionServiceError, match="not accessible"):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_extract_text_initializes_lazily(self):
        """首次调用时自动初始化，并按配置发送补全请求"""
        requests = []

        def handler(request):
            requests.append(request)
            if request.url.path.endswith("/models"):
                return httpx.Response(200, json={"data": MODELS})
            return httpx.Response(200, json=completion("Invoice #42"))

        client = local_client(handler)
        result = await client.extract_text(PNG_DATA_URL, "read the invoice")

        assert result.success is True
        assert result.text == "Invoice #42"
        assert result.source == "lm-studio-vlm"
        assert result.model == "llava-v1.6-mistral-7b"

        body = json.loads(requests[-1].content)
        assert requests[-1].url.path == "/api/v0/chat/completions"
        assert body["model"] == "llava-v1.6-mistral-7b"
        assert body["stream"] is False
        assert body["max_tokens"] == 32768
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][1]["content"][0]["image_url"]["url"] == PNG_DATA_URL

    @pytest.mark.asyncio
    async def test_http_error_becomes_failure_result(self):
        """HTTP 错误转换为失败结果，错误信息保留状态码"""
        def handler(request):
            if request.url.path.endswith("/models"):
                return httpx.Response(200, json={"data": MODELS})
            return httpx.Response(401, text="Unauthorized")

        client = local_client(handler)
        result = await client.extract_text(PNG_DATA_URL)

        assert result.success is False
        assert result.error.startswith("OCR extraction failed: HTTP 401")
        assert is_auth_error(result.error) is True

    @pytest.mark.asyncio
    async def test_invalid_image_data_becomes_failure_result(self):
        """非法 data URL 不发送请求，直接返回失败结果"""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"data": MODELS})

        client = local_client(handler)
        result = await client.analyze_image("data:image/png;base64,@@@@")

        assert result.success is False
        assert result.error.startswith("Image analysis failed:")
        assert all(request.url.path.endswith("/models") for request in requests)

    @pytest.mark.asyncio
    async def test_missing_choices(self):
        """响应缺少 choices 时返回失败结果"""
        def handler(request):
            if request.url.path.endswith("/models"):
                return httpx.Response(200, json={"data": MODELS})
            return httpx.Response(200, json={"choices": []})

        result = await local_client(handler).extract_text(PNG_DATA_URL)

        assert result.success is False
        assert "missing choices" in result.error


class TestCloudVisionClient:
    """Z.AI 客户端"""

    @pytest.mark.parametrize("api_key", [None, "", "your-api-key", "PUT_KEY_HERE"])
    def test_placeholder_keys_are_not_configured(self, api_key):
        """缺失或占位凭证视为未配置"""
        client = cloud_client(lambda request: httpx.Response(200), api_key=api_key)
        assert client.is_configured() is False

    @pytest.mark.asyncio
    async def test_initialize_without_key(self):
        client = cloud_client(lambda request: httpx.Response(200), api_key=None)

        with pytest.raises(VisionServiceError):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_unconfigured_call_is_auth_failure(self):
        """未配置凭证时调用返回失败结果，且属于认证类错误"""
        client = cloud_client(lambda request: httpx.Response(200), api_key=None)

        result = await client.extract_text(PNG_DATA_URL)

        assert result.success is False
        assert is_auth_error(result.error) is True

    @pytest.mark.asyncio
    async def test_extract_text_success(self):
        """请求发送到 base_url + chat/completions，携带 Bearer 凭证"""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=completion("Hello from GLM"))

        client = cloud_client(handler)
        result = await client.extract_text(PNG_DATA_URL, "read")

        assert result.success is True
        assert result.text == "Hello from GLM"
        assert result.source == "zai-vision"
        assert result.model == "glm-4.6v"

        request = requests[0]
        assert str(request.url) == CLOUD_BASE_URL + "chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-123"
        body = json.loads(request.content)
        assert body["model"] == "glm-4.6v"
        assert body["messages"][-1]["content"][0]["image_url"]["url"] == PNG_DATA_URL

    @pytest.mark.asyncio
    async def test_base_url_without_trailing_slash(self):
        """服务地址缺少结尾斜杠时自动补全"""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=completion("ok"))

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        settings = CloudVisionSettings(base_url="https://cloud.test/v4", api_key="sk-test-123")
        await CloudVisionClient(settings, http_client=http_client).extract_text(PNG_DATA_URL)

        assert str(requests[0].url) == "https://cloud.test/v4/chat/completions"

    @pytest.mark.asyncio
    async def test_http_401_is_auth_failure(self):
        client = cloud_client(lambda request: httpx.Response(401, text="token expired"))

        result = await client.extract_text(PNG_DATA_URL)

        assert result.success is False
        assert "HTTP 401" in result.error
        assert is_auth_error(result.error) is True

    @pytest.mark.asyncio
    async def test_server_error_is_not_auth_failure(self):
        client = cloud_client(lambda request: httpx.Response(500, text="internal error"))

        result = await client.analyze_image(PNG_DATA_URL)

        assert result.success is False
        assert result.error.startswith("Image analysis failed: HTTP 500")
        assert is_auth_error(result.error) is False

    @pytest.mark.asyncio
    async def test_missing_content(self):
        client = cloud_client(lambda request: httpx.Response(200, json={"choices": [{"message": {}}]}))

        result = await client.extract_text(PNG_DATA_URL)

        assert result.success is False
        assert "missing content" in result.error

    @pytest.mark.asyncio
    async def test_request_timeout(self):
        """超过配置的超时时间时返回失败结果"""
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json=completion("too late"))

        client = cloud_client(handler, timeout=0.05)
        result = await client.extract_text(PNG_DATA_URL)

        assert result.success is False
        assert "Request timeout after 50ms" in result.error
        assert is_auth_error(result.error) is False
