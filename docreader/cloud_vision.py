"""云端视觉模型服务实现（Z.AI / 智谱开放平台）

通过 OpenAI 兼容的 chat/completions 接口调用 GLM 视觉模型。

服务地址三级优先级：显式覆盖 → 模式推导（Coding Plan / 通用端点）→ 默认端点，
凭证从多个环境变量中依次回退读取，详见 config.resolve_cloud_base_url()。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import CloudVisionSettings
from .exceptions import VisionServiceError
from .models import VisionResult
from .vision_client import (
    DEFAULT_ANALYSIS_PROMPT,
    DEFAULT_OCR_PROMPT,
    OCR_SYSTEM_PROMPT,
    VisionClient,
    build_messages,
)

logger = logging.getLogger(__name__)

SOURCE = "zai-vision"


class CloudVisionClient(VisionClient):
    """Z.AI 视觉模型客户端

    每次请求都带有墙钟超时（asyncio.wait_for），超时即取消请求并返回失败结果。
    """

    name = "ZaiVisionService"

    def __init__(
        self,
        settings: Optional[CloudVisionSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or CloudVisionSettings.from_env()
        self.base_url = self.settings.base_url if self.settings.base_url.endswith("/") else self.settings.base_url + "/"
        self.model = self.settings.model
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def is_configured(self) -> bool:
        """凭证存在且不是占位值（如 "your-api-key"）"""
        api_key = self.settings.api_key
        if not api_key:
            return False
        lowered = api_key.lower()
        return "api" not in lowered and "key" not in lowered

    async def initialize(self) -> bool:
        """检查凭证配置

        Raises:
            VisionServiceError: 未配置有效凭证
        """
        if not self.is_configured():
            logger.warning("Z.AI 视觉服务未初始化: 缺少 API Key")
            raise VisionServiceError("Z.AI API key not configured. Set Z_AI_API_KEY environment variable.")

        logger.info(f"Z.AI 视觉服务已初始化: {self.base_url}, 模型 {self.model}")
        return True

    async def extract_text(self, image_data: str, prompt: str = DEFAULT_OCR_PROMPT) -> VisionResult:
        return await self._complete(image_data, prompt, OCR_SYSTEM_PROMPT, "OCR extraction failed")

    async def analyze_image(self, image_data: str, prompt: str = DEFAULT_ANALYSIS_PROMPT) -> VisionResult:
        return await self._complete(image_data, prompt, "", "Image analysis failed")

    async def _complete(self, image_data: str, prompt: str, system_prompt: str, failure_label: str) -> VisionResult:
        if not self.is_configured():
            return VisionResult.fail(
                "Z.AI API key not configured. Set Z_AI_API_KEY environment variable.",
                source=SOURCE,
            )

        try:
            messages = build_messages(image_data, prompt, system_prompt)
            content = await self.call_vision_api(messages)
            return VisionResult.ok(content, source=SOURCE, model=self.model)
        except Exception as e:
            logger.error(f"Z.AI 调用失败: {e}")
            return VisionResult.fail(f"{failure_label}: {e}", source=SOURCE)

    async def call_vision_api(self, messages: List[Dict[str, Any]]) -> str:
        """调用 chat/completions 接口

        Raises:
            TimeoutError: 超过 settings.timeout 秒未完成
            RuntimeError: HTTP 错误或响应缺少内容
        """
        url = self.base_url + "chat/completions"
        request_body = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "temperature": self.settings.temperature,
            "top_p": self.settings.top_p,
            "max_tokens": self.settings.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
            "X-Title": "docreader",
            "Accept-Language": "en-US,en",
        }

        logger.debug(f"调用 Z.AI 接口: {url}, 模型 {self.model}")

        try:
            response = await asyncio.wait_for(
                self._get_client().post(url, json=request_body, headers=headers, timeout=None),
                timeout=self.settings.timeout,
            )
        except asyncio.TimeoutError:
            raise TimeoutError(f"Request timeout after {int(self.settings.timeout * 1000)}ms")

        if response.status_code != 200:
            raise RuntimeError(f"HTTP {response.status_code}: {response.text}")

        data = response.json()
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise RuntimeError("Invalid API response: missing content")

        logger.info("Z.AI 接口调用成功")
        return content
