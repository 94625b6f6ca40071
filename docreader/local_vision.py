"""本地视觉模型服务实现（LM Studio）

通过 LM Studio 的 v0 REST API 调用本地加载的视觉语言模型（VLM）：
- GET  {base_url}/models            模型列表（含加载状态）
- POST {base_url}/chat/completions  多模态对话补全（图像以 data URL 内嵌）

适用于单机部署、离线环境，或作为云端服务的故障转移备用方案。
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import LocalVisionSettings
from .exceptions import VisionServiceError
from .models import VisionResult
from .vision_client import (
    DEFAULT_ANALYSIS_PROMPT,
    DEFAULT_OCR_PROMPT,
    OCR_SYSTEM_PROMPT,
    ModelClassifier,
    VisionClient,
    build_messages,
    is_data_url,
    is_likely_vision_model,
    validate_data_url,
)

logger = logging.getLogger(__name__)

SOURCE = "lm-studio-vlm"


class LocalVisionClient(VisionClient):
    """LM Studio 视觉模型客户端

    模型选择策略：
    1. 通过 model_classifier 从模型列表中筛选视觉模型（默认按名称启发式判断）
    2. 优先选择已加载（state == "loaded"）的模型
    3. 没有已加载模型时使用第一个可用的视觉模型（LM Studio 会按需加载）

    使用示例：
        client = LocalVisionClient()
        await client.initialize()
        result = await client.extract_text(data_url)
        await client.aclose()
    """

    name = "LmStudioService"

    def __init__(
        self,
        settings: Optional[LocalVisionSettings] = None,
        model_classifier: ModelClassifier = is_likely_vision_model,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """初始化 LM Studio 客户端

        Args:
            settings: 服务配置，默认从环境变量读取
            model_classifier: 视觉模型判定函数
            http_client: 自定义 HTTP 客户端（测试时可注入 MockTransport）
        """
        self.settings = settings or LocalVisionSettings.from_env()
        self.base_url = self.settings.base_url.rstrip("/")
        self.model_classifier = model_classifier
        self.vlm_model_id: Optional[str] = None
        self._client = http_client
        self._owns_client = http_client is None

        logger.info(f"LM Studio 客户端已创建: base_url={self.base_url}, timeout={self.settings.timeout}s")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout,
                headers={"Authorization": f"Bearer {self.settings.api_key}"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def check_connection(self) -> bool:
        """检查 LM Studio 服务是否可访问"""
        models_url = f"{self.base_url}/models"
        try:
            response = await self._get_client().get(models_url)
        except httpx.HTTPError as e:
            logger.warning(f"LM Studio 连接检查失败: {models_url}, 错误: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"LM Studio 连接检查失败: HTTP {response.status_code}")
            return False

        logger.info(f"LM Studio 连接成功: {models_url}")
        return True

    async def get_models(self) -> List[Dict[str, Any]]:
        """获取模型列表（失败时返回空列表）"""
        try:
            response = await self._get_client().get(f"{self.base_url}/models")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"获取 LM Studio 模型列表失败: {e}")
            return []

        models = data.get("data") or []
        logger.debug(f"LM Studio 返回 {len(models)} 个模型")
        return models

    async def find_vlm_model(self) -> Optional[Dict[str, Any]]:
        """选择视觉模型（优先已加载的模型）"""
        models = await self.get_models()
        vlm_models = [model for model in models if self.model_classifier(model)]

        if not vlm_models:
            logger.warning(
                f"{len(models)} 个模型中未找到视觉模型: "
                f"{[model.get('id') for model in models]}"
            )
            return None

        loaded = [model for model in vlm_models if model.get("state") == "loaded"]
        if loaded:
            selected = loaded[0]
            logger.info(f"找到 {len(loaded)} 个已加载的视觉模型，使用 {selected['id']}")
        else:
            selected = vlm_models[0]
            logger.warning(f"没有已加载的视觉模型，使用第一个可用模型 {selected['id']}（首次请求会触发加载）")

        self.vlm_model_id = selected["id"]
        logger.debug(
            f"视觉模型详情: publisher={selected.get('publisher')}, arch={selected.get('arch')}, "
            f"quantization={selected.get('quantization')}, max_context={selected.get('max_context_length')}"
        )
        return selected

    async def initialize(self) -> Dict[str, Any]:
        """检查连接并选择视觉模型

        Returns:
            选中的模型描述

        Raises:
            VisionServiceError: 服务不可达或没有可用的视觉模型
        """
        if not await self.check_connection():
            raise VisionServiceError("LM Studio server is not accessible")

        model = await self.find_vlm_model()
        if not model:
            raise VisionServiceError("No VLM (Vision Language Model) models detected in LM Studio")

        logger.info(f"LM Studio 初始化完成，视觉模型: {self.vlm_model_id}")
        return model

    async def extract_text(self, image_data: str, prompt: str = DEFAULT_OCR_PROMPT) -> VisionResult:
        return await self._complete(image_data, prompt, OCR_SYSTEM_PROMPT, "OCR extraction failed")

    async def analyze_image(self, image_data: str, prompt: str = DEFAULT_ANALYSIS_PROMPT) -> VisionResult:
        return await self._complete(image_data, prompt, "", "Image analysis failed")

    async def _complete(self, image_data: str, prompt: str, system_prompt: str, failure_label: str) -> VisionResult:
        """执行一次多模态补全，所有异常都转换为失败结果"""
        try:
            if not self.vlm_model_id:
                logger.info("视觉模型尚未初始化，开始初始化...")
                await self.initialize()

            if is_data_url(image_data):
                validate_data_url(image_data)

            messages = build_messages(image_data, prompt, system_prompt)
            logger.debug(f"发送请求到 LM Studio，模型 {self.vlm_model_id}，提示词: {prompt[:100]}...")

            content = await self.call_chat_completions(messages)
            logger.info(f"LM Studio 调用成功，返回 {len(content)} 字符")
            return VisionResult.ok(content, source=SOURCE, model=self.vlm_model_id)

        except Exception as e:
            logger.error(f"LM Studio 调用失败: {e}")
            return VisionResult.fail(f"{failure_label}: {e}", source=SOURCE)

    async def call_chat_completions(self, messages: List[Dict[str, Any]]) -> str:
        """调用 chat/completions 接口

        Raises:
            RuntimeError: HTTP 错误或响应缺少 choices
        """
        request_body = {
            "model": self.vlm_model_id,
            "messages": messages,
            "stream": False,
            "temperature": self.settings.temperature,
            "top_p": self.settings.top_p,
            "max_tokens": self.settings.max_tokens,
        }

        response = await self._get_client().post(f"{self.base_url}/chat/completions", json=request_body)

        if response.status_code != 200:
            raise RuntimeError(f"HTTP {response.status_code}: {response.text}")

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise RuntimeError("Invalid API response: missing choices")

        stats = data.get("stats")
        if stats:
            logger.debug(
                f"LM Studio 性能统计: tokens/s={stats.get('tokens_per_second')}, "
                f"首 token 耗时={stats.get('time_to_first_token')}s, "
                f"生成耗时={stats.get('generation_time')}s"
            )

        return (choices[0].get("message") or {}).get("content") or ""
