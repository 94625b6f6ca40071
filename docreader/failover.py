"""视觉服务故障转移

主服务（云端）调用失败时按错误类型决定是否回退到备用服务（本地）：
- initialize(): 主服务初始化失败（任何原因）即切换到备用服务
- extract_text() / analyze_image(): 只有认证类错误才回退，且只回退一次；
  其他错误（超时、服务端异常、内容错误）原样返回主服务的结果
"""

import logging
import re
from typing import Optional

from .exceptions import VisionServiceError
from .models import VisionResult
from .vision_client import DEFAULT_ANALYSIS_PROMPT, DEFAULT_OCR_PROMPT, VisionClient

logger = logging.getLogger(__name__)

# 认证类错误特征（不区分大小写）
AUTH_ERROR_MARKERS = (
    "unauthorized",
    "forbidden",
    "api key",
    "expired",
    "invalid token",
    "authentication",
)

_AUTH_STATUS_RE = re.compile(r"\b(401|403)\b")


def is_auth_error(error: Optional[str]) -> bool:
    """判断错误信息是否属于认证失败（凭证缺失、过期、无权限）"""
    if not error:
        return False
    lowered = error.lower()
    if any(marker in lowered for marker in AUTH_ERROR_MARKERS):
        return True
    return bool(_AUTH_STATUS_RE.search(lowered))


class FailoverVisionClient(VisionClient):
    """主备视觉服务协调器

    对上层暴露与单个服务相同的接口，调用方无需感知故障转移。

    Attributes:
        primary: 主服务
        fallback: 备用服务
        use_fallback: 最近一次成功调用（或初始化）是否由备用服务完成
    """

    name = "FailoverVisionService"

    def __init__(self, primary: VisionClient, fallback: VisionClient):
        self.primary = primary
        self.fallback = fallback
        self.use_fallback = False

    @property
    def active(self) -> VisionClient:
        return self.fallback if self.use_fallback else self.primary

    async def initialize(self) -> str:
        """初始化主服务，失败时初始化备用服务

        Returns:
            当前生效的服务名称

        Raises:
            VisionServiceError: 主备服务均不可用
        """
        try:
            await self.primary.initialize()
            self.use_fallback = False
            logger.info(f"使用主视觉服务: {self.primary.name}")
            return self.primary.name
        except Exception as primary_error:
            logger.warning(f"主视觉服务 {self.primary.name} 初始化失败: {primary_error}，尝试备用服务")

            try:
                await self.fallback.initialize()
            except Exception as fallback_error:
                logger.error(f"备用视觉服务 {self.fallback.name} 初始化失败: {fallback_error}")
                raise VisionServiceError(
                    f"No vision service available: primary: {primary_error}; fallback: {fallback_error}"
                ) from fallback_error

            self.use_fallback = True
            logger.info(f"已切换到备用视觉服务: {self.fallback.name}")
            return self.fallback.name

    async def extract_text(self, image_data: str, prompt: str = DEFAULT_OCR_PROMPT) -> VisionResult:
        result = await self.primary.extract_text(image_data, prompt)
        if result.success:
            self.use_fallback = False
            return result

        if not is_auth_error(result.error):
            return result

        logger.warning(f"主视觉服务认证失败: {result.error}，回退到 {self.fallback.name}")
        fallback_result = await self.fallback.extract_text(image_data, prompt)
        if fallback_result.success:
            self.use_fallback = True
        return fallback_result

    async def analyze_image(self, image_data: str, prompt: str = DEFAULT_ANALYSIS_PROMPT) -> VisionResult:
        result = await self.primary.analyze_image(image_data, prompt)
        if result.success:
            self.use_fallback = False
            return result

        if not is_auth_error(result.error):
            return result

        logger.warning(f"主视觉服务认证失败: {result.error}，回退到 {self.fallback.name}")
        fallback_result = await self.fallback.analyze_image(image_data, prompt)
        if fallback_result.success:
            self.use_fallback = True
        return fallback_result

    async def aclose(self) -> None:
        await self.primary.aclose()
        await self.fallback.aclose()
