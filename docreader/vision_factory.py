"""视觉服务工厂

根据环境配置构造视觉服务实例，进程启动时调用一次，
再把实例注入 PDF 解析流水线和文档处理器。

选择规则：
1. VISION_PROVIDER 显式指定（zai / z.ai / zai-vision 或 lm-studio / lmstudio / local）
2. 自动检测：存在云端凭证且未配置 LM_STUDIO_BASE_URL 时使用云端
3. 默认使用本地 LM Studio

云端服务默认包装为 FailoverVisionClient(云端, 本地)，VISION_FAILOVER=false 时不包装。
"""

import logging
from typing import Optional

from .cloud_vision import CloudVisionClient
from .config import CloudVisionSettings, LocalVisionSettings, VisionProviderSettings
from .failover import FailoverVisionClient
from .local_vision import LocalVisionClient
from .vision_client import VisionClient

logger = logging.getLogger(__name__)

PROVIDER_CLOUD = "zai"
PROVIDER_LOCAL = "lm-studio"

_PROVIDER_ALIASES = {
    "zai": PROVIDER_CLOUD,
    "z.ai": PROVIDER_CLOUD,
    "zai-vision": PROVIDER_CLOUD,
    "lm-studio": PROVIDER_LOCAL,
    "lmstudio": PROVIDER_LOCAL,
    "local": PROVIDER_LOCAL,
}


def resolve_provider(settings: Optional[VisionProviderSettings] = None) -> str:
    """确定要使用的视觉服务（PROVIDER_CLOUD 或 PROVIDER_LOCAL）"""
    settings = settings or VisionProviderSettings.from_env()

    if settings.provider:
        provider = _PROVIDER_ALIASES.get(settings.provider)
        if provider:
            logger.info(f"使用显式指定的视觉服务: {provider}")
            return provider
        logger.warning(f"未知的 VISION_PROVIDER: {settings.provider}，改为自动检测")

    if settings.has_cloud_key and not settings.has_local_url:
        logger.info("检测到云端凭证，使用 Z.AI 视觉服务")
        return PROVIDER_CLOUD

    logger.info("使用本地 LM Studio 视觉服务")
    return PROVIDER_LOCAL


def create_vision_client(
    provider_settings: Optional[VisionProviderSettings] = None,
    local_settings: Optional[LocalVisionSettings] = None,
    cloud_settings: Optional[CloudVisionSettings] = None,
) -> VisionClient:
    """创建视觉服务实例

    Example:
        >>> client = create_vision_client()
        >>> parser = PDFParser(vision_client=client)
    """
    provider_settings = provider_settings or VisionProviderSettings.from_env()
    provider = resolve_provider(provider_settings)

    if provider == PROVIDER_LOCAL:
        return LocalVisionClient(local_settings)

    cloud = CloudVisionClient(cloud_settings)
    if not provider_settings.failover:
        logger.info("故障转移已关闭，仅使用云端视觉服务")
        return cloud

    return FailoverVisionClient(cloud, LocalVisionClient(local_settings))
