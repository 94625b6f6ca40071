"""运行配置

所有配置均来自环境变量（包导入时已通过 python-dotenv 加载 .env），
在各服务构造时读取一次，之后不再变化。
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_LM_STUDIO_BASE_URL = "http://localhost:1234/api/v0"

ZAI_CODING_BASE_URL = "https://api.z.ai/api/coding/paas/v4/"
ZAI_GENERAL_BASE_URL = "https://api.z.ai/api/paas/v4/"
ZHIPU_BASE_URL = "https://open.bigmodel.cn/api/paas/v4/"

# 云端模式开关识别的取值
ZAI_MODES = {"ZAI", "Z_AI", "Z"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in ("false", "0", "no", "off")


@dataclass
class LocalVisionSettings:
    """本地 LM Studio 服务配置

    Attributes:
        base_url: 服务地址（v0 REST API，模型列表包含加载状态）
        api_key: 占位凭证，LM Studio 不校验
        timeout: 请求超时时间（秒）
        max_tokens: 最大生成 token 数
        temperature: 采样温度
        top_p: nucleus 采样参数
    """
    base_url: str = DEFAULT_LM_STUDIO_BASE_URL
    api_key: str = "lm-studio"
    timeout: float = 30.0
    max_tokens: int = 32768
    temperature: float = 0.8
    top_p: float = 0.6

    @classmethod
    def from_env(cls) -> "LocalVisionSettings":
        return cls(
            base_url=os.getenv("LM_STUDIO_BASE_URL", DEFAULT_LM_STUDIO_BASE_URL),
            api_key=os.getenv("LM_STUDIO_API_KEY", "lm-studio"),
            timeout=_env_int("LM_STUDIO_TIMEOUT", 30000) / 1000,
            max_tokens=_env_int("LM_STUDIO_MAX_TOKENS", 32768),
            temperature=_env_float("LM_STUDIO_TEMPERATURE", 0.8),
            top_p=_env_float("LM_STUDIO_TOP_P", 0.6),
        )


@dataclass
class CloudVisionSettings:
    """云端（Z.AI / 智谱开放平台）视觉服务配置"""
    base_url: str = ZHIPU_BASE_URL
    api_key: Optional[str] = None
    model: str = "glm-4.6v"
    timeout: float = 300.0
    max_tokens: int = 32768
    temperature: float = 0.8
    top_p: float = 0.6

    @classmethod
    def from_env(cls) -> "CloudVisionSettings":
        return cls(
            base_url=resolve_cloud_base_url(),
            api_key=resolve_cloud_api_key(),
            model=os.getenv("Z_AI_VISION_MODEL", "glm-4.6v"),
            timeout=_env_int("Z_AI_TIMEOUT", 300000) / 1000,
            max_tokens=_env_int("Z_AI_VISION_MODEL_MAX_TOKENS", 32768),
            temperature=_env_float("Z_AI_VISION_MODEL_TEMPERATURE", 0.8),
            top_p=_env_float("Z_AI_VISION_MODEL_TOP_P", 0.6),
        )


def resolve_cloud_base_url() -> str:
    """按优先级确定云端服务地址

    优先级：
    1. Z_AI_BASE_URL 显式覆盖
    2. Z_AI_MODE / PLATFORM_MODE 指定 Z.AI 模式：
       默认 Coding Plan 端点，Z_AI_CODING_PLAN=false 时使用通用端点
    3. 默认智谱开放平台端点

    Returns:
        以 / 结尾的服务地址
    """
    explicit = os.getenv("Z_AI_BASE_URL")
    if explicit:
        return explicit

    mode = (os.getenv("Z_AI_MODE") or os.getenv("PLATFORM_MODE") or "").upper()
    if mode in ZAI_MODES:
        if os.getenv("Z_AI_CODING_PLAN") != "false":
            return ZAI_CODING_BASE_URL
        return ZAI_GENERAL_BASE_URL

    return ZHIPU_BASE_URL


def resolve_cloud_api_key() -> Optional[str]:
    """按优先级读取云端凭证：Z_AI_API_KEY → ZAI_API_KEY → ANTHROPIC_AUTH_TOKEN"""
    for name in ("Z_AI_API_KEY", "ZAI_API_KEY", "ANTHROPIC_AUTH_TOKEN"):
        value = os.getenv(name)
        if value:
            return value
    return None


@dataclass
class VisionProviderSettings:
    """视觉服务选择配置

    Attributes:
        provider: VISION_PROVIDER 显式指定的服务名（小写），未指定为空串
        failover: 选用云端服务时是否以本地服务作为备用
        has_cloud_key: 是否存在任一云端凭证
        has_local_url: 是否显式配置了 LM_STUDIO_BASE_URL
    """
    provider: str = ""
    failover: bool = True
    has_cloud_key: bool = False
    has_local_url: bool = False

    @classmethod
    def from_env(cls) -> "VisionProviderSettings":
        return cls(
            provider=(os.getenv("VISION_PROVIDER") or "").strip().lower(),
            failover=_env_flag("VISION_FAILOVER", True),
            has_cloud_key=bool(os.getenv("Z_AI_API_KEY") or os.getenv("ANTHROPIC_AUTH_TOKEN")),
            has_local_url=bool(os.getenv("LM_STUDIO_BASE_URL")),
        )


@dataclass
class PipelineSettings:
    """PDF 处理流水线开关

    Attributes:
        skip_table_extraction: 跳过表格抽取（默认抽取，显式设为真值时跳过）
        min_text_threshold: 判定为图像型文档的文本长度阈值（字符）
        ocr_concurrency: 逐页识别的最大并发数，1 表示严格顺序
        ocr_page_timeout: 单页识别超时时间（秒）
        debug: 错误详情中是否附带调用栈
    """
    skip_table_extraction: bool = False
    min_text_threshold: int = 50
    ocr_concurrency: int = 1
    ocr_page_timeout: float = 300.0
    debug: bool = False

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            skip_table_extraction=_env_flag("SKIP_TABLE_EXTRACTION", False),
            min_text_threshold=_env_int("PDF_MIN_TEXT_THRESHOLD", 50),
            ocr_concurrency=max(1, _env_int("OCR_CONCURRENCY", 1)),
            ocr_page_timeout=_env_float("OCR_PAGE_TIMEOUT", 300.0),
            debug=_env_flag("DOCREADER_DEBUG", False),
        )
