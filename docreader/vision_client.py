"""视觉模型服务接口（抽象层）

提供统一的视觉模型服务接口，支持多种实现：
- LocalVisionClient: 本地 LM Studio 服务
- CloudVisionClient: 云端 Z.AI / 智谱视觉服务
- FailoverVisionClient: 主备服务故障转移（对调用方透明）

上层模块（PDF 解析流水线、表格抽取、OCR 后处理）只依赖该抽象接口，
具体实现由 vision_factory 在进程启动时构造并注入。
"""

import base64
import binascii
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping

from .models import VisionResult

logger = logging.getLogger(__name__)

DEFAULT_OCR_PROMPT = (
    "Extract all text from this image. Preserve the original formatting and structure as much as possible."
)
DEFAULT_ANALYSIS_PROMPT = "Describe this image in detail."

OCR_SYSTEM_PROMPT = """You are an advanced OCR and text extraction specialist. Your task is to accurately extract and recognize text from images.

Key responsibilities:
1. Extract ALL visible text from the image with high accuracy
2. Preserve the original formatting, layout, and structure
3. For documents with tables, maintain table structure using markdown
4. For code snippets, identify the programming language and format appropriately
5. Handle multiple languages if present
6. Note any text that is unclear or partially visible

Output format:
- Return the extracted text in a clean, readable format
- Use markdown formatting where appropriate (headers, lists, tables, code blocks)
- If the image contains structured data (invoices, forms), preserve that structure"""

# 视觉模型名称特征（模型列表接口不返回能力字段，只能按名称推断）
VISION_MODEL_PATTERNS = [
    r"vl",
    r"vision",
    r"llava",
    r"clip",
    r"phi-3-vision",
    r"qwen.*-vl",
    r"internvl",
    r"pix2struct",
    r"blip",
    r"fuyu",
]

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

ModelClassifier = Callable[[Mapping[str, Any]], bool]


def is_likely_vision_model(model: Mapping[str, Any]) -> bool:
    """按模型 ID 推断是否为视觉语言模型

    Args:
        model: 模型列表接口返回的单个模型描述（至少包含 id）

    Returns:
        bool: 名称命中任一视觉模型特征时为 True

    Note:
        启发式判断，可通过 LocalVisionClient(model_classifier=...) 替换，
        例如服务端提供 type == "vlm" 能力字段时直接按字段判断。
    """
    if not model or not model.get("id"):
        return False
    model_name = str(model["id"]).lower()
    return any(re.search(pattern, model_name) for pattern in VISION_MODEL_PATTERNS)


def validate_data_url(image_data: str) -> str:
    """校验 base64 data URL

    Returns:
        原样返回合法的 data URL

    Raises:
        ValueError: 格式非法或 base64 内容无法解码
    """
    match = _DATA_URL_RE.match(image_data or "")
    if not match:
        raise ValueError("Invalid base64 data URL format")
    try:
        raw = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 content: {e}")
    logger.debug(f"图像校验通过: {len(raw)} 字节, MIME 类型: {match.group(1)}")
    return image_data


def build_messages(image_data: str, prompt: str, system_prompt: str = "") -> List[Dict[str, Any]]:
    """构造 OpenAI 视觉格式的多模态消息

    image_data 为 data URL 时作为 image_url 片段发送；
    否则视为纯文本输入（表格规范化、OCR 文本精修），拼接在提示词之前。
    """
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    if is_data_url(image_data):
        content: Any = [
            {"type": "image_url", "image_url": {"url": image_data}},
            {"type": "text", "text": prompt},
        ]
    else:
        content = f"{image_data}\n\n{prompt}" if image_data and image_data not in prompt else prompt

    messages.append({"role": "user", "content": content})
    return messages


def is_data_url(value: str) -> bool:
    return bool(value) and value.startswith("data:")


class VisionClient(ABC):
    """视觉模型服务接口（抽象层）

    所有实现都返回 VisionResult，不向调用方抛出识别失败；
    只有 initialize() 在服务不可达或未配置时抛出 VisionServiceError。
    """

    name: str = "vision-client"

    @abstractmethod
    async def initialize(self) -> Any:
        """检查服务可用性并完成模型选择

        Raises:
            VisionServiceError: 服务不可达或未配置
        """
        pass

    @abstractmethod
    async def extract_text(self, image_data: str, prompt: str = DEFAULT_OCR_PROMPT) -> VisionResult:
        """识别图像中的文字

        Args:
            image_data: base64 data URL（也接受纯文本输入，用于文本规范化类任务）
            prompt: 识别指令

        Returns:
            VisionResult: 成功时 text 为识别结果，失败时 error 为原因
        """
        pass

    @abstractmethod
    async def analyze_image(self, image_data: str, prompt: str = DEFAULT_ANALYSIS_PROMPT) -> VisionResult:
        """分析图像内容，结果通过 VisionResult.analysis 读取"""
        pass

    async def aclose(self) -> None:
        """释放 HTTP 连接等资源"""
        return None
