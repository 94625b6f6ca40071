"""测试配置与公共替身对象"""

import asyncio
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

# 导入 docreader 之前重定向日志目录，避免在仓库中生成日志文件
os.environ.setdefault("DOCREADER_LOG_DIR", os.path.join(tempfile.gettempdir(), "docreader-test-logs"))

from docreader.document import DocumentText
from docreader.models import ExtractedImage, VisionResult
from docreader.vision_client import VisionClient

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgo="

VISION_ENV_VARS = (
    "VISION_PROVIDER",
    "VISION_FAILOVER",
    "Z_AI_API_KEY",
    "ZAI_API_KEY",
    "ANTHROPIC_AUTH_TOKEN",
    "Z_AI_BASE_URL",
    "Z_AI_MODE",
    "PLATFORM_MODE",
    "Z_AI_CODING_PLAN",
    "Z_AI_VISION_MODEL",
    "Z_AI_TIMEOUT",
    "LM_STUDIO_BASE_URL",
    "LM_STUDIO_TIMEOUT",
    "SKIP_TABLE_EXTRACTION",
    "PDF_MIN_TEXT_THRESHOLD",
    "OCR_CONCURRENCY",
    "OCR_PAGE_TIMEOUT",
    "DOCREADER_DEBUG",
)


class FakeVisionClient(VisionClient):
    """可编排结果的视觉服务替身

    Args:
        handler: (image_data, prompt) -> VisionResult，可以是协程函数
        init_error: initialize() 抛出的异常
        name: 服务名称
    """

    def __init__(
        self,
        handler: Optional[Callable[[str, str], Any]] = None,
        init_error: Optional[BaseException] = None,
        name: str = "FakeVision",
    ):
        self.handler = handler or (lambda image_data, prompt: VisionResult.ok("recognized text", source="fake-vision"))
        self.init_error = init_error
        self.name = name
        self.calls: List[Dict[str, str]] = []
        self.initialize_calls = 0
        self.closed = False

    async def initialize(self) -> str:
        self.initialize_calls += 1
        if self.init_error is not None:
            raise self.init_error
        return self.name

    async def _respond(self, method: str, image_data: str, prompt: str) -> VisionResult:
        self.calls.append({"method": method, "image_data": image_data, "prompt": prompt})
        result = self.handler(image_data, prompt)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def extract_text(self, image_data: str, prompt: str = "") -> VisionResult:
        return await self._respond("extract_text", image_data, prompt)

    async def analyze_image(self, image_data: str, prompt: str = "") -> VisionResult:
        return await self._respond("analyze_image", image_data, prompt)

    async def aclose(self) -> None:
        self.closed = True


class FakeDocument:
    """PdfDocument 替身：返回预设的文本、图像和截图，并记录释放次数"""

    def __init__(
        self,
        page_texts: Sequence[str],
        images: Sequence[ExtractedImage] = (),
        screenshots: Sequence[ExtractedImage] = (),
        info: Optional[Dict[str, Any]] = None,
        text_error: Optional[BaseException] = None,
        screenshot_error: Optional[BaseException] = None,
    ):
        self.page_texts = list(page_texts)
        self.images = list(images)
        self.screenshots = list(screenshots)
        self.info = info or {}
        self.text_error = text_error
        self.screenshot_error = screenshot_error
        self.destroy_calls = 0

    def get_text(self) -> DocumentText:
        if self.text_error is not None:
            raise self.text_error
        return DocumentText(
            text="\n\n".join(self.page_texts),
            page_texts=list(self.page_texts),
            num_pages=len(self.page_texts),
            info=dict(self.info),
        )

    def get_images(self, include_data: bool = True) -> List[ExtractedImage]:
        return list(self.images)

    def get_screenshots(self) -> List[ExtractedImage]:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return list(self.screenshots)

    def destroy(self) -> None:
        self.destroy_calls += 1


class FakeOpener:
    """文档打开函数替身：每次调用用 factory 创建新句柄并记录下来"""

    def __init__(self, factory: Callable[[], FakeDocument]):
        self.factory = factory
        self.paths: List[str] = []
        self.documents: List[FakeDocument] = []

    def __call__(self, file_path: str) -> FakeDocument:
        self.paths.append(file_path)
        document = self.factory()
        self.documents.append(document)
        return document


def make_image(page: int, size: int = 5000, data: str = PNG_DATA_URL, name: Optional[str] = None) -> ExtractedImage:
    return ExtractedImage(
        data=data,
        name=name or f"image_{page}",
        page=page,
        width=800,
        height=600,
        size=size,
        kind="png",
    )


def make_screenshot(page: int) -> ExtractedImage:
    return ExtractedImage(
        data=f"data:image/png;base64,cGFnZQ{page}",
        name=f"page_{page}",
        page=page,
        width=1700,
        height=2200,
        size=1000,
        kind="screenshot",
    )


@pytest.fixture
def clean_env(monkeypatch):
    """清除影响视觉服务选择和流水线开关的环境变量"""
    for name in VISION_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def fake_vision():
    return FakeVisionClient()
