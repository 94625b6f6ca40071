"""PDF 文档句柄

基于 pdfplumber 封装统一的文档访问接口，供解析流水线各阶段使用：
- get_text(): 全文与逐页文本
- get_images(): 页面内嵌图像（渲染为 PNG data URL）
- get_screenshots(): 整页截图（用于扫描件 OCR）
- destroy(): 释放底层句柄（幂等）

句柄是有作用域的资源，推荐使用 with 语句或在 finally 中调用 destroy()。
"""

import base64
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Optional

import pdfplumber
from PIL import Image

from .exceptions import FATAL_ERRORS, ParseError
from .models import ExtractedImage

logger = logging.getLogger(__name__)

# 内嵌图像渲染分辨率（DPI）
IMAGE_RESOLUTION = 150
# 整页截图渲染分辨率（DPI），扫描件 OCR 需要更高清晰度
SCREENSHOT_RESOLUTION = 200

# PDF 图像流过滤器 → 图像格式
_FILTER_KINDS = {
    "DCTDecode": "jpeg",
    "JPXDecode": "jpx",
    "JBIG2Decode": "jbig2",
    "CCITTFaxDecode": "tiff",
    "FlateDecode": "png",
}


@dataclass
class DocumentText:
    """文本提取结果

    Attributes:
        text: 全文（页间以空行分隔）
        page_texts: 逐页文本
        num_pages: 页数
        info: 文档信息字典（Title、Author 等原始键）
    """
    text: str
    page_texts: List[str] = field(default_factory=list)
    num_pages: int = 0
    info: Dict[str, Any] = field(default_factory=dict)


def image_to_data_url(image: Image.Image, fmt: str = "PNG") -> str:
    """将 PIL 图像编码为 base64 data URL"""
    if image.mode not in ("RGB", "L", "RGBA"):
        image = image.convert("RGB")
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/{fmt.lower()};base64,{encoded}"


def _image_kind(stream: Any) -> str:
    """根据图像流的过滤器推断原始图像格式"""
    try:
        filters = stream.get_filters()
    except Exception:
        return "unknown"
    for name, _params in filters:
        kind = _FILTER_KINDS.get(getattr(name, "name", str(name)).lstrip("/"))
        if kind:
            return kind
    return "unknown"


class PdfDocument:
    """pdfplumber 文档句柄封装

    Example:
        >>> with open_pdf("/path/to/file.pdf") as document:
        ...     text = document.get_text()
        ...     shots = document.get_screenshots()
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._pdf = pdfplumber.open(file_path)
        self._destroyed = False

    def __enter__(self) -> "PdfDocument":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()

    @property
    def page_count(self) -> int:
        return len(self._pdf.pages)

    @property
    def is_encrypted(self) -> bool:
        return getattr(self._pdf.doc, "encryption", None) is not None

    def get_text(self) -> DocumentText:
        """提取全文与逐页文本"""
        page_texts = []
        for page in self._pdf.pages:
            page_texts.append(page.extract_text() or "")

        info = dict(self._pdf.metadata or {})
        info["Encrypted"] = self.is_encrypted

        return DocumentText(
            text="\n\n".join(page_texts),
            page_texts=page_texts,
            num_pages=len(page_texts),
            info=info,
        )

    def get_images(self, include_data: bool = True) -> List[ExtractedImage]:
        """提取所有页面的内嵌图像

        Args:
            include_data: 是否渲染图像数据；版面分析只需要图像元信息，可关闭以节省开销

        Returns:
            图像列表，按页码顺序

        Note:
            - 图像通过裁剪页面区域渲染为 PNG（与原始编码无关，统一可被视觉模型读取）
            - size 为 PDF 中原始图像流的字节数
            - 单张图像渲染失败只跳过该图像
        """
        images: List[ExtractedImage] = []

        for page_index, page in enumerate(self._pdf.pages):
            page_number = page_index + 1

            for img_index, img_obj in enumerate(page.images):
                stream = img_obj.get("stream")
                try:
                    raw_size = len(stream.get_rawdata()) if stream is not None else 0
                except Exception:
                    raw_size = 0

                src_width, src_height = img_obj.get("srcsize") or (img_obj.get("width", 0), img_obj.get("height", 0))

                data = ""
                if include_data:
                    try:
                        data = self._render_region(page, img_obj)
                    except Exception as e:
                        logger.warning(f"页面 {page_number} 渲染图像 {img_index} 失败: {e}")
                        continue

                images.append(ExtractedImage(
                    data=data,
                    name=img_obj.get("name") or f"image_{page_number}_{len(images)}",
                    page=page_number,
                    width=int(src_width or 0),
                    height=int(src_height or 0),
                    mime_type="image/png",
                    size=raw_size,
                    kind=_image_kind(stream) if stream is not None else "unknown",
                ))

        logger.debug(f"从 {self.file_path} 提取到 {len(images)} 个内嵌图像")
        return images

    def get_screenshots(self) -> List[ExtractedImage]:
        """渲染所有页面的整页截图"""
        screenshots: List[ExtractedImage] = []

        for page_index, page in enumerate(self._pdf.pages):
            rendered = page.to_image(resolution=SCREENSHOT_RESOLUTION).original
            data = image_to_data_url(rendered)
            screenshots.append(ExtractedImage(
                data=data,
                name=f"page_{page_index + 1}",
                page=page_index + 1,
                width=rendered.width,
                height=rendered.height,
                mime_type="image/png",
                size=len(data),
                kind="screenshot",
            ))

        return screenshots

    def destroy(self) -> None:
        """释放底层句柄（重复调用安全）"""
        if self._destroyed:
            return
        self._destroyed = True
        try:
            self._pdf.close()
        except Exception as e:
            logger.debug(f"关闭 PDF 句柄时出错（忽略）: {e}")

    @staticmethod
    def _render_region(page, img_obj: Dict[str, Any]) -> str:
        """裁剪图像所在区域并渲染为 PNG data URL"""
        x0, top, x1, bottom = page.bbox
        bbox = (
            max(img_obj["x0"], x0),
            max(img_obj["top"], top),
            min(img_obj["x1"], x1),
            min(img_obj["bottom"], bottom),
        )
        rendered = page.crop(bbox).to_image(resolution=IMAGE_RESOLUTION).original
        return image_to_data_url(rendered)


def open_pdf(file_path: str) -> PdfDocument:
    """打开 PDF 文档

    Raises:
        ParseError: 文件不存在、不可读或不是有效的 PDF
    """
    try:
        return PdfDocument(file_path)
    except FATAL_ERRORS as e:
        raise ParseError(f"无法读取文件: {e}", cause=e, code=type(e).__name__) from e
    except Exception as e:
        raise ParseError(f"无法打开 PDF 文档: {e}", cause=e, code="INVALID_PDF") from e


def parse_pdf_date(value: Optional[Any]) -> Optional[str]:
    """将 PDF 日期（D:YYYYMMDDHHmmSS...）转换为 ISO 格式字符串"""
    if not value:
        return None
    if isinstance(value, bytes):
        value = value.decode("latin-1", errors="ignore")
    text = str(value)
    if text.startswith("D:"):
        text = text[2:]
    digits = "".join(ch for ch in text[:14] if ch.isdigit())
    if len(digits) < 8:
        return None
    parts = [digits[0:4], digits[4:6], digits[6:8]]
    iso = "-".join(parts)
    if len(digits) >= 14:
        iso += f"T{digits[8:10]}:{digits[10:12]}:{digits[12:14]}"
    return iso
