"""文件解析器基类

提供统一的异步解析接口、错误详情格式化、结构提取启发式，
以及在线程池中执行阻塞解析调用的辅助方法。
"""

import asyncio
import errno
import logging
import os
import re
import traceback
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .models import ParseResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 错误详情中调用栈的最大长度
MAX_STACK_LENGTH = 2000

MIME_TYPES_BY_EXTENSION = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
    "tif": "image/tiff",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "jpx": "image/jp2",
    "jbig2": "image/jbig2",
    "emf": "image/emf",
    "wmf": "image/wmf",
}

_ALL_CAPS_RE = re.compile(r"^[A-Z\s\d\-.,;:]+$")
_NUMBERED_RE = re.compile(r"^\d+(\.\d+)*\s")
_ROMAN_RE = re.compile(r"^[IVX]+\.\s")
_TITLE_CASE_RE = re.compile(r"^[A-Z][a-z]+(?:\s[A-Z][a-z]+)+$")
_HEADER_KEYWORD_PATTERNS = (
    re.compile(r"^(Chapter|Section|Part)\s+\d+", re.I),
    re.compile(r"^(Appendix)\s+[A-Z]", re.I),
    re.compile(r"^(Table|Figure)\s+\d+", re.I),
)


class BaseParser(ABC):
    """文件解析器抽象基类

    所有解析器必须继承此类并实现 parse 方法。
    parse 不向调用方抛出异常：致命错误转换为 success=False 的 ParseResult。
    """

    name = "BaseParser"

    def __init__(self, debug: bool = False):
        """
        Args:
            debug: 错误详情中是否附带调用栈
        """
        self.debug = debug

    @abstractmethod
    async def parse(self, file_path: str) -> ParseResult:
        """解析文件（异步方法）

        Args:
            file_path: 文件路径

        Returns:
            ParseResult: 解析结果，失败时 success=False 并带有 error/details
        """
        pass

    async def run_sync(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """在默认线程池中执行阻塞调用（pdfplumber / python-docx / openpyxl）"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def handle_error(self, error: BaseException) -> Dict[str, Any]:
        """格式化错误详情

        Returns:
            {message, code, stack?}，stack 仅在 debug 模式下提供
        """
        code = getattr(error, "code", None)
        if code is None and isinstance(error, OSError) and error.errno:
            code = errno.errorcode.get(error.errno)

        details: Dict[str, Any] = {"message": str(error), "code": code}
        if self.debug:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            details["stack"] = stack[:MAX_STACK_LENGTH]
        return details

    def failure(self, label: str, error: BaseException) -> ParseResult:
        """构造致命错误的解析结果"""
        return ParseResult.failure(
            f"Failed to parse {label}: {str(error) or 'Unknown error'}",
            details=self.handle_error(error),
        )

    def get_structure(self, content: str) -> List[Dict[str, Any]]:
        """按行提取文档结构（启发式标题识别）

        Returns:
            非空行列表，每项包含 text / is_header / level / position
        """
        structure = []
        for line in content.split("\n"):
            if not line.strip():
                continue
            structure.append({
                "text": line.strip(),
                "is_header": self.is_likely_header(line),
                "level": self.guess_heading_level(line),
                "position": len(line) - len(line.lstrip()),
            })
        return structure

    @staticmethod
    def is_likely_header(line: str) -> bool:
        stripped = line.strip()

        if _ALL_CAPS_RE.match(stripped) and len(stripped) < 50:
            return True
        if stripped.endswith(":"):
            return True
        if _NUMBERED_RE.match(stripped) or _ROMAN_RE.match(stripped):
            return True
        if _TITLE_CASE_RE.match(stripped):
            return True
        return any(pattern.match(stripped) for pattern in _HEADER_KEYWORD_PATTERNS)

    @staticmethod
    def guess_heading_level(line: str) -> int:
        """按缩进估计标题级别（缩进越少级别越高，范围 1-6）"""
        indent = len(line) - len(line.lstrip())
        level = -(-indent // 4)
        return max(1, min(level, 6))

    @staticmethod
    def extract_filename(file_path: str) -> Optional[str]:
        return os.path.basename(file_path) or None

    @staticmethod
    def get_mime_type(name_or_kind: Optional[str]) -> str:
        """根据文件扩展名或图像格式名推断 MIME 类型（未知时为 image/jpeg）"""
        if not name_or_kind:
            return "image/jpeg"
        kind = name_or_kind.rsplit(".", 1)[-1].lower().replace("-", "")
        return MIME_TYPES_BY_EXTENSION.get(kind, "image/jpeg")
