"""文档解析模块

提供统一的文档解析接口，支持：
- PDF (.pdf)：自适应抽取流水线（版面分析、视觉模型 OCR、后处理、表格抽取）
- Word (.docx, .doc)
- Excel (.xlsx；旧版二进制 .xls 不支持)

视觉模型服务由 create_vision_client() 构造一次后注入各解析器。
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# 导入 docreader 时自动加载项目根目录下的 .env
ROOT_DIR = Path(__file__).resolve().parent.parent
load_dotenv(ROOT_DIR / ".env", override=False)


def _configure_logging():
    """为 docreader 包创建独立的日志配置"""
    package_logger = logging.getLogger(__name__)  # __name__ == "docreader"

    if getattr(package_logger, "_docreader_logging_configured", False):
        return

    log_dir = os.getenv("DOCREADER_LOG_DIR", "./logs")
    log_file = os.getenv("DOCREADER_LOG_FILE", "docreader.log")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, log_file)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8"
    )
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(process)d - %(filename)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    package_logger.addHandler(file_handler)
    package_logger.addHandler(stream_handler)
    package_logger.setLevel(os.getenv("DOCREADER_LOG_LEVEL", "INFO").upper())

    # 日志写入独立文件，不回传到根 logger
    package_logger.propagate = False
    package_logger._docreader_logging_configured = True  # type: ignore[attr-defined]


_configure_logging()

from .analysis_service import generate_clarification_questions
from .base import BaseParser
from .document_processor import DocumentProcessor
from .docx_parser import DocxParser
from .exceptions import DocReaderError, ParseError, UnsupportedFileTypeError, VisionServiceError
from .failover import FailoverVisionClient, is_auth_error
from .file_types import FileTypeInfo, detect_file_type, get_extension
from .layout_analyzer import LayoutAnalyzer
from .models import ExtractedImage, ExtractedTable, LayoutAnalysis, ParseResult, PostProcessingResult, VisionResult
from .ocr_postprocessor import OcrPostProcessor
from .pdf_parser import PDFParser
from .table_extractor import TableExtractor
from .vision_client import VisionClient
from .vision_factory import create_vision_client
from .xlsx_parser import XlsxParser


def create_parser(file_ext: str, vision_client: Optional[VisionClient] = None) -> BaseParser:
    """根据文件扩展名创建解析器（工厂函数）

    Args:
        file_ext: 文件扩展名（如 '.pdf'、'xlsx'），不区分大小写
        vision_client: PDF 解析使用的视觉服务，未提供时按环境配置创建

    Returns:
        对应的解析器实例

    Raises:
        UnsupportedFileTypeError: 不支持的文件格式

    Example:
        >>> parser = create_parser('.pdf', vision_client=create_vision_client())
        >>> result = await parser.parse('/path/to/file.pdf')
    """
    parsers = {
        'pdf': lambda: PDFParser(vision_client or create_vision_client()),
        'docx': DocxParser,
        'doc': DocxParser,
        'xlsx': XlsxParser,
    }

    factory = parsers.get(file_ext.lower().lstrip('.'))
    if not factory:
        supported = ", ".join(f".{ext}" for ext in parsers)
        raise UnsupportedFileTypeError(f"不支持的文件格式：{file_ext}。支持的格式：{supported}")

    return factory()


# 导出公共 API
__all__ = [
    'create_parser',
    'create_vision_client',
    'detect_file_type',
    'get_extension',
    'generate_clarification_questions',
    'BaseParser',
    'PDFParser',
    'DocxParser',
    'XlsxParser',
    'DocumentProcessor',
    'LayoutAnalyzer',
    'TableExtractor',
    'OcrPostProcessor',
    'VisionClient',
    'FailoverVisionClient',
    'is_auth_error',
    'FileTypeInfo',
    'ParseResult',
    'ExtractedImage',
    'ExtractedTable',
    'LayoutAnalysis',
    'PostProcessingResult',
    'VisionResult',
    'DocReaderError',
    'ParseError',
    'VisionServiceError',
    'UnsupportedFileTypeError',
]
