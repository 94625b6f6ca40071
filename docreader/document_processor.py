"""文档处理服务

按文件类型选择解析器并执行处理：
- summary: 返回文本、图像和元数据
- indepth: 在 summary 基础上附加启发式文档结构
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

from .base import BaseParser
from .config import PipelineSettings
from .docx_parser import DocxParser
from .file_types import FILE_TYPE_DOCX, FILE_TYPE_EXCEL, FILE_TYPE_PDF, detect_file_type
from .pdf_parser import PDFParser
from .vision_client import VisionClient
from .xlsx_parser import XlsxParser

logger = logging.getLogger(__name__)

PROCESSING_SUMMARY = "summary"
PROCESSING_INDEPTH = "indepth"


class DocumentProcessor:
    """文档处理器

    Args:
        vision_client: 视觉模型服务（PDF OCR 使用），由调用方构造后注入
        settings: 流水线配置
    """

    name = "DocumentProcessor"

    def __init__(self, vision_client: VisionClient, settings: Optional[PipelineSettings] = None):
        settings = settings or PipelineSettings.from_env()
        self.parsers: Dict[str, BaseParser] = {
            FILE_TYPE_PDF: PDFParser(vision_client, settings=settings),
            FILE_TYPE_DOCX: DocxParser(settings=settings),
            FILE_TYPE_EXCEL: XlsxParser(settings=settings),
        }

    def get_parser_for_type(self, file_type: Optional[str]) -> Optional[BaseParser]:
        parser = self.parsers.get(file_type) if file_type else None
        if parser is None:
            logger.warning(f"没有可用的解析器: file_type={file_type}")
        return parser

    async def process_document(self, file_path: str, processing_type: str) -> Dict[str, Any]:
        """处理文档

        Args:
            file_path: 文件路径
            processing_type: summary 或 indepth

        Returns:
            处理结果字典，始终包含 success；失败时包含 error
        """
        logger.info(f"处理文档: {file_path}, 模式 {processing_type}")

        detected = detect_file_type(file_path)
        if not detected.success:
            return {"success": False, "error": "Could not detect file type"}

        parser = self.get_parser_for_type(detected.file_type)
        if parser is None:
            return {"success": False, "error": f"No parser available for type {detected.file_type}"}

        if processing_type not in (PROCESSING_SUMMARY, PROCESSING_INDEPTH):
            logger.warning(f"未知的处理模式: {processing_type}")
            return {"success": False, "error": f"Unknown processing type {processing_type}"}

        result = await parser.parse(file_path)
        response: Dict[str, Any] = {
            "success": result.success,
            "text": result.text or "",
            "images": [asdict(image) for image in result.images],
            "metadata": result.metadata or None,
        }
        if not result.success:
            response["error"] = result.error
            response["details"] = result.details

        if processing_type == PROCESSING_INDEPTH:
            response["structure"] = parser.get_structure(result.text or "")
            logger.info(
                f"深度处理完成: 文本 {len(result.text)} 字符, 结构 {len(response['structure'])} 项, "
                f"图像 {len(result.images)} 个"
            )
        else:
            logger.info(f"摘要处理完成: 文本 {len(result.text)} 字符, 图像 {len(result.images)} 个")

        return response
