"""PDF 文档解析器（自适应抽取流水线）

处理流程：
1. 打开文档，提取全文和内嵌图像
2. 版面分析（失败不影响后续步骤）
3. 判定是否为图像型 PDF（有图像且文本极少，或版面分析判定为图像密集型文档）
4. 图像型 PDF：初始化视觉服务，逐页识别（优先整页截图，其次内嵌图像）
5. OCR 后处理：OCR 分支调用模型精修，文本分支只做基础清理
6. 表格抽取（可通过 SKIP_TABLE_EXTRACTION 关闭），失败时降级为空列表
7. 组装结果，finally 中释放文档句柄
"""

import asyncio
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .base import BaseParser
from .config import PipelineSettings
from .document import DocumentText, PdfDocument, open_pdf, parse_pdf_date
from .layout_analyzer import DocumentOpener, LayoutAnalyzer
from .models import (
    IMAGE_HEAVY_DOCUMENT,
    STRUCTURED_DOCUMENT,
    TEXT_DENSE_DOCUMENT,
    ExtractedImage,
    ExtractedTable,
    LayoutAnalysis,
    OcrResult,
    ParseResult,
    PostProcessingResult,
    VisionResult,
)
from .ocr_postprocessor import OcrPostProcessor
from .table_extractor import TableExtractor
from .vision_client import VisionClient

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
# 去除空白后的页码标记，如 "-- 1 of 3 --" → "--1of3--"
_PAGE_MARKER_RE = re.compile(r"--\d+of\d+--", re.I)

BASE_OCR_PROMPT = """Extract all text from this document image with high accuracy. Preserve the original formatting and structure as much as possible.

Key instructions:
1. Extract ALL visible text from the image with high accuracy
2. Preserve the original formatting, layout, and structure
3. For documents with tables, maintain table structure using markdown
4. For code snippets, identify the programming language and format appropriately
5. Handle multiple languages if present
6. Note any text that is unclear or partially visible

"""

STRUCTURE_PROMPTS = {
    STRUCTURED_DOCUMENT: """This document appears to be a structured document with tables and formal structure. Pay special attention to:
- Table structures (preserve columns and rows)
- Headers and footers
- Section boundaries
- Numbered lists and bullet points
- Any structured data like forms or invoices
""",
    IMAGE_HEAVY_DOCUMENT: """This document is image-heavy with minimal text. Extract all visible text from images with extreme care:
- Pay attention to small fonts and low-contrast text
- Preserve all spacing and alignment
- Extract any text from charts, graphs, or diagrams
- Note any text that is unclear or partially visible
""",
    TEXT_DENSE_DOCUMENT: """This document is text-dense with many paragraphs. Focus on:
- Preserving paragraph structure
- Maintaining proper line breaks between sections
- Identifying section headers and subheaders
- Keeping the document's hierarchical structure intact
""",
}

TABLE_PROMPT_TEMPLATE = """IMPORTANT: There are {count} potential table(s) in this document. Extract them using markdown table format:
- Use | to separate columns
- Use --- to separate header from content
- Preserve all rows even if they appear incomplete
- If cells are merged, indicate this with [merged] or appropriate markdown
"""


def clean_text_length(text: Optional[str]) -> int:
    """去除全部空白和页码标记后的文本长度"""
    cleaned = _WHITESPACE_RE.sub("", text or "")
    return len(_PAGE_MARKER_RE.sub("", cleaned))


class PDFParser(BaseParser):
    """PDF 解析流水线

    所有协作组件都可注入；视觉服务应在进程启动时通过 create_vision_client() 构造一次，
    在多个解析器之间共享。

    Args:
        vision_client: 视觉模型服务
        settings: 流水线配置，默认从环境变量读取
        layout_analyzer: 版面分析器
        post_processor: OCR 后处理器
        table_extractor: 表格抽取器
        document_opener: 文档打开函数（默认 pdfplumber 实现）
    """

    name = "PdfParser"

    def __init__(
        self,
        vision_client: VisionClient,
        settings: Optional[PipelineSettings] = None,
        layout_analyzer: Optional[LayoutAnalyzer] = None,
        post_processor: Optional[OcrPostProcessor] = None,
        table_extractor: Optional[TableExtractor] = None,
        document_opener: DocumentOpener = open_pdf,
    ):
        self.settings = settings or PipelineSettings.from_env()
        super().__init__(debug=self.settings.debug)

        self.vision_client = vision_client
        self.document_opener = document_opener
        self.min_text_threshold = self.settings.min_text_threshold
        self.layout_analyzer = layout_analyzer or LayoutAnalyzer(document_opener=document_opener)
        self.post_processor = post_processor or OcrPostProcessor(vision_client)
        self.table_extractor = table_extractor or TableExtractor(vision_client, document_opener=document_opener)

    def is_image_based_pdf(self, text: Optional[str], images: Sequence[ExtractedImage]) -> bool:
        """有内嵌图像且清理后文本长度低于阈值"""
        has_images = len(images) > 0
        text_length = clean_text_length(text)
        has_minimal_text = text_length < self.min_text_threshold

        logger.debug(
            f"图像型判定: has_images={has_images}, has_minimal_text={has_minimal_text} "
            f"(clean_length={text_length} < {self.min_text_threshold})"
        )
        return has_images and has_minimal_text

    async def parse(self, file_path: str) -> ParseResult:
        """解析 PDF 文档（不抛出异常）"""
        logger.info(f"开始解析 PDF: {file_path}")
        document: Optional[PdfDocument] = None

        try:
            document = await self.run_sync(self.document_opener, file_path)
            text_result: DocumentText = await self.run_sync(document.get_text)
            images: List[ExtractedImage] = await self.run_sync(document.get_images)

            layout = await self.layout_analyzer.analyze_document(file_path)
            if layout.success:
                logger.info(f"版面分析完成，结构类型: {layout.structure_type}")
                logger.debug(layout.layout_summary)
            else:
                logger.warning(f"版面分析失败，继续解析（无版面上下文）: {layout.error}")

            is_image_based = self.is_image_based_pdf(text_result.text, images) or (
                bool(images) and layout.success and layout.structure_type == IMAGE_HEAVY_DOCUMENT
            )
            logger.info(
                f"文本 {clean_text_length(text_result.text)} 字符, 内嵌图像 {len(images)} 个, "
                f"{'需要' if is_image_based else '不需要'} OCR"
            )

            final_text = text_result.text or ""
            ocr_result: Optional[OcrResult] = None
            post_processing: Optional[PostProcessingResult] = None

            if is_image_based:
                ocr_result = await self._run_ocr(document, images, layout)
                if ocr_result is not None and ocr_result.success:
                    post_processing = await self.post_processor.process_ocr_text(ocr_result.text, layout, use_ai=True)
                    final_text = post_processing.processed_text
            else:
                post_processing = await self.post_processor.process_ocr_text(final_text, layout, use_ai=False)
                final_text = post_processing.processed_text

            tables = await self._extract_tables(file_path)
            ocr_applied = bool(ocr_result and ocr_result.success)

            logger.info(f"PDF 解析完成: {file_path}, 文本 {len(final_text)} 字符, OCR {'已应用' if ocr_applied else '未应用'}")

            return ParseResult(
                success=True,
                text=final_text,
                pages=text_result.num_pages,
                metadata=self.extract_metadata(text_result, file_path),
                images=images,
                is_image_based=is_image_based,
                ocr_applied=ocr_applied,
                ocr_source=ocr_result.source if ocr_applied else None,
                layout_analysis=layout if layout.success else None,
                ocr_post_processing=post_processing,
                tables=tables,
                table_count=len(tables),
            )

        except Exception as e:
            logger.error(f"PDF 解析失败: {file_path}, 错误: {e}", exc_info=True)
            return self.failure("PDF", e)

        finally:
            if document is not None:
                document.destroy()

    async def _run_ocr(
        self,
        document: PdfDocument,
        images: Sequence[ExtractedImage],
        layout: LayoutAnalysis,
    ) -> Optional[OcrResult]:
        """初始化视觉服务并执行 OCR；服务不可用时返回 None"""
        try:
            active = await self.vision_client.initialize()
        except Exception as e:
            logger.error(f"视觉服务初始化失败，跳过 OCR: {e}")
            return None

        logger.info(f"视觉服务可用（{active if isinstance(active, str) else self.vision_client.name}），开始 OCR")
        ocr_result = await self.perform_ocr(document, images, self.generate_ocr_prompt(layout))

        if ocr_result.success:
            logger.info(f"OCR 完成: {ocr_result.pages_processed} 页")
        else:
            logger.error(f"OCR 失败: {ocr_result.error}")
        return ocr_result

    async def perform_ocr(
        self,
        document: PdfDocument,
        images: Sequence[ExtractedImage],
        prompt: str,
    ) -> OcrResult:
        """逐页识别并按页码顺序拼接结果

        优先使用整页截图；截图不可用时退回到内嵌图像。
        并发数由 ocr_concurrency 控制（默认 1，即严格顺序），
        单页失败或超时只跳过该页，至少一页成功即视为成功。
        """
        page_images: List[ExtractedImage] = []

        try:
            screenshots = await self.run_sync(document.get_screenshots)
            page_images = [shot for shot in screenshots if shot.data]
            if page_images:
                logger.info(f"使用 {len(page_images)} 张整页截图进行 OCR")
        except Exception as e:
            logger.warning(f"整页截图失败: {e}")

        if not page_images:
            page_images = [image for image in images if image.data]
            if page_images:
                logger.info(f"退回使用 {len(page_images)} 个内嵌图像进行 OCR")

        if not page_images:
            return OcrResult(success=False, error="No images available for OCR")

        semaphore = asyncio.Semaphore(self.settings.ocr_concurrency)
        timeout = self.settings.ocr_page_timeout

        async def recognize(index: int, image: ExtractedImage) -> Optional[Tuple[int, VisionResult]]:
            page_number = image.page or index + 1
            async with semaphore:
                try:
                    result = await asyncio.wait_for(self.vision_client.extract_text(image.data, prompt), timeout=timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"第 {page_number} 页 OCR 超时（>{timeout}秒）")
                    return None
                except Exception as e:
                    logger.warning(f"第 {page_number} 页 OCR 异常: {e}")
                    return None

            if not result.success:
                logger.warning(f"第 {page_number} 页 OCR 失败: {result.error}")
                return None
            return page_number, result

        results = await asyncio.gather(*(recognize(index, image) for index, image in enumerate(page_images)))
        successful = sorted((item for item in results if item is not None), key=lambda item: item[0])

        if not successful:
            return OcrResult(success=False, error="OCR failed for all pages")

        first = successful[0][1]
        return OcrResult(
            success=True,
            text="\n\n".join(f"--- Page {page} ---\n{result.text}" for page, result in successful),
            source=first.source or self.vision_client.name,
            model=first.model,
            pages_processed=len(successful),
        )

    @staticmethod
    def generate_ocr_prompt(layout: Optional[LayoutAnalysis]) -> str:
        """根据版面分析结果生成 OCR 提示词"""
        prompt = BASE_OCR_PROMPT
        if layout is None or not layout.success:
            return prompt

        prompt += STRUCTURE_PROMPTS.get(layout.structure_type, "")
        if layout.total_tables > 0:
            prompt += TABLE_PROMPT_TEMPLATE.format(count=layout.total_tables)
        return prompt

    async def _extract_tables(self, file_path: str) -> List[ExtractedTable]:
        if self.settings.skip_table_extraction:
            logger.info("已跳过表格抽取（SKIP_TABLE_EXTRACTION）")
            return []

        try:
            tables = await self.table_extractor.extract_tables_from_pdf(file_path)
        except Exception as e:
            logger.error(f"表格抽取失败（继续解析，不含表格）: {e}")
            return []

        logger.info(f"表格抽取完成: {len(tables)} 个")
        return tables

    @staticmethod
    def extract_metadata(text_result: DocumentText, file_path: Optional[str] = None) -> Dict[str, Any]:
        info = text_result.info or {}

        def value(key: str) -> Optional[str]:
            raw = info.get(key)
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="ignore")
            return str(raw) if raw else None

        file_size = None
        if file_path and os.path.exists(file_path):
            file_size = os.path.getsize(file_path)

        return {
            "title": value("Title"),
            "author": value("Author"),
            "subject": value("Subject"),
            "creator": value("Creator"),
            "producer": value("Producer"),
            "creation_date": parse_pdf_date(info.get("CreationDate")),
            "modification_date": parse_pdf_date(info.get("ModDate")),
            "page_count": text_result.num_pages,
            "file_size": file_size,
            "is_encrypted": bool(info.get("Encrypted", False)),
        }
