"""表格抽取

纯文本抽取会破坏表格结构，该模块负责找回表格：
1. 用四种相互独立的模式在文本中检测疑似表格（markdown / 制表符分隔 / 列对齐 / 表头分隔线）
2. 对 PDF 内嵌图像直接请求视觉模型识别表格
3. 由视觉模型把每个候选规范化为 Markdown 表格

四种模式的匹配区域可能重叠，同一段文本可能产生多个不同类型的候选，不做去重。
置信度是按来源固定的启发式常量，不是统计概率。
"""

import asyncio
import logging
import re
from dataclasses import replace
from typing import List, Optional, Sequence

from .document import open_pdf
from .layout_analyzer import DocumentOpener
from .models import ExtractedImage, ExtractedTable
from .vision_client import VisionClient

logger = logging.getLogger(__name__)

TEXT_TABLE_CONFIDENCE = 0.9
IMAGE_TABLE_CONFIDENCE = 0.85

# 内嵌图像原始字节数阈值（过滤图标、线条等小图）
MIN_TABLE_IMAGE_SIZE = 1000
# 视觉模型返回的图像表格最小长度
MIN_IMAGE_TABLE_LENGTH = 10

# markdown 表格：表头行 + 分隔行（|---|---|，可带对齐冒号）+ 至少一行数据
_MARKDOWN_TABLE_RE = re.compile(
    r"^[ \t]*\|.*\|[ \t]*\n"
    r"[ \t]*\|[ \t]*:?-+:?[ \t]*(?:\|[ \t]*:?-+:?[ \t]*)*\|[ \t]*"
    r"((?:\n[ \t]*\|.*\|[ \t]*)+)",
    re.M,
)
_TAB_ROW_RE = re.compile(r"^(?:[^\t\n]*\t){2,}[^\t\n]*$", re.M)
_COLUMN_ROW_RE = re.compile(r"^[ \t]*\d+[ \t]+(?:\S+[ \t]+){2,}\d+[ \t]*$", re.M)
_HEADER_SEPARATOR_RE = re.compile(
    r"^([^\n]+\n)(-+[ \t-]*\n)((?:[^\n]+\n)+)(?=\n|\Z)",
    re.M,
)
_SEPARATOR_LINE_RE = re.compile(r"^\s*\|?\s*:?-{3,}")

TABLE_IMAGE_PROMPT = """Extract any tables from this image. Use markdown format with | for columns and --- for header separator.
Do NOT extract non-table content. Only return the table in markdown format."""


def build_table_prompt(table_content: str) -> str:
    return f"""Extract this table from the document and format it as a markdown table.
Table content:
{table_content}

Instructions:
1. Extract ALL data from the table
2. Preserve all rows and columns exactly as they appear
3. Use markdown table format with | for column separators
4. Use --- to separate header from content
5. If cells are merged, indicate this with [merged] or appropriate markdown
6. Preserve any numbers, dates, or special formatting exactly as they appear
7. If the table has headers, make sure to include them in the first row
8. Do NOT add any commentary or explanations beyond the table itself

Return only the markdown table with no additional text."""


def repair_markdown_table(table: str) -> str:
    """补全缺失的表头分隔行

    第二行不是分隔行时，把第一行按空白切分为表头列，并在其后插入 |--- 分隔行，
    其余各行原样保留。
    """
    lines = table.split("\n")
    if len(lines) < 3:
        return table.strip()

    if _SEPARATOR_LINE_RE.match(lines[1]):
        return table.strip()

    header = "|" + re.sub(r"\s+", "|", lines[0].strip())
    return f"{header}\n|---\n" + "\n".join(lines[1:])


class TableExtractor:
    """表格抽取器

    Args:
        vision_client: 视觉模型服务（由调用方注入）
        document_opener: 文档打开函数（默认 pdfplumber 实现）
    """

    name = "TableExtractor"

    def __init__(self, vision_client: VisionClient, document_opener: DocumentOpener = open_pdf):
        self.vision_client = vision_client
        self.document_opener = document_opener

    @staticmethod
    def detect_tables_in_text(text: str) -> List[ExtractedTable]:
        """检测文本中的疑似表格（纯函数，多次调用结果一致）

        Returns:
            候选表格列表，按检测模式分组、组内按出现位置排序
        """
        if not text:
            return []

        tables: List[ExtractedTable] = []

        for match in _MARKDOWN_TABLE_RE.finditer(text):
            data_rows = [row for row in match.group(1).split("\n") if row.strip()]
            tables.append(ExtractedTable(
                type="markdown",
                content=match.group(0),
                start=match.start(),
                end=match.end(),
                rows=len(data_rows) + 1,
            ))

        for match in _TAB_ROW_RE.finditer(text):
            tables.append(ExtractedTable(
                type="tab-separated",
                content=match.group(0),
                start=match.start(),
                end=match.end(),
                rows=1,
            ))

        for match in _COLUMN_ROW_RE.finditer(text):
            if len(match.group(0).split()) > 3:
                tables.append(ExtractedTable(
                    type="column-aligned",
                    content=match.group(0),
                    start=match.start(),
                    end=match.end(),
                    rows=1,
                ))

        # 末尾补换行，使最后一行也能作为数据行匹配
        padded = text if text.endswith("\n") else text + "\n"
        for match in _HEADER_SEPARATOR_RE.finditer(padded):
            content = match.group(0)
            body_rows = [row for row in match.group(3).split("\n") if row.strip()]
            tables.append(ExtractedTable(
                type="header-separator",
                content=content,
                start=match.start(),
                end=min(match.end(), len(text)),
                rows=len(body_rows) + 1,
            ))

        return tables

    async def extract_tables(self, text: str) -> List[ExtractedTable]:
        """检测并规范化文本中的表格，规范化失败的候选被丢弃"""
        if not text:
            return []

        logger.info("开始抽取文本表格...")
        candidates = self.detect_tables_in_text(text)
        tables = await self._normalize_candidates(candidates)

        logger.info(f"抽取到 {len(tables)} 个表格（候选 {len(candidates)} 个）")
        return tables

    async def extract_table_content(self, table_content: str, table_type: str) -> Optional[str]:
        """调用视觉模型把候选表格规范化为 Markdown

        Returns:
            规范化后的表格，失败或输出不是表格时返回 None
        """
        logger.debug(f"规范化 {table_type} 表格...")

        try:
            result = await self.vision_client.extract_text(table_content, build_table_prompt(table_content))
        except Exception as e:
            logger.error(f"表格规范化调用异常: {e}")
            return None

        if not result.success:
            logger.warning(f"表格规范化失败: {result.error}")
            return None

        output = (result.text or "").strip()
        if not output or len(output.split("\n")) < 2:
            return None

        return repair_markdown_table(output)

    async def extract_tables_from_pdf(self, file_path: str) -> List[ExtractedTable]:
        """独立于主流水线，重新提取 PDF 的文本和图像并抽取表格

        Returns:
            文本表格在前、图像表格在后；任何错误都返回空列表
        """
        logger.info(f"开始抽取 PDF 表格: {file_path}")

        try:
            loop = asyncio.get_running_loop()
            text, images = await loop.run_in_executor(None, self._load_pdf, file_path)

            text_tables = await self._normalize_candidates(self.detect_tables_in_text(text))
            image_tables = await self._extract_image_tables(images)
        except Exception as e:
            logger.error(f"PDF 表格抽取失败: {file_path}, 错误: {e}")
            return []

        tables = text_tables + image_tables
        logger.info(f"PDF 表格抽取完成: 文本表格 {len(text_tables)} 个, 图像表格 {len(image_tables)} 个")
        return tables

    def _load_pdf(self, file_path: str):
        document = self.document_opener(file_path)
        try:
            return document.get_text().text, document.get_images()
        finally:
            document.destroy()

    async def _normalize_candidates(self, candidates: Sequence[ExtractedTable]) -> List[ExtractedTable]:
        tables: List[ExtractedTable] = []
        for candidate in candidates:
            formatted = await self.extract_table_content(candidate.content, candidate.type)
            if formatted is None:
                logger.debug(f"丢弃无法规范化的 {candidate.type} 候选（偏移 {candidate.start}）")
                continue
            tables.append(replace(
                candidate,
                source="text",
                extracted_content=formatted,
                confidence=TEXT_TABLE_CONFIDENCE,
            ))
        return tables

    async def _extract_image_tables(self, images: Sequence[ExtractedImage]) -> List[ExtractedTable]:
        tables: List[ExtractedTable] = []

        for image in images:
            if not image.data or image.size <= MIN_TABLE_IMAGE_SIZE:
                continue

            result = await self.vision_client.extract_text(image.data, TABLE_IMAGE_PROMPT)
            if not result.success:
                logger.warning(f"第 {image.page} 页图像表格识别失败: {result.error}")
                continue

            content = (result.text or "").strip()
            if len(content) < MIN_IMAGE_TABLE_LENGTH:
                continue

            tables.append(ExtractedTable(
                type="image-table",
                content=content,
                rows=sum(1 for line in content.split("\n") if line.strip().startswith("|")),
                source="image",
                extracted_content=content,
                confidence=IMAGE_TABLE_CONFIDENCE,
                page=image.page,
            ))

        return tables

    @staticmethod
    def format_tables_for_display(tables: Sequence[ExtractedTable]) -> str:
        """生成附加在文本末尾的表格展示区块"""
        if not tables:
            return ""

        output = f"\n\n=== EXTRACTED TABLES ({len(tables)}) ===\n\n"
        for index, table in enumerate(tables, start=1):
            output += (
                f"Table {index} (Source: {table.source or 'text'}, Type: {table.type}, "
                f"Confidence: {round(table.confidence * 100)}%)\n"
            )
            output += table.extracted_content or table.content
            output += "\n\n"
        return output
