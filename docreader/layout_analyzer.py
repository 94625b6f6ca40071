"""文档版面分析器

分析 PDF 每页的文本块、图像区域和疑似表格，
对每页和整篇文档做结构分类，供 OCR 提示词选择和后处理参考。

分类阈值是启发式参数，可以调整，但判定顺序固定：
表格密度 > 图像密度 > 文本密度。
"""

import asyncio
import logging
import re
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Sequence

from .document import PdfDocument, open_pdf
from .models import (
    IMAGE_HEAVY_DOCUMENT,
    MIXED_DOCUMENT,
    STRUCTURED_DOCUMENT,
    TEXT_DENSE_DOCUMENT,
    LayoutAnalysis,
    PageLayout,
    TableCandidate,
    TextBlock,
)

logger = logging.getLogger(__name__)

# 页面版面类型
IMAGE_HEAVY_PAGE = "image-heavy"
SPARSE_TEXT_PAGE = "sparse-text"
TEXT_DENSE_PAGE = "text-dense"
FRAGMENTED_PAGE = "fragmented"
BALANCED_PAGE = "balanced"

SMALL_BLOCK_SIZE = 100
LARGE_BLOCK_SIZE = 500

_COLUMNAR_RE = re.compile(r"^\s*\d+\s+\S+\s+\d+")

DocumentOpener = Callable[[str], PdfDocument]


class LayoutAnalyzer:
    """文档版面分析器

    Args:
        min_text_block_size: 文本块最小字符数，过滤页码、页眉等零散短行
        document_opener: 文档打开函数（默认 pdfplumber 实现）
    """

    name = "DocumentLayoutAnalyzer"

    def __init__(self, min_text_block_size: int = 20, document_opener: DocumentOpener = open_pdf):
        self.min_text_block_size = min_text_block_size
        self.document_opener = document_opener

    async def analyze_document(self, file_path: str) -> LayoutAnalysis:
        """分析文档版面（不抛出异常，失败时返回 success=False）"""
        logger.info(f"开始版面分析: {file_path}")

        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._analyze_file, file_path)
        except Exception as e:
            logger.error(f"版面分析失败: {file_path}, 错误: {e}")
            return LayoutAnalysis(success=False, error=f"Layout analysis failed: {e}", pages=[])

    def _analyze_file(self, file_path: str) -> LayoutAnalysis:
        document = self.document_opener(file_path)
        try:
            text_result = document.get_text()
            images = document.get_images(include_data=False)
        finally:
            document.destroy()

        page_images: Dict[int, List[Dict[str, Any]]] = {}
        for image in images:
            page_images.setdefault(image.page, []).append({
                "name": image.name,
                "width": image.width,
                "height": image.height,
                "size": image.size,
                "kind": image.kind,
            })

        images_by_page = [page_images.get(index + 1, []) for index in range(len(text_result.page_texts))]
        analysis = self.analyze_pages(text_result.page_texts, images_by_page)

        logger.info(
            f"版面分析完成: {analysis.total_pages} 页, 结构类型 {analysis.structure_type}, "
            f"疑似表格 {analysis.total_tables} 个"
        )
        return analysis

    def analyze_pages(
        self,
        page_texts: Sequence[str],
        page_images: Optional[Sequence[List[Dict[str, Any]]]] = None,
    ) -> LayoutAnalysis:
        """对已提取的逐页文本和图像做版面分析"""
        pages: List[PageLayout] = []

        for index, page_text in enumerate(page_texts):
            images = list(page_images[index]) if page_images and index < len(page_images) else []
            text_blocks = self.extract_text_blocks(page_text)

            pages.append(PageLayout(
                page_number=index + 1,
                text_blocks=text_blocks,
                images=images,
                tables=self.find_table_candidates(page_text),
                total_text_length=len(page_text or ""),
                estimated_layout_type=self.estimate_page_layout(text_blocks, images),
            ))

        return LayoutAnalysis(
            success=True,
            pages=pages,
            total_pages=len(pages),
            layout_summary=self.generate_layout_summary(pages),
            structure_type=self.classify_document_structure(pages),
        )

    def extract_text_blocks(self, page_text: str) -> List[TextBlock]:
        """按空行切分文本块

        累计长度不足 min_text_block_size 的块不会在空行处结束，
        而是继续与后续行合并。
        """
        if not page_text:
            return []

        lines = page_text.split("\n")
        blocks: List[TextBlock] = []
        current_text = ""
        current_lines: List[str] = []
        start_line = 0

        for index, raw_line in enumerate(lines):
            line = raw_line.strip()

            if not line:
                if len(current_text) >= self.min_text_block_size:
                    blocks.append(TextBlock(text=current_text, lines=current_lines, start_line=start_line, end_line=index))
                    current_text = ""
                    current_lines = []
                continue

            if not current_text:
                start_line = index
            current_lines.append(line)
            current_text += line + " "

        if len(current_text) >= self.min_text_block_size:
            blocks.append(TextBlock(text=current_text, lines=current_lines, start_line=start_line, end_line=len(lines) - 1))

        return blocks

    @staticmethod
    def find_table_candidates(page_text: str) -> List[TableCandidate]:
        """逐行查找疑似表格

        三种独立检查（同一行可能被多种检查同时命中）：
        - markdown-table: 含 | 的行，下一行含 ---
        - tab-separated: 超过 2 个制表符分隔字段
        - columnar: 数字开头、数字结尾的对齐列
        """
        if not page_text:
            return []

        lines = page_text.split("\n")
        tables: List[TableCandidate] = []

        for index, raw_line in enumerate(lines):
            line = raw_line.strip()
            next_line = lines[index + 1].strip() if index + 1 < len(lines) else ""

            if line and "|" in line and "---" in next_line:
                tables.append(TableCandidate(type="markdown-table", start_line=index, content=f"{line}\n{next_line}"))

            if "\t" in line and len(line.split("\t")) > 2:
                tables.append(TableCandidate(type="tab-separated", start_line=index, content=line))

            if _COLUMNAR_RE.search(line):
                tables.append(TableCandidate(type="columnar", start_line=index, content=line))

        return tables

    @staticmethod
    def estimate_page_layout(text_blocks: Sequence[TextBlock], images: Sequence[Any]) -> str:
        if len(images) > 2:
            return IMAGE_HEAVY_PAGE
        if len(text_blocks) < 3:
            return SPARSE_TEXT_PAGE

        small_blocks = sum(1 for block in text_blocks if len(block.text) < SMALL_BLOCK_SIZE)
        large_blocks = sum(1 for block in text_blocks if len(block.text) > LARGE_BLOCK_SIZE)

        if large_blocks > 2:
            return TEXT_DENSE_PAGE
        if small_blocks > 5:
            return FRAGMENTED_PAGE
        return BALANCED_PAGE

    @staticmethod
    def generate_layout_summary(pages: Sequence[PageLayout]) -> str:
        summary = "Document Layout Analysis:\n"
        if not pages:
            return summary + "No pages analyzed\n"

        total_blocks = sum(len(page.text_blocks) for page in pages)
        total_images = sum(len(page.images) for page in pages)
        total_tables = sum(len(page.tables) for page in pages)
        layout_counts = Counter(page.estimated_layout_type for page in pages)

        summary += f"- Total pages: {len(pages)}\n"
        summary += f"- Total text blocks: {total_blocks}\n"
        summary += f"- Total images: {total_images}\n"
        summary += f"- Potential tables: {total_tables}\n"
        summary += "- Page layouts: " + ", ".join(f"{count} {layout}" for layout, count in layout_counts.items()) + "\n"
        return summary

    @staticmethod
    def classify_document_structure(pages: Sequence[PageLayout]) -> str:
        total_blocks = sum(len(page.text_blocks) for page in pages)
        total_images = sum(len(page.images) for page in pages)
        total_tables = sum(len(page.tables) for page in pages)

        if total_tables > 3:
            return STRUCTURED_DOCUMENT
        if total_images > 5 and total_blocks < 10:
            return IMAGE_HEAVY_DOCUMENT
        if total_blocks > 20:
            return TEXT_DENSE_DOCUMENT
        return MIXED_DOCUMENT
