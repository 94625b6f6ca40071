"""Word 文档解析器

基于 python-docx 的 DOCX 解析实现，支持：
- 段落与表格按正文顺序提取（表格转换为 Markdown）
- 内嵌图像提取（base64 data URL，不做 OCR）
- 文档属性元数据（标题、作者、创建/修改时间等）
- 错误回退机制（完整解析 → 简化解析）
"""

import base64
import logging
import re
from io import BytesIO
from typing import Any, Dict, List, Optional

from docx import Document
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from .base import BaseParser
from .config import PipelineSettings
from .models import ExtractedImage, ParseResult

logger = logging.getLogger(__name__)


def natural_sort_key(name: str) -> List[Any]:
    """按数字大小比较名称中的数字片段（image2 排在 image10 之前）"""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", name)]


class DocxParser(BaseParser):
    """Word 文档解析器

    包含错误回退机制：完整解析失败时自动降级到简化方案。
    """

    name = "DocxParser"

    def __init__(self, settings: Optional[PipelineSettings] = None):
        settings = settings or PipelineSettings.from_env()
        super().__init__(debug=settings.debug)

    async def parse(self, file_path: str) -> ParseResult:
        """解析 Word 文档（不抛出异常）"""
        logger.info(f"开始解析 DOCX: {file_path}")

        try:
            content = await self.run_sync(self._read_file, file_path)
            return await self.run_sync(self._parse_content, file_path, content)
        except Exception as e:
            logger.error(f"DOCX 解析失败: {file_path}, 错误: {e}", exc_info=True)
            return self.failure("DOCX", e)

    @staticmethod
    def _read_file(file_path: str) -> bytes:
        with open(file_path, "rb") as f:
            return f.read()

    def _parse_content(self, file_path: str, content: bytes) -> ParseResult:
        doc = Document(BytesIO(content))

        try:
            text = self._parse_advanced(doc)
        except Exception as e:
            logger.warning(f"DOCX 完整解析失败: {e}，使用简化解析")
            text = self._parse_simple(doc)

        images = self._extract_images(doc)
        logger.info(f"DOCX 解析完成: {file_path}, 文本 {len(text)} 字符, 图像 {len(images)} 个")

        return ParseResult(
            success=True,
            text=text,
            metadata=self.extract_metadata(doc, file_path, len(content)),
            images=images,
        )

    def _parse_advanced(self, doc) -> str:
        """按正文顺序提取段落和表格"""
        parts = []

        for element in doc.element.body.iterchildren():
            if element.tag == qn("w:p"):
                text = Paragraph(element, doc).text.strip()
                if text:
                    parts.append(text)
            elif element.tag == qn("w:tbl"):
                markdown_table = self._table_to_markdown(Table(element, doc))
                if markdown_table:
                    parts.append(markdown_table)

        logger.debug(f"DOCX 内容序列共 {len(parts)} 个元素")
        return "\n\n".join(parts)

    @staticmethod
    def _parse_simple(doc) -> str:
        """简化回退方案：段落纯文本 + 表格行内拼接"""
        parts = [para.text.strip() for para in doc.paragraphs if para.text.strip()]

        for table in doc.tables:
            for row in table.rows:
                row_text = " | ".join(cell.text.strip() for cell in row.cells)
                if row_text.strip(" |"):
                    parts.append(row_text)

        return "\n\n".join(parts)

    @staticmethod
    def _table_to_markdown(table) -> str:
        """将 Word 表格转为 Markdown（第一行作为表头）

        换行符保留为 <br>，跳过全空行和列数不匹配的畸形行。
        """
        def clean(cell_text: str) -> str:
            return (cell_text or "").replace("\n", "<br>").strip()

        rows_data = [[clean(cell.text) for cell in row.cells] for row in table.rows]
        if not rows_data:
            return ""

        header = rows_data[0]
        if not header or all(not cell for cell in header):
            logger.debug("表格表头为空，跳过转换")
            return ""

        num_columns = len(header)
        lines = [
            "| " + " | ".join(header) + " |",
            "| " + " | ".join(["---"] * num_columns) + " |",
        ]

        skipped_rows = 0
        for row in rows_data[1:]:
            if len(row) != num_columns or all(not cell for cell in row):
                skipped_rows += 1
                continue
            lines.append("| " + " | ".join(row) + " |")

        if skipped_rows:
            logger.debug(f"表格转换跳过 {skipped_rows} 个畸形行")

        return "\n".join(lines)

    def _extract_images(self, doc) -> List[ExtractedImage]:
        """提取文档关系中的所有图像（单个图像失败不影响其他图像）"""
        images: List[ExtractedImage] = []

        image_parts = [rel.target_part for rel in doc.part.rels.values() if rel.reltype == RT.IMAGE and not rel.is_external]
        for part in sorted(image_parts, key=lambda p: natural_sort_key(str(p.partname))):
            try:
                blob = part.blob
                name = str(part.partname).rsplit("/", 1)[-1]
                mime_type = self.get_mime_type(name)
                encoded = base64.b64encode(blob).decode("ascii")
                images.append(ExtractedImage(
                    data=f"data:{mime_type};base64,{encoded}",
                    name=name,
                    page=0,
                    mime_type=mime_type,
                    size=len(blob),
                    kind=name.rsplit(".", 1)[-1].lower(),
                ))
            except Exception as e:
                logger.warning(f"提取图像失败: {part.partname}, 错误: {e}")

        return images

    def extract_metadata(self, doc, file_path: str, size_bytes: int) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "filename": self.extract_filename(file_path),
            "size_bytes": size_bytes or None,
        }

        try:
            props = doc.core_properties
            metadata.update({
                "title": props.title or None,
                "author": props.author or None,
                "subject": props.subject or None,
                "description": props.comments or None,
                "created": _isoformat(props.created),
                "modified": _isoformat(props.modified),
            })
        except Exception as e:
            logger.warning(f"读取文档属性失败: {e}")

        return metadata


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None
