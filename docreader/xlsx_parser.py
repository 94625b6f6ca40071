"""Excel 工作簿解析器

基于 openpyxl 的 XLSX 解析实现：
- 每个工作表输出 "## Sheet: <名称>" 标题，随后是制表符分隔的单元格行（跳过空行）
- 图表工作表（chartsheet）不输出文本，但保留在 sheets 和元数据中
- 读取计算后的单元格值（data_only），日期格式化为 yyyy-mm-dd
- 工作簿属性元数据（标题、作者、创建/修改时间）

openpyxl 不提供嵌入图像的读取接口，images 固定为空列表。
"""

import datetime
import logging
import os
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook

from .base import BaseParser
from .config import PipelineSettings
from .models import ParseResult

logger = logging.getLogger(__name__)

SHEET_HEADING_PREFIX = "## Sheet:"


def _cell_value_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime.datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class XlsxParser(BaseParser):
    """Excel 工作簿解析器"""

    name = "ExcelParser"

    def __init__(self, settings: Optional[PipelineSettings] = None):
        settings = settings or PipelineSettings.from_env()
        super().__init__(debug=settings.debug)

    async def parse(self, file_path: str) -> ParseResult:
        """解析 Excel 工作簿（不抛出异常）"""
        logger.info(f"开始解析 Excel: {file_path}")

        try:
            return await self.run_sync(self._parse_file, file_path)
        except Exception as e:
            logger.error(f"Excel 解析失败: {file_path}, 错误: {e}", exc_info=True)
            return self.failure("Excel", e)

    def _parse_file(self, file_path: str) -> ParseResult:
        workbook = load_workbook(filename=file_path, read_only=True, data_only=True)
        try:
            sheet_names = list(workbook.sheetnames)
            text = self.extract_text(workbook)
            metadata = self.extract_metadata(file_path, workbook)
        finally:
            workbook.close()

        logger.info(f"Excel 解析完成: {file_path}, {len(sheet_names)} 个工作表, 文本 {len(text)} 字符")
        return ParseResult(
            success=True,
            text=text,
            metadata=metadata,
            images=[],
            sheets=sheet_names,
        )

    @staticmethod
    def extract_text(workbook) -> str:
        parts: List[str] = []

        for sheet_name in workbook.sheetnames:
            sheet = workbook[sheet_name]
            # 图表工作表没有单元格
            if not hasattr(sheet, "iter_rows"):
                logger.debug(f"跳过图表工作表: {sheet_name}")
                continue

            parts.append(f"{SHEET_HEADING_PREFIX} {sheet_name}\n")

            for row in sheet.iter_rows(values_only=True):
                cells = [_cell_value_to_str(value) for value in row]
                if any(cells):
                    parts.append("\t".join(cells) + "\n")

        return "".join(parts)

    def extract_metadata(self, file_path: str, workbook) -> Dict[str, Any]:
        props = workbook.properties
        return {
            "filename": self.extract_filename(file_path),
            "size_bytes": os.path.getsize(file_path) or None,
            "sheet_names": list(workbook.sheetnames),
            "sheet_count": len(workbook.sheetnames),
            "title": props.title or None,
            "author": props.creator or None,
            "creation_date": props.created.isoformat() if props.created else None,
            "modification_date": props.modified.isoformat() if props.modified else None,
        }

    def get_structure(self, content: str) -> List[Dict[str, Any]]:
        """在通用结构提取基础上标记工作表标题"""
        structure = super().get_structure(content)
        for item in structure:
            item["is_sheet_header"] = item["text"].startswith(SHEET_HEADING_PREFIX)
            if item["is_sheet_header"]:
                item["is_header"] = True
                item["level"] = 1
        return structure
