"""文件类型检测（按扩展名查表）"""

import os
from dataclasses import dataclass
from typing import Optional

FILE_TYPE_PDF = "pdf"
FILE_TYPE_DOCX = "docx"
FILE_TYPE_EXCEL = "excel"

# 扩展名 → 文档类型（旧版 .doc 按 docx 处理；openpyxl 读不了二进制 .xls，不在表中）
EXTENSION_TYPES = {
    "pdf": FILE_TYPE_PDF,
    "docx": FILE_TYPE_DOCX,
    "doc": FILE_TYPE_DOCX,
    "xlsx": FILE_TYPE_EXCEL,
}


@dataclass(frozen=True)
class FileTypeInfo:
    """文件类型检测结果

    Attributes:
        success: 检测本身总是成功，file_type 为 None 表示不支持的格式
        file_type: pdf / docx / excel
        file_path: 原始路径
        extension: 小写扩展名（不含点）
    """
    success: bool
    file_type: Optional[str]
    file_path: str
    extension: str


def get_extension(file_path: str) -> str:
    return os.path.splitext(file_path)[1].lower().lstrip(".")


def detect_file_type(file_path: str) -> FileTypeInfo:
    extension = get_extension(file_path)
    return FileTypeInfo(
        success=True,
        file_type=EXTENSION_TYPES.get(extension),
        file_path=file_path,
        extension=extension,
    )
