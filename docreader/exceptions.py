"""异常定义

区分致命错误（无法继续解析）和可降级的组件错误。
可降级的错误（版面分析失败、单页识别失败、表格抽取失败）不通过异常传播，
而是由各组件记录日志后返回带 success 标志的结果对象。
"""

from typing import Optional


class DocReaderError(Exception):
    """docreader 异常基类"""

    code: str = "DOCREADER_ERROR"


class ParseError(DocReaderError):
    """文档解析致命错误（文件不可读、文档损坏等）

    Attributes:
        cause: 引发解析失败的原始异常
        code: 错误分类码
    """

    code = "PARSE_ERROR"

    def __init__(self, message: str, cause: Optional[BaseException] = None, code: Optional[str] = None):
        super().__init__(message)
        self.cause = cause
        if code:
            self.code = code


class VisionServiceError(DocReaderError):
    """视觉模型服务不可达或未配置

    在 initialize() 阶段抛出，由故障转移协调器捕获后尝试备用服务。
    """

    code = "VISION_UNAVAILABLE"


class UnsupportedFileTypeError(DocReaderError, ValueError):
    """不支持的文件格式"""

    code = "UNSUPPORTED_FILE_TYPE"


# 文件系统层面的错误统一视为不可恢复
FATAL_ERRORS = (
    FileNotFoundError,
    PermissionError,
    IsADirectoryError,
)
