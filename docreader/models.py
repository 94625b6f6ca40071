"""解析结果数据模型

定义解析流水线各阶段产出的结构化数据类型。
所有结果类型都带有 success 标志，组件边界不直接抛出可降级的错误。
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


# 版面分析的文档结构类型
STRUCTURED_DOCUMENT = "structured-document"
IMAGE_HEAVY_DOCUMENT = "image-heavy-document"
TEXT_DENSE_DOCUMENT = "text-dense-document"
MIXED_DOCUMENT = "mixed-document"


@dataclass(frozen=True)
class ExtractedImage:
    """从文档中提取的图像

    Attributes:
        data: base64 data URL（data:image/png;base64,...）
        name: 图像名称
        page: 所在页码（从 1 开始，DOCX 为 0）
        width: 宽度（像素）
        height: 高度（像素）
        mime_type: MIME 类型
        size: 原始字节数
        kind: 图像来源格式（png/jpeg 等）
    """
    data: str
    name: str
    page: int = 0
    width: int = 0
    height: int = 0
    mime_type: str = "image/png"
    size: int = 0
    kind: str = "unknown"


@dataclass
class VisionResult:
    """视觉模型调用结果（统一的成功/失败结果类型）

    Attributes:
        success: 调用是否成功
        text: 模型输出（extract_text 为识别文本，analyze_image 为分析结果）
        error: 失败原因
        source: 服务来源标识
        model: 使用的模型
    """
    success: bool
    text: str = ""
    error: Optional[str] = None
    source: Optional[str] = None
    model: Optional[str] = None

    @property
    def analysis(self) -> str:
        return self.text

    @classmethod
    def ok(cls, text: str, source: Optional[str] = None, model: Optional[str] = None) -> "VisionResult":
        return cls(success=True, text=text, source=source, model=model)

    @classmethod
    def fail(cls, error: str, source: Optional[str] = None) -> "VisionResult":
        return cls(success=False, error=error, source=source)


@dataclass
class TextBlock:
    """版面分析中的文本块（以空行分隔）"""
    text: str
    lines: List[str] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0


@dataclass
class TableCandidate:
    """版面分析阶段检测到的疑似表格行"""
    type: str
    start_line: int
    content: str
    end_line: int = -1


@dataclass
class PageLayout:
    """单页版面信息"""
    page_number: int
    text_blocks: List[TextBlock] = field(default_factory=list)
    images: List[Dict[str, Any]] = field(default_factory=list)
    tables: List[TableCandidate] = field(default_factory=list)
    total_text_length: int = 0
    estimated_layout_type: str = "balanced"


@dataclass
class LayoutAnalysis:
    """文档版面分析结果"""
    success: bool
    pages: List[PageLayout] = field(default_factory=list)
    total_pages: int = 0
    layout_summary: str = ""
    structure_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def total_tables(self) -> int:
        return sum(len(page.tables) for page in self.pages)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OcrResult:
    """整篇文档的 OCR 结果（逐页识别后拼接）"""
    success: bool
    text: str = ""
    source: Optional[str] = None
    model: Optional[str] = None
    pages_processed: int = 0
    error: Optional[str] = None


@dataclass
class PostProcessingResult:
    """OCR 后处理结果

    Attributes:
        success: 是否成功（后处理永不失败，失败时降级为基础清理）
        processed_text: 处理后的文本
        improvements: 检测到的改进项
        confidence: 置信度 [0, 1]，启发式估计值
        processing_steps: 执行过的处理步骤
    """
    success: bool
    processed_text: str = ""
    improvements: List[Dict[str, str]] = field(default_factory=list)
    confidence: float = 0.0
    processing_steps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractedTable:
    """抽取出的表格

    Attributes:
        type: 检测方式（markdown/tab-separated/column-aligned/header-separator/image-table）
        content: 原始匹配文本（图像表格为模型输出）
        start: 在全文中的起始偏移（图像表格为 -1）
        end: 在全文中的结束偏移（图像表格为 -1）
        rows: 行数
        source: 来源（text / image）
        extracted_content: 规范化后的 Markdown 表格
        confidence: 置信度（固定的启发式常量，非统计概率）
        page: 所在页码（仅图像表格）
    """
    type: str
    content: str
    start: int = -1
    end: int = -1
    rows: int = 0
    source: str = "text"
    extracted_content: Optional[str] = None
    confidence: float = 0.0
    page: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ParseResult:
    """解析结果

    每次解析生成一次，构造后不再修改，由调用方持有。
    失败时 success=False，error 为可读信息，details 为结构化详情。
    """
    success: bool
    text: str = ""
    pages: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    images: List[ExtractedImage] = field(default_factory=list)
    is_image_based: bool = False
    ocr_applied: bool = False
    ocr_source: Optional[str] = None
    layout_analysis: Optional[LayoutAnalysis] = None
    ocr_post_processing: Optional[PostProcessingResult] = None
    tables: List[ExtractedTable] = field(default_factory=list)
    table_count: int = 0
    sheets: List[str] = field(default_factory=list)
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: str, details: Optional[Dict[str, Any]] = None) -> "ParseResult":
        return cls(success=False, error=error, details=details)

    def to_dict(self) -> Dict[str, Any]:
        """转换为可 JSON 序列化的字典（工具调用响应载荷）"""
        return asdict(self)
