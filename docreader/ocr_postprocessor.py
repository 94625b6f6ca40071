"""OCR 后处理器

对视觉模型识别出的文本做二次精修：
1. 启发式检测常见识别问题（断行连字符、连续空格、标题格式）
2. 结合版面分析结果构造精修提示词，请视觉模型清理文本
3. 模型调用失败时降级为基础清理（只合并多余空白，不替换任何字符）

检测结果只作为提示词中的提示信息，不决定是否执行精修。
"""

import logging
import re
from typing import Dict, List, Optional

from .models import LayoutAnalysis, PostProcessingResult
from .vision_client import VisionClient

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.85
MAX_CONFIDENCE = 0.95
BASIC_CLEANING_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.75

_BROKEN_WORD_RE = re.compile(r"\w+-\n\w+")
_MULTIPLE_SPACES_RE = re.compile(r"\s{3,}")
_HEADER_PATTERNS = (
    re.compile(r"^[A-Z][a-z]+\s+[A-Z][a-z]+$"),
    re.compile(r"^[A-Z][a-z]+\s+[A-Z][a-z]+\s+[A-Z][a-z]+$"),
    re.compile(r"^[\d.]+\s+[A-Z][a-z]+"),
)

# 基础清理：行内 3 个以上空白合并为一个空格，连续空行合并为一个空行
_INLINE_WHITESPACE_RE = re.compile(r"[^\S\n]{3,}")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")


class OcrPostProcessor:
    """OCR 后处理器

    Args:
        vision_client: 视觉模型服务；为 None 时只做基础清理
    """

    name = "OcrPostProcessor"

    def __init__(self, vision_client: Optional[VisionClient] = None):
        self.vision_client = vision_client

    async def process_ocr_text(
        self,
        text: str,
        layout_analysis: Optional[LayoutAnalysis] = None,
        use_ai: bool = True,
    ) -> PostProcessingResult:
        """后处理识别文本（不抛出异常）

        Args:
            text: 原始文本
            layout_analysis: 版面分析结果，用于补充提示词上下文
            use_ai: 是否调用视觉模型精修；False 时只做基础清理

        Returns:
            PostProcessingResult: 空输入返回置信度 0 的空结果
        """
        if not text:
            return PostProcessingResult(success=True, processed_text="", confidence=0.0)

        if not use_ai or self.vision_client is None:
            logger.debug("跳过模型精修，仅执行基础清理")
            return PostProcessingResult(
                success=True,
                processed_text=self.basic_text_cleaning(text),
                confidence=BASIC_CLEANING_CONFIDENCE,
                processing_steps=["Basic text cleaning"],
            )

        logger.info(f"开始模型精修 OCR 文本: {len(text)} 字符")
        detected_errors = self.detect_common_ocr_errors(text)
        prompt = self.generate_post_processing_prompt(text, detected_errors, layout_analysis)

        try:
            result = await self.vision_client.extract_text(text, prompt)
        except Exception as e:
            logger.error(f"模型精修调用异常: {e}")
            result = None

        if result is None or not result.success or not result.text:
            if result is not None and not result.success:
                logger.warning(f"模型精修失败，降级为基础清理: {result.error}")
            return PostProcessingResult(
                success=True,
                processed_text=self.basic_text_cleaning(text),
                confidence=FALLBACK_CONFIDENCE,
                processing_steps=["Initial OCR extraction", "Basic text cleaning"],
            )

        processed = result.text
        logger.info(f"模型精修完成: {len(text)} → {len(processed)} 字符")
        return PostProcessingResult(
            success=True,
            processed_text=processed,
            improvements=self.analyze_improvements(text, processed),
            confidence=self.calculate_confidence(text, processed, detected_errors),
            processing_steps=["Initial OCR extraction", "Common error detection", "AI-based refinement"],
        )

    @staticmethod
    def detect_common_ocr_errors(text: str) -> List[Dict]:
        """检测常见识别问题（只统计，不修改文本）"""
        errors = []

        broken_words = _BROKEN_WORD_RE.findall(text)
        if broken_words:
            errors.append({
                "type": "line-break",
                "description": "Words broken across lines with hyphens",
                "count": len(broken_words),
            })

        multiple_spaces = _MULTIPLE_SPACES_RE.findall(text)
        if multiple_spaces:
            errors.append({
                "type": "spacing-issue",
                "description": "Multiple consecutive spaces indicating potential OCR spacing errors",
                "count": len(multiple_spaces),
            })

        headers_found = 0
        for line in text.split("\n"):
            stripped = line.strip()
            if stripped and any(pattern.search(stripped) for pattern in _HEADER_PATTERNS):
                headers_found += 1
        if headers_found:
            errors.append({
                "type": "header-formatting",
                "description": "Potential headers with inconsistent capitalization",
                "count": headers_found,
            })

        return errors

    @staticmethod
    def generate_post_processing_prompt(
        text: str,
        detected_errors: List[Dict],
        layout_analysis: Optional[LayoutAnalysis] = None,
    ) -> str:
        if detected_errors:
            issues = "\n".join(f"- {error['description']} ({error['count']} occurrences)" for error in detected_errors)
        else:
            issues = "No specific errors detected"

        prompt = (
            "You are an expert document processing AI. Your task is to improve OCR output "
            "by fixing common errors and preserving structure.\n\n"
            f"Raw OCR text:\n{text}\n\n"
            f"Detected OCR issues:\n{issues}\n"
        )

        if layout_analysis is not None and layout_analysis.success:
            prompt += f"\n\nDocument structure context: {layout_analysis.structure_type}"
            if layout_analysis.pages:
                first_page = layout_analysis.pages[0]
                if first_page.text_blocks:
                    prompt += f"\nText blocks detected: {len(first_page.text_blocks)}"
                if first_page.tables:
                    prompt += f"\nTables detected: {len(first_page.tables)}"

        prompt += """

Please improve this text by:
1. Fixing obvious character substitutions only when clearly wrong (be conservative)
2. Reconstructing broken words across line breaks
3. Preserving document structure (headers, paragraphs, lists)
4. Correcting spacing and punctuation issues
5. Maintaining the original meaning while improving readability

IMPORTANT: Be very conservative with character substitutions. Only change characters that are OBVIOUSLY wrong. For example:
- Don't change '0' to 'O' unless it's clearly a letter (like in "Product 01" vs "PRODUCT O1")
- Don't change '1' to 'l' unless it's clearly a lowercase letter
- Preserve all numbers and special characters unless they're obviously wrong

Output only the improved text with proper formatting.
Do not add any commentary, explanations, or additional text beyond the processed content."""

        return prompt

    @staticmethod
    def analyze_improvements(original: str, processed: str) -> List[Dict[str, str]]:
        improvements = []

        if "-\n" in original and "-\n" not in processed:
            improvements.append({
                "type": "word-reconstruction",
                "description": "Reconstructed broken words across line breaks",
                "impact": "medium",
            })

        if "  " in original and "  " not in processed:
            improvements.append({
                "type": "spacing",
                "description": "Fixed multiple spaces",
                "impact": "low",
            })

        original_lines = original.count("\n")
        processed_lines = processed.count("\n")
        if abs(original_lines - processed_lines) <= 2:
            improvements.append({
                "type": "structure",
                "description": f"Preserved structure ({original_lines} → {processed_lines} lines)",
                "impact": "high",
            })

        return improvements

    @classmethod
    def calculate_confidence(
        cls,
        original: str,
        processed: str,
        detected_errors: Optional[List[Dict]] = None,
    ) -> float:
        """启发式置信度

        基础 0.85；长度变化小于 20% 加 0.05；精修前检测到问题加 0.10；上限 0.95。
        """
        if not original or not processed:
            return 0.8

        confidence = BASE_CONFIDENCE
        if abs(len(original) - len(processed)) < len(original) * 0.2:
            confidence += 0.05

        if detected_errors is None:
            detected_errors = cls.detect_common_ocr_errors(original)
        if detected_errors:
            confidence += 0.1

        return round(min(confidence, MAX_CONFIDENCE), 2)

    @staticmethod
    def basic_text_cleaning(text: str) -> str:
        """基础清理：只合并多余空白，不做任何字符替换"""
        if not text:
            return ""
        cleaned = _INLINE_WHITESPACE_RE.sub(" ", text)
        return _BLANK_LINES_RE.sub("\n\n", cleaned)
