"""文档内容分析：根据提取结果生成澄清问题"""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

SUBSTANTIAL_TEXT_LENGTH = 500
LONG_TEXT_LENGTH = 5000

_TABLE_LINE_RE = re.compile(r"^\s*\|")
_LEGAL_TERMS_RE = re.compile(r"contract|agreement|clause|liability|indemnity|termination", re.I)


def generate_clarification_questions(text: Optional[str], images: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
    """根据文档长度、图像数量、表格和法律术语生成澄清问题

    Returns:
        问题列表，每项包含 id / question / type，选择题附带 options
    """
    safe_text = text or ""
    image_count = len(images) if images else 0
    text_length = len(safe_text)
    questions: List[Dict[str, Any]] = []

    if text_length > SUBSTANTIAL_TEXT_LENGTH:
        questions.append({
            "id": "scope",
            "question": "What specific sections or topics in this document are most relevant to your current task?",
            "type": "text",
        })

    if image_count > 0:
        questions.append({
            "id": "visual-elements",
            "question": (
                f"This document contains {image_count} image(s). "
                "Would you like to focus on the text content, or also analyze the visual elements?"
            ),
            "type": "choice",
            "options": ["Text only", "Images and text"],
        })

    if "\t" in safe_text or _TABLE_LINE_RE.match(safe_text):
        questions.append({
            "id": "tables",
            "question": "This document appears to contain tabular data. Would you like detailed analysis of the tables?",
            "type": "choice",
            "options": ["Yes", "No"],
        })

    if text_length > LONG_TEXT_LENGTH:
        questions.append({
            "id": "detail-level",
            "question": "This is a long document. Would you like a comprehensive analysis, or to focus on specific aspects?",
            "type": "choice",
            "options": ["Comprehensive", "Specific topics"],
        })

    if _LEGAL_TERMS_RE.search(safe_text):
        questions.append({
            "id": "legal-analysis",
            "question": (
                "This appears to be a legal document. "
                "Would you like me to identify key clauses, potential risks, or obligations?"
            ),
            "type": "choice",
            "options": ["Key clauses only", "Risks and obligations", "Full legal analysis", "Skip legal analysis"],
        })

    logger.info(f"生成 {len(questions)} 个澄清问题（文本 {text_length} 字符, 图像 {image_count} 个）")
    return questions
