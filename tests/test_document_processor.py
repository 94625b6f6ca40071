"""文档处理服务、文件类型检测与包级 API 测试"""

import pytest
from docx import Document

import docreader
from conftest import FakeVisionClient
from docreader import (
    DocxParser,
    PDFParser,
    UnsupportedFileTypeError,
    XlsxParser,
    create_parser,
    detect_file_type,
    generate_clarification_questions,
)
from docreader.base import BaseParser
from docreader.config import PipelineSettings
from docreader.document_processor import DocumentProcessor


@pytest.fixture
def docx_file(tmp_path):
    document = Document()
    document.add_heading("TERMS OF SERVICE", level=1)
    document.add_paragraph("This agreement governs use of the service.")
    path = tmp_path / "terms.docx"
    document.save(str(path))
    return str(path)


@pytest.fixture
def processor():
    return DocumentProcessor(FakeVisionClient(), settings=PipelineSettings())


class TestDetectFileType:

    @pytest.mark.parametrize("path,file_type", [
        ("a/report.PDF", "pdf"),
        ("letter.docx", "docx"),
        ("legacy.doc", "docx"),
        ("book.xlsx", "excel"),
        ("old.xls", None),
        ("notes.txt", None),
        ("README", None),
    ])
    def test_detect(self, path, file_type):
        info = detect_file_type(path)

        assert info.success is True
        assert info.file_type == file_type
        assert info.file_path == path


class TestDocumentProcessor:

    @pytest.mark.asyncio
    async def test_summary(self, processor, docx_file):
        response = await processor.process_document(docx_file, "summary")

        assert response["success"] is True
        assert "This agreement governs use of the service." in response["text"]
        assert response["images"] == []
        assert response["metadata"]["filename"] == "terms.docx"
        assert "structure" not in response

    @pytest.mark.asyncio
    async def test_indepth_adds_structure(self, processor, docx_file):
        response = await processor.process_document(docx_file, "indepth")

        assert response["structure"][0]["text"] == "TERMS OF SERVICE"
        assert response["structure"][0]["is_header"] is True

    @pytest.mark.asyncio
    async def test_unsupported_type(self, processor, tmp_path):
        response = await processor.process_document(str(tmp_path / "notes.txt"), "summary")

        assert response == {"success": False, "error": "No parser available for type None"}

    @pytest.mark.asyncio
    async def test_unknown_processing_type(self, processor, docx_file):
        response = await processor.process_document(docx_file, "translate")

        assert response == {"success": False, "error": "Unknown processing type translate"}

    @pytest.mark.asyncio
    async def test_parse_failure_is_reported(self, processor, tmp_path):
        response = await processor.process_document(str(tmp_path / "missing.xlsx"), "summary")

        assert response["success"] is False
        assert response["error"].startswith("Failed to parse Excel:")
        assert response["details"]["code"] == "ENOENT"

    def test_parsers_share_vision_client(self):
        vision = FakeVisionClient()
        processor = DocumentProcessor(vision, settings=PipelineSettings())

        pdf_parser = processor.get_parser_for_type("pdf")
        assert pdf_parser.vision_client is vision
        assert pdf_parser.table_extractor.vision_client is vision
        assert processor.get_parser_for_type(None) is None


class TestCreateParser:

    @pytest.mark.parametrize("ext,parser_type", [
        (".pdf", PDFParser),
        ("PDF", PDFParser),
        (".docx", DocxParser),
        (".doc", DocxParser),
        (".xlsx", XlsxParser),
    ])
    def test_supported(self, ext, parser_type):
        assert isinstance(create_parser(ext, vision_client=FakeVisionClient()), parser_type)

    def test_unsupported(self):
        with pytest.raises(UnsupportedFileTypeError) as exc_info:
            create_parser(".pptx")

        assert isinstance(exc_info.value, ValueError)
        assert ".pdf" in str(exc_info.value)

    def test_legacy_xls_rejected(self):
        """旧版二进制 .xls 在创建解析器时即被拒绝，提示支持的格式"""
        with pytest.raises(UnsupportedFileTypeError) as exc_info:
            create_parser(".xls", vision_client=FakeVisionClient())

        assert ".xls。" in str(exc_info.value)
        assert ".xlsx" in str(exc_info.value)

    def test_public_api(self):
        for name in docreader.__all__:
            assert hasattr(docreader, name)


class TestClarificationQuestions:

    def test_short_plain_text(self):
        assert generate_clarification_questions("Short note.") == []

    def test_empty_input(self):
        assert generate_clarification_questions(None) == []

    def test_all_question_types(self):
        text = "| Clause | Liability |\n" + "The contract terminates early. " * 200
        questions = generate_clarification_questions(text, images=[object(), object()])

        assert [question["id"] for question in questions] == [
            "scope", "visual-elements", "tables", "detail-level", "legal-analysis",
        ]
        assert "2 image(s)" in questions[1]["question"]

    def test_tab_separated_text_counts_as_table(self):
        ids = [question["id"] for question in generate_clarification_questions("a\tb")]
        assert ids == ["tables"]


class TestBaseParserHeuristics:

    @pytest.mark.parametrize("line", [
        "INTRODUCTION",
        "Summary:",
        "1.2 Scope",
        "IV. Results",
        "Annual Report",
        "Chapter 3 overview",
        "Appendix B",
    ])
    def test_headers(self, line):
        assert BaseParser.is_likely_header(line) is True

    def test_not_header(self):
        assert BaseParser.is_likely_header("this is an ordinary sentence.") is False

    def test_heading_level_from_indent(self):
        assert BaseParser.guess_heading_level("Title") == 1
        assert BaseParser.guess_heading_level("     Indented") == 2
        assert BaseParser.guess_heading_level(" " * 40 + "Deep") == 6

    def test_mime_type(self):
        assert BaseParser.get_mime_type("image1.png") == "image/png"
        assert BaseParser.get_mime_type("jpeg") == "image/jpeg"
        assert BaseParser.get_mime_type("file.unknown") == "image/jpeg"
        assert BaseParser.get_mime_type(None) == "image/jpeg"
