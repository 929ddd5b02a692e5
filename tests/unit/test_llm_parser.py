"""
Unit tests for the LLM extractor's prompt building and response parsing.
"""
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from pipeline.errors import ExternalServiceFailure
from pipeline.llm_parser import LLMExtractor, build_prompt, sniff_image_type

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class _FakeCompletions:
    """Stands in for client.chat.completions, replaying canned replies."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _extractor(replies, max_attempts=3):
    extractor = LLMExtractor(model="test-model", max_attempts=max_attempts)
    completions = _FakeCompletions(replies)
    extractor._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return extractor, completions


@pytest.mark.unit
class TestParseJsonResponse:

    def test_plain_object(self):
        assert LLMExtractor._parse_json_response('{"poNumber": "PO-1"}') == {"poNumber": "PO-1"}

    def test_code_fences_and_chatter(self):
        raw = 'Here you go:\n```json\n{"poNumber": "PO-1", "lineItems": []}\n```'
        assert LLMExtractor._parse_json_response(raw) == {"poNumber": "PO-1", "lineItems": []}

    def test_trailing_commas_are_repaired(self):
        raw = '{"items": [{"quantity": 1,},], "currency": "AED",}'
        assert LLMExtractor._parse_json_response(raw) == {"items": [{"quantity": 1}], "currency": "AED"}

    def test_no_object(self):
        assert LLMExtractor._parse_json_response("I could not read the document.") is None

    def test_unrepairable(self):
        assert LLMExtractor._parse_json_response('{"poNumber": PO-1}') is None


@pytest.mark.unit
class TestPrompt:

    def test_schema_skeleton_is_included(self):
        prompt = build_prompt("po", "PURCHASE ORDER PO-1")
        assert '"poNumber"' in prompt
        assert '"lineItems"' in prompt
        assert "PURCHASE ORDER PO-1" in prompt

    def test_image_prompt(self):
        prompt = build_prompt("inquiry")
        assert '"inquiryNumber"' in prompt
        assert "attached as an image" in prompt

    def test_unknown_schema(self):
        with pytest.raises(ValueError):
            build_prompt("invoice")

    def test_sniff_image_type(self):
        assert sniff_image_type(PNG) == "image/png"
        assert sniff_image_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
        assert sniff_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
        assert sniff_image_type(b"RIFF\x00\x00\x00\x00WAVEfmt ") is None
        assert sniff_image_type(b"%PDF-1.4") is None


@pytest.mark.unit
class TestExtract:

    def test_image_is_sent_as_data_url(self):
        extractor, completions = _extractor(['{"inquiryNumber": "PR-1"}'])
        raw = extractor.extract(PNG, "inquiry", filename="rfq.png")

        assert raw.data == {"inquiryNumber": "PR-1"}
        assert raw.text == ""
        assert raw.model == "test-model"
        content = completions.calls[0]["messages"][0]["content"]
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_retries_until_json(self):
        extractor, completions = _extractor(["no json here", '{"poNumber": "PO-1"}'])
        raw = extractor.extract(PNG, "po")

        assert raw.data == {"poNumber": "PO-1"}
        assert raw.attempts == 2
        assert len(completions.calls) == 2

    def test_gives_up_after_max_attempts(self):
        extractor, completions = _extractor(
            [OpenAIError("connection refused"), "still nothing"], max_attempts=2,
        )
        with pytest.raises(ExternalServiceFailure):
            extractor.extract(PNG, "po")
        assert len(completions.calls) == 2

    def test_unreadable_pdf(self):
        extractor, completions = _extractor([])
        with pytest.raises(ExternalServiceFailure):
            extractor.extract(b"%PDF-1.4 this is not really a pdf", "po", filename="broken.pdf")
        assert completions.calls == []


@pytest.mark.unit
class TestConfirmDocumentType:

    def test_image_is_checked_by_the_model(self):
        extractor, completions = _extractor(["YES"])
        assert extractor.confirm_document_type(PNG, "po", filename="po.png") is True

        prompt = completions.calls[0]["messages"][0]["content"][0]["text"]
        assert "Purchase Order" in prompt
        assert "YES" in prompt

    def test_negative_answer(self):
        extractor, _ = _extractor(["No, this is a tax invoice."])
        assert extractor.confirm_document_type(PNG, "po") is False

    def test_unclear_answer_is_retried(self):
        extractor, completions = _extractor(["I am not sure", "Yes."])
        assert extractor.confirm_document_type(PNG, "quotation") is True
        assert len(completions.calls) == 2

    def test_pdf_without_keywords_never_reaches_the_model(self, monkeypatch):
        text = "Weekly cafeteria menu: Monday lentil soup, Tuesday grilled fish, Wednesday rice."
        monkeypatch.setattr("pipeline.llm_parser.pdf_text", lambda document: (text, 1))
        extractor, completions = _extractor([])

        assert extractor.confirm_document_type(b"%PDF-1.4", "po", filename="menu.pdf") is False
        assert completions.calls == []

    def test_pdf_text_is_truncated_for_the_check(self, monkeypatch):
        text = "PURCHASE ORDER PO-1 " + "x" * 5000
        monkeypatch.setattr("pipeline.llm_parser.pdf_text", lambda document: (text, 2))
        extractor, completions = _extractor(["YES"])

        assert extractor.confirm_document_type(b"%PDF-1.4", "po") is True
        prompt = completions.calls[0]["messages"][0]["content"]
        assert "PURCHASE ORDER PO-1" in prompt
        assert "x" * 2000 not in prompt

    def test_model_failure_raises(self):
        extractor, _ = _extractor([OpenAIError("timeout")], max_attempts=1)
        with pytest.raises(ExternalServiceFailure):
            extractor.confirm_document_type(PNG, "po")
