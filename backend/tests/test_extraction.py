import pytest

from intake.config import settings
from intake.exceptions import ExtractionError
from intake.services.extraction_service import (
    ExtractionCascade,
    ExtractionStrategy,
    OcrStrategy,
    PdfTextStrategy,
    StrategyOutput,
    meaningful_length,
    resolve_mime_type,
)
from intake.services.ocr_service import OcrResult, OcrService, preprocess_image

from tests.fakes import FakeOcrEngine, FakeVisionClient, make_png

LONG_TEXT = "Residence permit B for Anna Muller, valid until 2030, issued in Zurich by the migration office."


class StaticStrategy(ExtractionStrategy):
    def __init__(self, name, text="", error=None):
        self.name = name
        self.text = text
        self.error = error
        self.called = False

    def applies_to(self, mime_type):
        return True

    def extract(self, content, mime_type):
        self.called = True
        if self.error:
            raise self.error
        return StrategyOutput(text=self.text)


def _cascade(engine=None, vision=None):
    ocr = OcrService(engine=engine or FakeOcrEngine(), config=settings)
    return ExtractionCascade(ocr=ocr, vision_client=vision, config=settings)


class TestHelpers:
    def test_meaningful_length_ignores_whitespace(self):
        assert meaningful_length(" a b\n\tc ") == 3
        assert meaningful_length(None) == 0

    def test_resolve_mime_type(self):
        assert resolve_mime_type("application/pdf", "x.bin") == "application/pdf"
        assert resolve_mime_type("application/octet-stream", "scan.pdf") == "application/pdf"
        assert resolve_mime_type(None, "photo.png") == "image/png"
        assert resolve_mime_type("image/jpg", "photo.jpg") == "image/jpeg"
        assert resolve_mime_type("text/plain; charset=utf-8", "a.txt") == "text/plain"


class TestCascadeOrdering:
    def test_stops_once_quality_is_met(self):
        first = StaticStrategy("first", text=LONG_TEXT)
        second = StaticStrategy("second", text=LONG_TEXT + " more")
        result = ExtractionCascade(strategies=[first, second], config=settings).extract(b"x", "text/plain", "a.txt")

        assert result.quality_met is True
        assert result.source_strategy == "first"
        assert second.called is False

    def test_failing_strategy_falls_through(self):
        broken = StaticStrategy("broken", error=ExtractionError("boom"))
        working = StaticStrategy("working", text=LONG_TEXT)
        result = ExtractionCascade(strategies=[broken, working], config=settings).extract(b"x", "text/plain", "a.txt")

        assert result.text == LONG_TEXT
        assert result.attempts[0]["strategy"] == "broken"
        assert "boom" in result.attempts[0]["error"]

    def test_everything_fails(self):
        strategies = [StaticStrategy("a", error=RuntimeError("x")), StaticStrategy("b", error=OSError("y"))]
        result = ExtractionCascade(strategies=strategies, config=settings).extract(b"x", "text/plain", "a.txt")
        assert result.text == ""
        assert result.quality_met is False
        assert result.source_strategy == "none"


class TestPlainText:
    def test_plain_text(self):
        result = _cascade().extract(LONG_TEXT.encode(), "text/plain", "permit.txt")
        assert result.text == LONG_TEXT
        assert result.source_strategy == "plain_text"
        assert result.quality_met is True

    def test_binary_garbage_is_not_text(self):
        result = _cascade().extract(bytes(range(0, 32)) * 10, "text/plain", "junk.txt")
        assert result.text == ""
        assert result.quality_met is False


class TestImageOcr:
    def test_good_first_mode_exits_early(self):
        engine = FakeOcrEngine({3: OcrResult(LONG_TEXT + " " + LONG_TEXT, 91.0)})
        result = _cascade(engine).extract(make_png(), "image/png", "permit.png")

        assert engine.calls == [3]
        assert result.source_strategy == "ocr"
        assert result.quality_met is True

    def test_weak_first_mode_tries_next(self):
        engine = FakeOcrEngine({3: OcrResult("Res permit", 40.0), 6: OcrResult(LONG_TEXT, 80.0)})
        result = _cascade(engine).extract(make_png(), "image/png", "permit.png")

        assert engine.calls == [3, 6]
        assert result.text == LONG_TEXT

    def test_failing_mode_is_skipped(self):
        engine = FakeOcrEngine({6: OcrResult(LONG_TEXT, 70.0)}, fail_modes=(3,))
        result = _cascade(engine).extract(make_png(), "image/png", "permit.png")
        assert result.text == LONG_TEXT

    def test_unreadable_image_never_raises(self):
        result = _cascade().extract(b"not an image", "image/jpeg", "broken.jpg")
        assert result.text == ""
        assert result.quality_met is False


class TestVisionFallback:
    def test_vision_used_when_ocr_is_weak(self):
        engine = FakeOcrEngine({3: OcrResult("blurry", 20.0)})
        vision = FakeVisionClient(LONG_TEXT)
        result = _cascade(engine, vision).extract(make_png(), "image/png", "passport.png")

        assert vision.calls == 1
        assert result.text == LONG_TEXT
        assert result.source_strategy == "vision"

    def test_vision_skipped_when_ocr_is_good(self):
        engine = FakeOcrEngine({3: OcrResult(LONG_TEXT * 2, 95.0)})
        vision = FakeVisionClient("should not be used")
        _cascade(engine, vision).extract(make_png(), "image/png", "passport.png")
        assert vision.calls == 0

    def test_shorter_vision_result_is_ignored(self):
        engine = FakeOcrEngine({3: OcrResult("some ocr text here", 30.0)})
        vision = FakeVisionClient("tiny")
        result = _cascade(engine, vision).extract(make_png(), "image/png", "passport.png")
        assert result.text == "some ocr text here"

    def test_without_vision_client_ocr_result_stands(self):
        engine = FakeOcrEngine({3: OcrResult("short", 30.0)})
        result = _cascade(engine).extract(make_png(), "image/png", "passport.png")
        assert result.text == "short"
        assert result.quality_met is False


class TestMergeRules:
    def test_longer_ocr_replaces_native(self):
        assert OcrStrategy(ocr=None).merge("abc", "abcdef") == "abcdef"

    def test_shorter_ocr_is_appended(self):
        assert OcrStrategy(ocr=None).merge("native text", "ocr") == "native text\n\nocr"

    def test_empty_ocr_keeps_native(self):
        assert OcrStrategy(ocr=None).merge("native text", "") == "native text"


class TestPdfText:
    def test_longer_of_pdftotext_and_pypdf_wins(self, monkeypatch):
        monkeypatch.setattr(PdfTextStrategy, "_pdftotext", lambda self, content: "short")
        monkeypatch.setattr(PdfTextStrategy, "_pypdf", lambda self, content: (LONG_TEXT, 3))

        output = PdfTextStrategy(settings).extract(b"%PDF-1.4", "application/pdf")
        assert output.text == LONG_TEXT
        assert output.page_count == 3

    def test_pdftotext_kept_when_good(self, monkeypatch):
        monkeypatch.setattr(PdfTextStrategy, "_pdftotext", lambda self, content: LONG_TEXT)
        monkeypatch.setattr(PdfTextStrategy, "_pypdf", lambda self, content: (LONG_TEXT + " extra words", 2))

        output = PdfTextStrategy(settings).extract(b"%PDF-1.4", "application/pdf")
        assert output.text == LONG_TEXT
        assert output.page_count == 2

    def test_native_pdf_skips_ocr(self, monkeypatch):
        monkeypatch.setattr(PdfTextStrategy, "_pdftotext", lambda self, content: LONG_TEXT)
        monkeypatch.setattr(PdfTextStrategy, "_pypdf", lambda self, content: ("", 1))
        engine = FakeOcrEngine()

        result = _cascade(engine).extract(b"%PDF-1.4", "application/pdf", "permit.pdf")
        assert result.source_strategy == "pdf_text"
        assert result.page_count == 1
        assert engine.calls == []

    def test_broken_pdf_never_raises(self):
        result = _cascade().extract(b"%PDF-1.4 garbage", "application/pdf", "broken.pdf")
        assert result.quality_met is False


class TestPreprocess:
    def test_output_is_grayscale_png(self):
        from io import BytesIO
        from PIL import Image

        out = preprocess_image(make_png())
        with Image.open(BytesIO(out)) as img:
            assert img.format == "PNG"
            assert img.mode == "L"

    def test_rejects_non_image(self):
        with pytest.raises(ExtractionError):
            preprocess_image(b"plain bytes")
