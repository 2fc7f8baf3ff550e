"""
Text extraction cascade.

Strategies are tried cheapest first: native text, then OCR of the first page,
then the vision AI fallback. Each strategy reports text; the engine merges it
into the running result and stops as soon as the quality threshold is met.
No strategy failure ever leaves this module as an exception.
"""
import io
import logging
import mimetypes
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from pypdf import PdfReader

from intake.config import Settings, settings as default_settings
from intake.exceptions import ExtractionError
from intake.services.llm_client import VisionClient
from intake.services.ocr_service import OcrService

logger = logging.getLogger("intake.extraction")


def meaningful_length(text: str | None) -> int:
    if not text:
        return 0
    return sum(1 for c in text if not c.isspace())


def resolve_mime_type(declared: str | None, file_name: str) -> str:
    """Prefer the declared type; fall back to the file extension for generic declarations."""
    declared = (declared or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return "image/jpeg" if declared == "image/jpg" else declared
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or "application/octet-stream"


@dataclass
class StrategyOutput:
    text: str
    page_count: int | None = None


@dataclass
class ExtractionResult:
    text: str
    page_count: int | None
    source_strategy: str
    quality_met: bool
    attempts: list[dict] = field(default_factory=list)

    def to_metadata(self) -> dict:
        return {
            "pages": self.page_count,
            "source": self.source_strategy,
            "has_text": self.quality_met,
            "char_count": len(self.text),
            "attempts": self.attempts,
        }


class ExtractionStrategy:
    name = "base"

    def applies_to(self, mime_type: str) -> bool:
        raise NotImplementedError

    def extract(self, content: bytes, mime_type: str) -> StrategyOutput:
        raise NotImplementedError

    def merge(self, current: str, candidate: str) -> str:
        """Default: keep whichever carries more non-whitespace text."""
        return candidate if meaningful_length(candidate) > meaningful_length(current) else current


class PlainTextStrategy(ExtractionStrategy):
    name = "plain_text"

    def applies_to(self, mime_type: str) -> bool:
        return mime_type.startswith("text/")

    def extract(self, content: bytes, mime_type: str) -> StrategyOutput:
        text = content.decode("utf-8", errors="ignore")
        # Reject if it looks like binary garbage (low printable ratio)
        printable = sum(1 for c in text if c.isprintable() or c.isspace())
        if text and printable / len(text) <= 0.85:
            raise ExtractionError("Content does not look like text")
        return StrategyOutput(text=text.strip())


class PdfTextStrategy(ExtractionStrategy):
    """pdftotext first; pypdf as a second opinion, the longer result wins."""

    name = "pdf_text"

    def __init__(self, config: Settings):
        self.config = config

    def applies_to(self, mime_type: str) -> bool:
        return mime_type == "application/pdf"

    def _pdftotext(self, content: bytes) -> str:
        with tempfile.TemporaryDirectory(prefix="intake-pdftotext-") as tmp:
            pdf_path = Path(tmp) / "input.pdf"
            pdf_path.write_bytes(content)
            completed = subprocess.run(
                ["pdftotext", "-enc", "UTF-8", str(pdf_path), "-"],
                check=True,
                capture_output=True,
                timeout=self.config.subprocess_timeout_seconds,
            )
        return completed.stdout.decode("utf-8", errors="replace").strip()

    def _pypdf(self, content: bytes) -> tuple[str, int]:
        reader = PdfReader(io.BytesIO(content))
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n".join(pages).strip(), len(reader.pages)

    def extract(self, content: bytes, mime_type: str) -> StrategyOutput:
        text = ""
        page_count = None
        try:
            text = self._pdftotext(content)
            logger.info("pdftotext extracted %d characters", len(text))
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("pdftotext failed, trying pypdf: %s", exc)

        try:
            parsed, page_count = self._pypdf(content)
            logger.info("pypdf extracted %d characters from %d pages", len(parsed), page_count)
            if meaningful_length(text) < self.config.quality_min_chars and len(parsed) > len(text):
                text = parsed
        except Exception as exc:
            logger.warning("pypdf parsing failed: %s", exc)

        return StrategyOutput(text=text, page_count=page_count)


class OcrStrategy(ExtractionStrategy):
    name = "ocr"

    def __init__(self, ocr: OcrService):
        self.ocr = ocr

    def applies_to(self, mime_type: str) -> bool:
        return mime_type == "application/pdf" or mime_type.startswith("image/")

    def extract(self, content: bytes, mime_type: str) -> StrategyOutput:
        image = self.ocr.image_for(content, mime_type)
        return StrategyOutput(text=self.ocr.recognize(image).text)

    def merge(self, current: str, candidate: str) -> str:
        if not candidate:
            return current
        if len(candidate) > len(current):
            return candidate
        return f"{current}\n\n{candidate}"


class VisionStrategy(ExtractionStrategy):
    name = "vision"

    def __init__(self, client: VisionClient, ocr: OcrService):
        self.client = client
        self.ocr = ocr

    def applies_to(self, mime_type: str) -> bool:
        return mime_type == "application/pdf" or mime_type.startswith("image/")

    def extract(self, content: bytes, mime_type: str) -> StrategyOutput:
        image = self.ocr.image_for(content, mime_type)
        image_mime = "image/png" if mime_type == "application/pdf" else mime_type
        return StrategyOutput(text=(self.client.extract_text(image, image_mime) or "").strip())


class ExtractionCascade:
    def __init__(
        self,
        strategies: list[ExtractionStrategy] | None = None,
        ocr: OcrService | None = None,
        vision_client: VisionClient | None = None,
        config: Settings | None = None,
    ):
        self.config = config or default_settings
        if strategies is None:
            ocr = ocr or OcrService(config=self.config)
            strategies = [PlainTextStrategy(), PdfTextStrategy(self.config), OcrStrategy(ocr)]
            if vision_client is not None:
                strategies.append(VisionStrategy(vision_client, ocr))
        self.strategies = strategies

    def quality_met(self, text: str) -> bool:
        return meaningful_length(text) >= self.config.quality_min_chars

    def extract(self, content: bytes, mime_type: str | None, file_name: str) -> ExtractionResult:
        mime = resolve_mime_type(mime_type, file_name)
        text = ""
        page_count = None
        source = "none"
        attempts: list[dict] = []

        for strategy in self.strategies:
            if not strategy.applies_to(mime):
                continue
            if self.quality_met(text):
                break

            try:
                output = strategy.extract(content, mime)
            except Exception as exc:
                logger.warning("Extraction strategy %s failed for %s: %s", strategy.name, file_name, exc)
                attempts.append({"strategy": strategy.name, "chars": 0, "error": str(exc)})
                continue

            attempts.append({"strategy": strategy.name, "chars": meaningful_length(output.text)})
            if output.page_count is not None:
                page_count = output.page_count

            merged = strategy.merge(text, output.text)
            if merged != text:
                text = merged
                source = strategy.name

        met = self.quality_met(text)
        if not text:
            logger.warning("All extraction strategies failed for %s; continuing with empty text", file_name)
        else:
            logger.info("Extracted %d characters from %s via %s (quality met: %s)", len(text), file_name, source, met)

        return ExtractionResult(
            text=text,
            page_count=page_count,
            source_strategy=source,
            quality_met=met,
            attempts=attempts,
        )
