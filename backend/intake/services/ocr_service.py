"""
OCR stage of the extraction cascade.

Page rendering goes through poppler's ``pdftoppm`` into a per-call temporary
directory; recognition goes through Tesseract (``pytesseract``) with several
page-segmentation modes tried in order, stopping early on a good first pass.
"""
import io
import logging
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError
import pytesseract

from intake.config import Settings, settings as default_settings
from intake.exceptions import ExtractionError

logger = logging.getLogger("intake.ocr")


@dataclass(frozen=True)
class OcrResult:
    text: str
    confidence: float  # 0-100, Tesseract scale


class OcrEngine(Protocol):
    def recognize(self, image: bytes, languages: str, psm: int, timeout: int) -> OcrResult:
        ...


class TesseractEngine:
    def recognize(self, image: bytes, languages: str, psm: int, timeout: int) -> OcrResult:
        with Image.open(io.BytesIO(image)) as img:
            data = pytesseract.image_to_data(
                img,
                lang=languages,
                config=f"--oem 1 --psm {psm} -c preserve_interword_spaces=1",
                output_type=pytesseract.Output.DICT,
                timeout=timeout,
            )

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for idx, token in enumerate(data.get("text", [])):
            word = (token or "").strip()
            if not word:
                continue
            key = (int(data["block_num"][idx]), int(data["par_num"][idx]), int(data["line_num"][idx]))
            lines.setdefault(key, []).append(word)
            try:
                conf = float(data["conf"][idx])
            except (TypeError, ValueError):
                continue
            if conf >= 0:
                confidences.append(conf)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return OcrResult(text=text, confidence=confidence)


def render_pdf_page(
    content: bytes,
    page_number: int = 1,
    density: int = 200,
    max_size: int = 1500,
    timeout: int = 30,
) -> bytes:
    """Render one PDF page to PNG bytes. Temporary files never outlive the call."""
    with tempfile.TemporaryDirectory(prefix="intake-render-") as tmp:
        pdf_path = Path(tmp) / "input.pdf"
        out_prefix = Path(tmp) / "page"
        pdf_path.write_bytes(content)
        try:
            subprocess.run(
                [
                    "pdftoppm",
                    "-f", str(page_number),
                    "-l", str(page_number),
                    "-r", str(density),
                    "-scale-to", str(max_size),
                    "-singlefile",
                    "-png",
                    str(pdf_path),
                    str(out_prefix),
                ],
                check=True,
                capture_output=True,
                timeout=timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ExtractionError(f"PDF page rendering failed: {exc}") from exc

        image_path = out_prefix.with_suffix(".png")
        if not image_path.exists():
            raise ExtractionError("PDF page rendering produced no image")
        image = image_path.read_bytes()

    logger.info("Rendered PDF page %d to image (%d bytes)", page_number, len(image))
    return image


def preprocess_image(image: bytes) -> bytes:
    """Grayscale, sharpen and normalize; always returns PNG bytes."""
    try:
        with Image.open(io.BytesIO(image)) as img:
            img = ImageOps.exif_transpose(img)
            processed = ImageOps.autocontrast(img.convert("L").filter(ImageFilter.SHARPEN))
            out = io.BytesIO()
            processed.save(out, format="PNG")
    except (UnidentifiedImageError, OSError) as exc:
        raise ExtractionError(f"Unsupported image format: {exc}") from exc
    return out.getvalue()


class OcrService:
    def __init__(self, engine: OcrEngine | None = None, config: Settings | None = None):
        self.engine = engine or TesseractEngine()
        self.config = config or default_settings

    def image_for(self, content: bytes, mime_type: str) -> bytes:
        """Image bytes to recognize: the first page for PDFs, the upload itself otherwise."""
        if mime_type == "application/pdf":
            return render_pdf_page(
                content,
                page_number=1,
                density=self.config.render_density,
                max_size=self.config.render_max_size,
                timeout=self.config.subprocess_timeout_seconds,
            )
        return content

    def recognize(self, image: bytes) -> OcrResult:
        prepared = preprocess_image(image)
        modes = self.config.ocr_psm_modes
        best = OcrResult(text="", confidence=0.0)

        for index, psm in enumerate(modes):
            try:
                result = self.engine.recognize(
                    prepared,
                    languages=self.config.ocr_languages,
                    psm=psm,
                    timeout=self.config.ocr_timeout_seconds,
                )
            except Exception as exc:
                # Includes Tesseract timeouts; a failed mode is never retried.
                logger.warning("OCR with PSM %d failed: %s", psm, exc)
                continue

            text = result.text.strip()
            logger.info("PSM %d result: %d chars, confidence %.1f%%", psm, len(text), result.confidence)
            if len(text) > len(best.text) or (text and result.confidence > best.confidence):
                best = OcrResult(text=text, confidence=result.confidence)

            if (
                index == 0
                and len(text) > self.config.ocr_early_exit_chars
                and result.confidence > self.config.ocr_early_exit_confidence
            ):
                logger.info("Good result from PSM %d, skipping remaining modes", psm)
                break

        if not best.text:
            logger.warning("OCR returned empty text; document may be blurry or unreadable")
        return best
