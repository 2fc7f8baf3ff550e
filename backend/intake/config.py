from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_path: Path = Path.home() / "DocumentIntake"
    # Reject oversized payloads before any extraction work starts.
    max_upload_bytes: int = 10 * 1024 * 1024  # 10 MiB
    allowed_mime_types: list[str] = [
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/heic",
        "image/heif",
        "text/plain",
    ]
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"

    # Extraction cascade
    quality_min_chars: int = 50
    max_extracted_text_chars: int = 50_000
    subprocess_timeout_seconds: int = 30
    render_density: int = 200
    render_max_size: int = 1500

    # OCR
    ocr_languages: str = "deu+fra+ita+eng"
    ocr_psm_modes: list[int] = [3, 6]
    ocr_timeout_seconds: int = 20
    ocr_early_exit_chars: int = 100
    ocr_early_exit_confidence: float = 50.0

    # AI classification / vision fallback. Unset key means keyword-only classification.
    gemini_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.5-flash"
    gemini_vision_models: list[str] = ["gemini-2.0-flash", "gemini-1.5-flash", "gemini-1.5-pro"]
    ai_timeout_seconds: float = 30.0
    classify_max_chars: int = 10_000
    review_confidence_threshold: float = 0.7

    # Duplicate / lineage detection
    similarity_threshold: float = 0.8
    similarity_text_prefix: int = 5000
    similarity_max_results: int = 3
    # None keeps linking suggestion-only; a float auto-links the top match at or above it.
    auto_link_threshold: float | None = None

    @property
    def db_path(self) -> Path:
        return self.data_path / "db.sqlite"

    @property
    def files_dir(self) -> Path:
        return self.data_path / "files"

    model_config = {"env_prefix": "INTAKE_"}


settings = Settings()
