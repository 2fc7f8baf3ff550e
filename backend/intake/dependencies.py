from functools import lru_cache

from fastapi import Header, HTTPException

from intake.config import settings
from intake.services.classification_service import Classifier
from intake.services.extraction_service import ExtractionCascade
from intake.services.intake_service import IntakePipeline
from intake.services.llm_client import build_classification_client, build_vision_client
from intake.services.ocr_service import OcrService


async def require_user_id(x_user_id: str = Header(...)) -> str:
    # Authentication happens upstream; the caller supplies the user id.
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user id")
    return user_id


@lru_cache
def get_pipeline() -> IntakePipeline:
    extractor = ExtractionCascade(
        ocr=OcrService(config=settings),
        vision_client=build_vision_client(settings),
        config=settings,
    )
    classifier = Classifier(client=build_classification_client(settings), config=settings)
    return IntakePipeline(extractor=extractor, classifier=classifier, config=settings)
