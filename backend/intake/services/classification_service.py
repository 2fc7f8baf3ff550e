"""
Document classification.

The AI client is asked first; its answer is treated as untrusted input and
validated field by field. Any failure on that path (unconfigured client,
timeout, HTTP error, unparseable answer) drops to deterministic keyword rules.
"""
import json
import logging
import re
from dataclasses import dataclass, field

from intake.config import Settings, settings as default_settings
from intake.exceptions import ClassificationUnavailable
from intake.services.llm_client import ClassificationClient, NullClassificationClient

logger = logging.getLogger("intake.classification")

DOCUMENT_TYPES = [
    "passport",
    "birth_certificate",
    "marriage_certificate",
    "employment_contract",
    "rental_contract",
    "vaccination_record",
    "residence_permit",
    "bank_documents",
    "insurance_documents",
    "school_documents",
    "other",
]

VALID_TAGS = {
    "identity", "travel", "family", "work", "contract", "housing", "health", "legal",
    "residence", "financial", "education", "bank", "insurance", "school", "personal",
    "official", "other",
}

DEFAULT_TAGS = {
    "passport": ["identity", "travel", "official"],
    "birth_certificate": ["identity", "family", "official"],
    "marriage_certificate": ["family", "identity", "official"],
    "employment_contract": ["work", "contract"],
    "rental_contract": ["housing", "contract"],
    "vaccination_record": ["health"],
    "residence_permit": ["legal", "residence", "official"],
    "bank_documents": ["financial", "bank"],
    "insurance_documents": ["health", "insurance", "financial"],
    "school_documents": ["education", "school"],
    "other": ["other"],
}

LANGUAGES = ["de", "fr", "it", "en"]


@dataclass(frozen=True)
class KeywordRule:
    document_type: str
    base_confidence: float
    keywords: tuple[str, ...]
    filename_keywords: tuple[str, ...] = ()

    def filename_hits(self, file_name: str) -> int:
        candidates = self.filename_keywords or self.keywords
        return sum(1 for kw in candidates if kw in file_name)

    def content_hits(self, text: str) -> int:
        return sum(1 for kw in self.keywords if kw in text)


# Priority order: identity documents first; ties keep the earlier rule.
KEYWORD_RULES = [
    KeywordRule("passport", 0.85, (
        "passport", "reisepass", "passeport", "passaporto", "passport number", "passport no",
        "passeport numéro", "id card", "identity card", "ausweis", "identitätskarte",
        "nationality", "nationalité", "nationalität", "nazionalità", "date of birth",
        "date of expiry", "expiry date", "gültig bis", "mrz", "machine readable zone",
        "ausstellungsbehörde", "place of birth", "geburtsort", "lieu de naissance",
    )),
    KeywordRule("birth_certificate", 0.75, (
        "birth certificate", "geburtsurkunde", "acte de naissance", "atto di nascita",
        "certificat de naissance",
    )),
    KeywordRule("marriage_certificate", 0.75, (
        "marriage certificate", "heiratsurkunde", "acte de mariage", "atto di matrimonio",
        "certificat de mariage", "verheiratet",
    )),
    KeywordRule("employment_contract", 0.8, (
        "employment contract", "arbeitsvertrag", "contrat de travail", "contratto di lavoro",
        "employee", "employer", "work contract",
    )),
    KeywordRule("rental_contract", 0.8, (
        "rental contract", "mietvertrag", "bail", "contratto di affitto", "lease", "tenant",
        "landlord", "rental agreement",
    )),
    KeywordRule("vaccination_record", 0.7, (
        "vaccination", "impfung", "vaccino", "vaccine", "immunization", "vaccination card",
        "impfpass",
    )),
    KeywordRule("residence_permit", 0.85, (
        "residence permit", "aufenthaltstitel", "permis de séjour", "permesso di soggiorno",
        "permit b", "permit l", "permit c", "niederlassungsbewilligung",
    )),
    KeywordRule("bank_documents", 0.75, (
        "bank", "bank account", "bankkonto", "compte bancaire", "conto bancario",
        "account statement", "kontoauszug", "relevé de compte", "bank statement",
    )),
    KeywordRule("insurance_documents", 0.75, (
        "insurance", "versicherung", "assurance", "assicurazione", "health insurance",
        "krankenversicherung", "assurance maladie", "haftpflichtversicherung",
    )),
    KeywordRule(
        "school_documents",
        0.9,
        (
            "school", "schule", "école", "scuola", "education", "bildung", "schulanmeldung",
            "inscription scolaire", "school registration", "diploma", "zeugnis",
            "kindergarten", "kita", "anmeldung", "schüler", "report card",
            "immatrikulation", "iscrizione scolastica",
        ),
        filename_keywords=("anmeldung", "kindergarten", "schule", "schulanmeldung", "school", "education", "kita"),
    ),
]

_FUNCTION_WORDS = {
    "de": re.compile(r"\b(der|die|das|und|ist|sind|für|mit|von|zu)\b"),
    "fr": re.compile(r"\b(le|la|les|et|est|sont|pour|avec|de|à)\b"),
    "it": re.compile(r"\b(il|la|gli|è|sono|per|con|di|del|che)\b"),
    "en": re.compile(r"\b(the|and|is|are|of|to|for|with|this|that)\b"),
}

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def detect_language(text: str) -> str:
    """Most function-word hits wins; ties keep de, fr, it, en order; no signal is English."""
    lowered = (text or "").lower()
    best, best_hits = "en", 0
    for language, pattern in _FUNCTION_WORDS.items():
        hits = len(pattern.findall(lowered))
        if hits > best_hits:
            best, best_hits = language, hits
    return best


@dataclass
class ClassificationResult:
    document_type: str
    confidence: float
    tags: list[str]
    extracted_fields: dict = field(default_factory=dict)
    language: str = "en"
    requires_review: bool = True
    source: str = "keywords"


class Classifier:
    def __init__(self, client: ClassificationClient | None = None, config: Settings | None = None):
        self.client = client or NullClassificationClient()
        self.config = config or default_settings

    def classify(self, text: str, file_name: str) -> ClassificationResult:
        try:
            result = self._classify_with_ai(text, file_name)
            logger.info(
                "AI classification: %s (confidence %.2f, tags %s)",
                result.document_type, result.confidence, ", ".join(result.tags),
            )
            return result
        except ClassificationUnavailable as exc:
            logger.warning("AI classification unavailable, using keyword fallback: %s", exc)

        result = self.classify_with_keywords(text, file_name)
        logger.info("Keyword fallback: %s (confidence %.2f)", result.document_type, result.confidence)
        return result

    def build_prompt(self, text: str, file_name: str) -> str:
        limit = self.config.classify_max_chars
        body = text[:limit] if text else "No text extracted from document"
        truncated = "\n... (text truncated)" if text and len(text) > limit else ""
        tag_list = ", ".join(sorted(VALID_TAGS))
        type_list = ", ".join(DOCUMENT_TYPES)
        return (
            "You classify Swiss administrative documents from their file name and content.\n"
            "The file name is often the strongest clue (e.g. Mietvertrag means rental_contract, "
            "Anmeldung Kindergarten means school_documents, Arbeitsvertrag means employment_contract).\n\n"
            f"Allowed document_type values: {type_list}.\n"
            f"Allowed tags: {tag_list}.\n\n"
            "Return ONLY a JSON object with the keys document_type, confidence (0.0-1.0), tags, "
            "extracted_fields (name, date_of_birth, passport_number, expiry_date, address, "
            "document_date where present), language (de, fr, it or en) and requires_review.\n\n"
            f"{file_name}\n\n{body}{truncated}"
        )

    def _classify_with_ai(self, text: str, file_name: str) -> ClassificationResult:
        if not self.client.configured:
            raise ClassificationUnavailable("AI classification service is not configured")

        raw = self.client.generate(self.build_prompt(text, file_name))
        match = _JSON_OBJECT.search(raw or "")
        if not match:
            raise ClassificationUnavailable("AI response contained no JSON object")
        try:
            data = json.loads(match.group(0))
        except ValueError as exc:
            raise ClassificationUnavailable(f"AI response JSON could not be parsed: {exc}") from exc
        if not isinstance(data, dict):
            raise ClassificationUnavailable("AI response JSON is not an object")
        return self._validate(data, text)

    def _validate(self, data: dict, text: str) -> ClassificationResult:
        document_type = data.get("document_type")
        if document_type not in DOCUMENT_TYPES:
            document_type = "other"

        raw_tags = data.get("tags") if isinstance(data.get("tags"), list) else []
        tags = list(dict.fromkeys(t for t in raw_tags if isinstance(t, str) and t in VALID_TAGS))
        if not tags:
            tags = list(DEFAULT_TAGS[document_type])

        confidence = data.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.5
        confidence = min(1.0, max(0.0, float(confidence)))

        language = data.get("language")
        if language not in LANGUAGES:
            language = detect_language(text)

        fields = data.get("extracted_fields")
        if not isinstance(fields, dict):
            fields = {}

        requires_review = data.get("requires_review") is not False
        if confidence < self.config.review_confidence_threshold:
            requires_review = True

        return ClassificationResult(
            document_type=document_type,
            confidence=confidence,
            tags=tags,
            extracted_fields=fields,
            language=language,
            requires_review=requires_review,
            source="ai",
        )

    def classify_with_keywords(self, text: str, file_name: str) -> ClassificationResult:
        name = (file_name or "").lower()
        content = (text or "").lower()

        best_type, best_confidence = "other", 0.3
        for rule in KEYWORD_RULES:
            filename_hits = rule.filename_hits(name)
            total_hits = filename_hits + rule.content_hits(content)
            if total_hits == 0:
                continue
            boost = 0.3 if filename_hits else 0.0
            confidence = min(0.95, rule.base_confidence + boost + 0.05 * total_hits)
            if confidence > best_confidence:
                best_type, best_confidence = rule.document_type, confidence

        return ClassificationResult(
            document_type=best_type,
            confidence=round(best_confidence, 4),
            tags=list(DEFAULT_TAGS[best_type]),
            extracted_fields={},
            language=detect_language(text),
            requires_review=best_confidence < self.config.review_confidence_threshold,
            source="keywords",
        )
