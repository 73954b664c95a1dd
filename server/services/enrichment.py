"""Derived-metadata enrichment through an OpenAI chat model (LangChain).

Without an API key the client answers with a filename-only analysis
(``source="filename"``) so a fresh install still produces usable records.
CachedEnricher never caches those, so configuring a key later upgrades
every file on its next forced sync.
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.config import Settings
from core.logging import get_logger
from services.sync.exceptions import EnrichmentError
from services.sync.models import EnrichmentResult, split_keywords

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at analyzing educational documents and extracting metadata. "
    "Always return valid JSON."
)

TAXONOMY_PROMPT = """Analyze this educational document and extract metadata. Return a JSON object with:

SUBJECTS (choose the most appropriate):
- rekenen-basis, wiskunde-a, wiskunde-b, wiskunde-c, wiskunde-d
- economie, natuurkunde, scheikunde, biologie
- nederlands, engels, informatica

TOPIC GROUPS (choose based on subject):
Wiskunde: rekenen-getallen, algebra-vergelijkingen, functies-grafieken, meetkunde-ruimtelijk, analyse-calculus, kans-statistiek, verdieping-vwo
Economie: micro, macro, publiek-financien, persoonlijke-financien, internationaal, vaardigheden-modelleren
Natuurkunde: mechanica, elektriciteit-magnetisme, golf-optica, thermodynamica, moderne-fysica, metingen-vaardigheden
Scheikunde: materie-structuur, stoichiometrie, reacties, kinetiek-evenwicht, organische-chemie, analyse-vaardigheden
Biologie: cel-biochemie, genetica-evolutie, fysiologie-mens, ecologie, microbiologie-immuniteit, planten, bio-vaardigheden
Nederlands: lezen-luisteren, schrijven, taalbeschouwing-grammatica, literatuur, nl-vaardigheden
Engels: reading-listening, writing, speaking, grammar-vocabulary, literature-culture, exam-skills
Informatica: programmeren, web-databases, algoritmen, ethiek-veiligheid

TOPICS (choose specific topic from the topic group):
Examples: breuken-optellen, lineaire-vergelijking, pythagoras, differentieren-somregel, vraag-en-aanbod, newton, zuur-base, dna-rna, etc.

LEVELS: po, vo-vmbo-bb, vo-vmbo-kb, vo-vmbo-gt, vo-havo-onderbouw, vo-vwo-onderbouw, vo-havo-bovenbouw, vo-vwo-bovenbouw, mbo, hbo-propedeuse, hbo-hoofdfase, wo-bachelor, wo-master, wo-phd, mixed

Return JSON with:
- subject: One of the subjects above
- topicGroup: One of the topic groups above (must match the subject)
- topic: Specific topic from the topic group
- level: Educational level from the list above
- schoolYear: School year in format "YYYY-YYYY" (e.g., "2024-2025")
- keywords: Array of 3-5 relevant keywords
- summary: Brief 1-sentence summary in Dutch
- summaryEn: Brief 1-sentence summary in English
- topicEn: The specific topic in English
- keywordsEn: Array of 3-5 relevant keywords in English

Document name: "{file_name}"

Return only valid JSON, no other text."""

_YEAR_PATTERN = re.compile(r"(\d{4})")
_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")

ENRICHMENT_TEMPERATURE = 0.3
ENRICHMENT_MAX_TOKENS = 300


def basic_analysis(file_name: str) -> EnrichmentResult:
    """Filename-only analysis. The school year comes from the first 4-digit number."""
    match = _YEAR_PATTERN.search(file_name)
    school_year = f"{match.group(1)}-{int(match.group(1)) + 1}" if match else None

    return EnrichmentResult(
        subject="wiskunde-a",
        topic_group="rekenen-getallen",
        topic="algemeen",
        level="vo-havo-onderbouw",
        school_year=school_year,
        keywords=[],
        summary="Document geanalyseerd op basis van bestandsnaam",
        summary_en="Document analyzed based on filename",
        topic_en="general",
        keywords_en=[],
        source="filename",
    )


class ModelAnswer(BaseModel):
    """The JSON object the model is prompted to return. Unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subject: Optional[str] = None
    topic_group: Optional[str] = Field(default=None, alias="topicGroup")
    topic: Optional[str] = None
    level: Optional[str] = None
    school_year: Optional[str] = Field(default=None, alias="schoolYear")
    keywords: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    summary_en: Optional[str] = Field(default=None, alias="summaryEn")
    topic_en: Optional[str] = Field(default=None, alias="topicEn")
    keywords_en: List[str] = Field(default_factory=list, alias="keywordsEn")

    @field_validator("keywords", "keywords_en", mode="before")
    @classmethod
    def _split_keywords(cls, value: Any) -> Any:
        return split_keywords(value)


def parse_model_answer(file_name: str, content: str) -> EnrichmentResult:
    """Decode and validate the JSON object in a chat answer. Raises EnrichmentError."""
    text = _FENCE_PATTERN.sub("", (content or "").strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise EnrichmentError(file_name, f"model answer is not JSON: {e}") from e

    try:
        answer = ModelAnswer.model_validate(data)
    except ValidationError as e:
        raise EnrichmentError(
            file_name, f"model answer failed validation: {e.error_count()} error(s)"
        ) from e

    return EnrichmentResult(source="model", **answer.model_dump())


class OpenAIEnrichmentClient:
    """EnrichmentClient backed by a LangChain ChatOpenAI model.

    ``http_async_client`` replaces the transport underneath the OpenAI SDK;
    tests pass an httpx client with a MockTransport.
    """

    def __init__(self, settings: Settings, http_async_client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.base_url = settings.openai_base_url
        self.timeout = settings.enrichment_timeout
        self.max_retries = settings.enrichment_max_retries
        self._http_async_client = http_async_client
        self._chat_model: Optional[ChatOpenAI] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_chat_model(self) -> ChatOpenAI:
        if self._chat_model is None:
            kwargs: Dict[str, Any] = {
                "openai_api_key": self.api_key,
                "model": self.model,
                "temperature": ENRICHMENT_TEMPERATURE,
                "max_tokens": ENRICHMENT_MAX_TOKENS,
                "base_url": self.base_url,
                "timeout": self.timeout,
                "max_retries": self.max_retries,
            }
            if self._http_async_client is not None:
                kwargs["http_async_client"] = self._http_async_client
            self._chat_model = ChatOpenAI(**kwargs)
        return self._chat_model

    async def close(self) -> None:
        if self._http_async_client is not None:
            await self._http_async_client.aclose()
            self._http_async_client = None
        self._chat_model = None

    async def analyze(self, name: str) -> EnrichmentResult:
        if not self.configured:
            logger.debug("No OpenAI API key configured, using basic analysis", file_name=name)
            return basic_analysis(name)

        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=TAXONOMY_PROMPT.format(file_name=name)),
        ]

        try:
            response = await self._get_chat_model().ainvoke(messages)
        except Exception as e:
            # openai.APIStatusError and subclasses carry the HTTP status
            status_code = getattr(e, "status_code", None)
            if status_code is not None:
                raise EnrichmentError(name, f"HTTP {status_code}") from e
            raise EnrichmentError(name, f"request failed: {type(e).__name__}: {e}") from e

        if not isinstance(response.content, str):
            raise EnrichmentError(name, "model answer is not text")

        result = parse_model_answer(name, response.content)
        logger.info("AI analysis completed", file_name=name, subject=result.subject)
        return result
