"""Pydantic schemas for AI responses."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# Scalar fields that carry a per-field confidence
CONFIDENT_FIELDS = (
    "name",
    "phone",
    "email",
    "property_type",
    "loan_type",
    "price_range",
    "timeline",
    "pre_approval_status",
)


class ConfidentValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExtractionResult(BaseModel):
    """Structured qualification data extracted from one call transcript."""

    model_config = ConfigDict(extra="ignore")

    name: ConfidentValue | None = None
    phone: ConfidentValue | None = None
    email: ConfidentValue | None = None
    property_type: ConfidentValue | None = None
    loan_type: ConfidentValue | None = None
    price_range: ConfidentValue | None = None
    timeline: ConfidentValue | None = None
    pre_approval_status: ConfidentValue | None = None

    lead_temperature: Literal["hot", "warm", "cool", "cold"] | None = None
    concerns: list[str] = Field(default_factory=list)
    interested_properties: list[str] = Field(default_factory=list)
    requested_actions: list[str] = Field(default_factory=list)
    summary: str | None = None
    sentiment_score: float | None = Field(default=None, ge=-1.0, le=1.0)
    qualification_score: int | None = Field(default=None, ge=0, le=100)

    def confident_fields(self, min_confidence: float) -> dict[str, ConfidentValue]:
        """Scalar fields with a non-blank value and confidence strictly above the threshold."""
        kept: dict[str, ConfidentValue] = {}
        for name in CONFIDENT_FIELDS:
            field_value: ConfidentValue | None = getattr(self, name)
            if field_value is None or not (field_value.value or "").strip():
                continue
            if field_value.confidence > min_confidence:
                kept[name] = field_value
        return kept

    def mean_confidence(self) -> float:
        scores = [
            v.confidence for name in CONFIDENT_FIELDS if (v := getattr(self, name)) is not None
        ]
        return round(sum(scores) / len(scores), 3) if scores else 0.0


EXTRACTION_SYSTEM_PROMPT = """You are an expert at extracting structured data from real estate lead phone calls.

Return ONLY a JSON object with exactly this structure (omit unknown fields or use null):
{
  "name": {"value": "string", "confidence": 0.0-1.0},
  "phone": {"value": "string", "confidence": 0.0-1.0},
  "email": {"value": "string", "confidence": 0.0-1.0},
  "property_type": {"value": "string", "confidence": 0.0-1.0},
  "loan_type": {"value": "string", "confidence": 0.0-1.0},
  "price_range": {"value": "string", "confidence": 0.0-1.0},
  "timeline": {"value": "string", "confidence": 0.0-1.0},
  "pre_approval_status": {"value": "string", "confidence": 0.0-1.0},
  "lead_temperature": "hot|warm|cool|cold",
  "concerns": ["string"],
  "interested_properties": ["string"],
  "requested_actions": ["string"],
  "summary": "one or two sentences",
  "sentiment_score": -1.0 to 1.0,
  "qualification_score": 0-100
}

Confidence reflects how explicitly the caller stated the fact. Never guess contact details."""
