from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatbotParameter(str, Enum):
    OPENAI_KEY = "openai_key"
    SYSTEM_PROMPT = "system_prompt"
    WELCOME_MESSAGE = "welcome_message"
    TEMPERATURE = "temperature"
    MAX_TOKENS = "max_tokens"


CHATBOT_PARAMETER_LABELS = {
    ChatbotParameter.OPENAI_KEY: "OpenAI API Key",
    ChatbotParameter.SYSTEM_PROMPT: "System Prompt",
    ChatbotParameter.WELCOME_MESSAGE: "Welcome Message",
    ChatbotParameter.TEMPERATURE: "Temperature",
    ChatbotParameter.MAX_TOKENS: "Max Tokens",
}


class FieldType(str, Enum):
    CUSTOM_VALUE = "custom_value"
    CUSTOM_FIELD = "custom_field"


class CredentialHints(BaseModel):
    location_id: Optional[str] = None
    company_id: Optional[str] = None
    subject_id: Optional[str] = None
    valid: bool = False


class ScopeReference(BaseModel):
    kind: Literal["location", "company"]
    id: str
    # explicit | credential | company_discovery | company | subject_heuristic
    source: str = "explicit"

    @property
    def label(self) -> str:
        return f"{'Location' if self.kind == 'location' else 'Company'} ID {self.id}"


class CustomValueRecord(BaseModel):
    """One custom value as returned by GHL. Records failing this shape are skipped."""
    model_config = ConfigDict(extra="ignore")

    key: str = Field(min_length=1)
    name: Optional[str] = None
    value: Optional[str] = None

    @field_validator("name", "value", mode="before")
    @classmethod
    def _scalar_to_str(cls, v: Any) -> Any:
        if isinstance(v, (bool, int, float)):
            return str(v)
        return v


class RecordPreview(BaseModel):
    key: str
    name: Optional[str] = None
    valuePreview: Optional[str] = None


class MatchResult(BaseModel):
    found: bool = False
    key: Optional[str] = None
    name: Optional[str] = None
    value: Optional[str] = None
    strategy: Optional[str] = None
    search_terms: List[str] = []
    candidate_matches: List[RecordPreview] = []
    text_candidates: List[RecordPreview] = []
    all_records: List[RecordPreview] = []
    suggestions: List[RecordPreview] = []


# Request / response bodies. camelCase to match the dashboard's JSON.

class FieldLookupRequest(BaseModel):
    locationId: Optional[str] = None
    ghlApiKey: Optional[str] = None
    fieldKey: Optional[str] = None


class FieldLookupResponse(BaseModel):
    value: Optional[str] = None
    key: Optional[str] = None
    name: Optional[str] = None
    found: bool = False
    error: Optional[str] = None
    details: Optional[str] = None
    status: Optional[int] = None
    strategy: Optional[str] = None
    scope: Optional[ScopeReference] = None
    searchTerms: List[str] = []
    potentialWelcomeMatches: List[RecordPreview] = []
    textContentFields: List[RecordPreview] = []
    allKeys: List[RecordPreview] = []
    suggestions: List[RecordPreview] = []


class FieldMapping(BaseModel):
    chatbotParameter: ChatbotParameter
    ghlFieldKey: str
    fieldType: FieldType = FieldType.CUSTOM_VALUE


class MappingResolveRequest(BaseModel):
    locationId: Optional[str] = None
    ghlApiKey: Optional[str] = None
    mappings: List[FieldMapping] = []


class MappingResult(BaseModel):
    chatbotParameter: ChatbotParameter
    ghlFieldKey: str
    found: bool = False
    key: Optional[str] = None
    value: Optional[Any] = None
    error: Optional[str] = None


class MappingResolveResponse(BaseModel):
    parameters: Dict[str, Any] = {}
    results: List[MappingResult] = []
    error: Optional[str] = None
    details: Optional[str] = None
    status: Optional[int] = None
    scope: Optional[ScopeReference] = None
