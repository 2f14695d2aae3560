from datetime import date

from pydantic import BaseModel, Field, field_validator

from app.models.event import OUTCOME_BINARY, OUTCOME_CATEGORICAL, OUTCOME_PRICE_BRACKET

OUTCOME_TYPES = {OUTCOME_BINARY, OUTCOME_PRICE_BRACKET, OUTCOME_CATEGORICAL}


class ProposedContractRef(BaseModel):
    platform: str = Field(min_length=1)
    platform_contract_id: str = Field(min_length=1)

    @field_validator("platform")
    @classmethod
    def _lower_platform(cls, value: str) -> str:
        return value.strip().lower()


class ProposedEvent(BaseModel):
    """One canonical event proposed by the language model."""

    event_id: str = Field(min_length=1, max_length=255)
    title: str = Field(min_length=1)
    slug: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: str
    subcategory: str | None = None
    tags: list[str] = Field(default_factory=list)
    resolution_date: date | None = None
    outcome_type: str = OUTCOME_BINARY
    parent_event_id: str | None = None
    outcome_label: str | None = None
    outcome_index: int | None = None
    source_contracts: list[ProposedContractRef] = Field(default_factory=list)

    @field_validator("resolution_date", mode="before")
    @classmethod
    def _lenient_date(cls, value: object) -> object:
        # Models sometimes emit "" or free text; treat anything non-ISO as unknown.
        if value in (None, ""):
            return None
        if isinstance(value, str):
            try:
                return date.fromisoformat(value[:10])
            except ValueError:
                return None
        return value

    @field_validator("outcome_type", mode="before")
    @classmethod
    def _known_outcome_type(cls, value: object) -> str:
        if isinstance(value, str) and value in OUTCOME_TYPES:
            return value
        return OUTCOME_BINARY

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_list(cls, value: object) -> object:
        return value or []

    @field_validator("parent_event_id", "subcategory", "outcome_label", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        return value or None
