from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Query(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    # queries.json files use the key "query"
    text: str = Field(min_length=1, validation_alias=AliasChoices("text", "query"))


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    abstract: str
    authors: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    published: datetime
    pdf_link: str | None = None

    @field_validator("categories")
    @classmethod
    def _dedupe_categories(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class Enrichment(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    # The text-generation service answers with the key "novel_contributions"
    contribution: str = Field(validation_alias=AliasChoices("contribution", "novel_contributions"))
    tags: list[str] = Field(default_factory=list)


class EnrichedRecord(BaseModel):
    """A record that passed the known-id filter and was enriched successfully."""

    model_config = ConfigDict(frozen=True)

    record: Record
    enrichment: Enrichment
    query_id: str

    @property
    def id(self) -> str:
        return self.record.id


QueryStatus = Literal[
    "completed",
    "no_candidates",
    "nothing_new",
    "fetch_failed",
    "filter_failed",
    "persist_failed",
]


class QueryOutcome(BaseModel):
    """What happened to one query during a run."""

    query_id: str
    status: QueryStatus
    candidates: int = 0
    known: int = 0
    new: int = 0
    failed: int = 0
    persisted: list[EnrichedRecord] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status not in ("fetch_failed", "filter_failed", "persist_failed")
