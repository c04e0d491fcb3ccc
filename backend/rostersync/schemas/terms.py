"""Pydantic schemas for term documents."""

from pydantic import BaseModel, ConfigDict, Field


class TermResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    term_code: str
    term: str = ""
    status: str = "active"
    locked: bool = False


class TermLockRequest(BaseModel):
    locked: bool = Field(True, description="False unlocks the term")


class TermArchiveRequest(BaseModel):
    archived: bool = Field(True, description="False restores the term to active")
