from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ThinkingLevel(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1)
    nb_results: Optional[int] = Field(default=None, gt=0, alias="nbResults")
    thinking_level: Optional[ThinkingLevel] = Field(
        default=None,
        alias="thinkingLevel",
        validation_alias=AliasChoices("thinkingLevel", "thinking"),
    )


class QueryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str
    duration: int = Field(..., description="Milliseconds spent retrieving and generating.")
    nb_results: int = Field(..., alias="nbResults")
    thinking: str
    model: str


class DataRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1)
    nb_results: Optional[int] = Field(default=None, gt=0, alias="nbResults")


class DataResponse(BaseModel):
    data: List[Dict[str, Any]]
    duration: int


class HealthResponse(BaseModel):
    status: str
    documents: Optional[int] = None
    detail: Optional[str] = None
