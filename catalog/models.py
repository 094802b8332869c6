"""
Data shapes shared by the resolver, the catalog service and the HTTP layer
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

UNRATED = "暂无评分"


class DoubanSubject(BaseModel):
    """One entry of the upstream ``subjects`` array."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    title: str
    cover: str
    rate: Optional[str] = None


class NormalizedItem(BaseModel):
    id: str
    title: str
    poster: str
    rate: str

    @classmethod
    def from_subject(cls, subject: DoubanSubject) -> "NormalizedItem":
        return cls(
            id=subject.id,
            title=subject.title,
            poster=subject.cover,
            rate=subject.rate or UNRATED,
        )


class NormalizedResult(BaseModel):
    code: int = 200
    message: str
    list: List[NormalizedItem]
    error: Optional[str] = None
    details: Optional[str] = None
    attempted: Optional[List[str]] = None
    target: Optional[str] = None

    @property
    def soft_failure(self) -> bool:
        return self.error is not None


class StrategyReport(BaseModel):
    """Outcome of one strategy during an upstream connectivity check."""
    name: str
    ok: bool
    status: int
    error: Optional[str] = None
    elapsed: float
    final_url: str
    items: Optional[int] = None


class TagRequest(BaseModel):
    tag: str


@dataclass(frozen=True)
class UpstreamTarget:
    """Upstream URL plus the parser describing its expected response shape."""
    url: str
    parser: Any
    accept: str = 'application/json, text/plain, */*'


@dataclass(frozen=True)
class RelayRequest:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Resolution:
    payload: Any
    strategy: str
    attempted: List[str]


@dataclass(frozen=True)
class TagListing:
    type: str
    tags: List[str]
    source: str
