# /chatflow/models/domain.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional
from pydantic import BaseModel, Field

# This file defines the core models of the response matching engine: training
# examples, scoring candidates and the annotated match result.


class TrainingExample(BaseModel):
    id: int
    input: str
    output: str
    confidence: float = 0.0
    usage_count: int = 0
    approved: bool = False
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TrainingExample":
        """Build an example from a sqlite3.Row-like mapping."""
        return cls(
            id=row["id"],
            input=row["input"],
            output=row["output"],
            confidence=row["confidence"] or 0.0,
            usage_count=row["usage_count"] or 0,
            approved=bool(row["approved"]),
            created_at=row["created_at"],
            last_used=row["last_used"],
        )


class ResponseCandidate(BaseModel):
    """A reply proposed by one or more scoring algorithms."""
    text: str
    confidence: float = 0.0
    algorithm: str = "none"
    training_id: Optional[int] = None
    intent: Optional[str] = None


class SentimentResult(BaseModel):
    score: int = 0
    comparative: float = 0.0
    label: str = "neutral"
    emotions: List[str] = Field(default_factory=list)
    positive: List[str] = Field(default_factory=list)
    negative: List[str] = Field(default_factory=list)


class MatchResult(BaseModel):
    text: str
    confidence: float
    algorithm: str
    intent: str = "unknown"
    sentiment: SentimentResult = Field(default_factory=SentimentResult)
    entities: Dict[str, Any] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)
    needs_human_handoff: bool = False
    processing_time_ms: float = 0.0
    cached: bool = False
    error: Optional[str] = None


class ContextEntry(BaseModel):
    message: str
    intent: str
    sentiment: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class IndexedExample:
    """A training example prepared for scoring."""
    example: TrainingExample
    normalized_input: str
    tokens: FrozenSet[str]
    intent: str


@dataclass
class CacheEntry:
    result: MatchResult
    timestamp: float


@dataclass
class CandidateGroup:
    """Candidates sharing the same reply text, fused into one score."""
    text: str
    intent: str
    training_id: int
    confidence: float = 0.0
    algorithms: List[str] = field(default_factory=list)

    def add(self, algorithm: str, contribution: float) -> None:
        self.confidence += contribution
        if algorithm not in self.algorithms:
            self.algorithms.append(algorithm)
