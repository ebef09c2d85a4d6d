"""Pydantic models for service contracts.

Services hand back a ServiceResult instead of raising for expected business
failures; the HTTP layer decides which status code a failure maps to.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

class ServiceResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

class WebhookProcessingResult(BaseModel):
    success: bool
    message: str
    processed: bool = False
    error: Optional[str] = None

class IdempotencyResult(BaseModel):
    is_new: bool
    status: Optional[str] = None
    result: Optional[Any] = None
    error: Optional[str] = None

class RateLimitResult(BaseModel):
    success: bool
    remaining: int
    reset: datetime
    limit: int
    blocked: bool = False

class FraudCheck(BaseModel):
    score: int = 0
    flags: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)

class FraudAnalysis(BaseModel):
    risk_level: str
    risk_score: int
    flags: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)

class SearchSuggestion(BaseModel):
    type: str  # product | category | brand
    id: str
    title: str
    subtitle: Optional[str] = None
    url: str
    image: Optional[str] = None
    price: Optional[int] = None
    relevance_score: int

class RequestContext(BaseModel):
    ip_address: str = "unknown"
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

class Actor(BaseModel):
    """Who performed an action; ``system`` for background processing."""
    id: str = "system"
    email: str = "system@emporium"
    name: Optional[str] = "System"
    role: Optional[str] = "system"

SYSTEM_ACTOR = Actor()
