"""
Pydantic schemas for the diagnostics API
"""
from pydantic import BaseModel
from typing import List, Optional


# ===== CACHE SCHEMAS =====

class KeyList(BaseModel):
    """Keys with a count"""
    keys: List[str]


class CacheInfo(KeyList):
    """Cache size and keys"""
    size: int


class PollingInfo(KeyList):
    """Active polling tasks"""
    active_count: int


class CancellationInfo(KeyList):
    """Live cancellation tokens"""
    active_count: int


class EntryInfo(BaseModel):
    """Summary of one cache entry (data is not exposed)"""
    key: str
    timestamp: float
    has_data: bool
    error: Optional[str] = None
    ttl: float
    refresh_interval: float
    expired: bool
    polling: bool


class ClearResult(BaseModel):
    """Result of a cache clear"""
    cleared: int


class CancelResult(BaseModel):
    """Result of a cancellation request"""
    key: str
    cancelled: bool


class RevalidateResult(BaseModel):
    """Result of a manual revalidation"""
    issued: int


# ===== ENVIRONMENT SCHEMAS =====

class VisibilityUpdate(BaseModel):
    """Host visibility change"""
    hidden: bool


class NetworkUpdate(BaseModel):
    """Host network change"""
    offline: bool


class EnvironmentState(BaseModel):
    """Current host state as seen by the engine"""
    hidden: bool
    offline: bool
