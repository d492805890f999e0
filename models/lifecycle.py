# models/lifecycle.py
from pydantic import BaseModel
from typing import Any, Dict, List, Optional


class CleanupManifest(BaseModel):
    """What a removal took out of the store, and which blobs are now orphaned."""
    deletedCounts: Dict[str, int] = {}
    blobKeys: List[str] = []


class LifecycleResult(BaseModel):
    course: Dict[str, Any]
    enrolled: List[str] = []
    unenrolled: List[str] = []
    manifest: Optional[CleanupManifest] = None


class CleanupReport(BaseModel):
    attempted: int = 0
    deleted: List[str] = []
    failed: List[str] = []
