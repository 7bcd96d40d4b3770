"""
API routes for meshroute.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ..cost.publisher import parse_cost_message
from ..router import simhash
from ..router.constraints import RouteConstraints
from ..router.semantic import SemanticRouter

logger = logging.getLogger(__name__)

router = APIRouter()


# ============ Request/Response Models ============

class RouteRequest(BaseModel):
    """Request to route a query."""
    query: str = Field(..., description="Natural language or structured query")
    fingerprint: Optional[str] = Field(
        default=None,
        description="Pre-computed 64-bit SimHash as hex (computed from the query if omitted)",
    )
    constraints: Optional[RouteConstraints] = None


class AlternativeInfo(BaseModel):
    """A runner-up capability."""
    capability_id: str
    label: str
    node_id: str
    score: float


class RouteResponse(BaseModel):
    """Routing decision."""
    capability_id: str
    node_id: str
    node_name: str
    label: str
    model_tier: str
    model_name: str
    hops: int
    estimated_latency_ms: float
    composite_score: float
    match_method: str
    fallback: bool
    unavailable: bool
    explanation: str
    score_breakdown: Dict[str, float]
    alternatives: List[AlternativeInfo] = Field(default_factory=list)


class CandidatesRequest(BaseModel):
    """Request to list eligible capabilities."""
    constraints: Optional[RouteConstraints] = None


class CandidatesResponse(BaseModel):
    count: int
    candidates: List[Dict[str, Any]]


class RegisterRequest(BaseModel):
    """Capability announcements to add to the directory."""
    capabilities: List[Dict[str, Any]] = Field(..., description="Announcement dicts")


# ============ Helpers ============

def get_router(request: Request) -> SemanticRouter:
    semantic_router = getattr(request.app.state, "router", None)
    if semantic_router is None:
        raise HTTPException(status_code=503, detail="Router not ready")
    return semantic_router


def _writable_directory(request: Request, method: str):
    directory = get_router(request).directory
    if not hasattr(directory, method):
        raise HTTPException(status_code=501, detail="Directory is read-only")
    return directory


# ============ Routes ============

@router.post("/route", response_model=RouteResponse)
async def route_query(body: RouteRequest, request: Request):
    """
    Route a query to the best capability.

    Returns 404 with a reason code when nothing is eligible.
    """
    semantic_router = get_router(request)
    try:
        fingerprint = simhash.from_hex(body.fingerprint)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid fingerprint: {body.fingerprint!r}")

    outcome = semantic_router.route_with_reason(body.query, fingerprint, body.constraints)
    if outcome.decision is None:
        raise HTTPException(
            status_code=404,
            detail={"reason": outcome.reason.value if outcome.reason else None, "query": body.query},
        )
    return RouteResponse(**outcome.decision.to_dict())


@router.post("/candidates", response_model=CandidatesResponse)
async def list_candidates(body: CandidatesRequest, request: Request):
    """Capabilities that pass the constraint filter."""
    records = get_router(request).filter_candidates(body.constraints)
    return CandidatesResponse(count=len(records), candidates=[r.to_dict() for r in records])


@router.get("/stats")
async def get_stats(request: Request):
    """Directory statistics, plus cost publisher state when one is running."""
    stats = dict(get_router(request).get_stats())
    publisher = getattr(request.app.state, "publisher", None)
    if publisher is not None:
        stats["publisher"] = publisher.state.to_dict()
    return stats


@router.post("/capabilities")
async def register_capabilities(body: RegisterRequest, request: Request):
    """Add or refresh capability announcements."""
    directory = _writable_directory(request, "load_dicts")
    added = directory.load_dicts(body.capabilities)
    return {"received": len(body.capabilities), "added": added}


@router.post("/cost")
async def receive_cost(message: Dict[str, Any], request: Request):
    """Accept a cost update message from a node's publisher."""
    directory = _writable_directory(request, "send_cost_update")
    snapshot = parse_cost_message(message)
    if snapshot is None:
        raise HTTPException(status_code=400, detail="Invalid cost message")
    directory.send_cost_update(snapshot.node_id, snapshot)
    logger.debug(f"Cost update from {snapshot.node_id}: {snapshot.cost:.2f}")
    return {"status": "ok", "node_id": snapshot.node_id, "cost": snapshot.to_dict()["cost"]}
