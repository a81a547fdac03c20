"""NodeServer: Inbound HTTP handlers for an oracle node.

Endpoints:
- POST /sync    - register the caller, return the full member list
- GET  /answer  - return this node's own estimate to a known member
- POST /median  - accept a value pushed by another node's leader
- GET  /status  - membership and round state, for operators

Malformed requests are rejected with 400 and never touch node state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .PeerClient import is_valid_address
from .sources import PriceSourceError

if TYPE_CHECKING:
    from .MembershipRegistry import MembershipRegistry
    from .RoundCoordinator import RoundCoordinator
    from .sources import PriceSource

logger = logging.getLogger(__name__)


class SyncRequest(BaseModel):
    """Body of POST /sync."""

    node: str = Field(min_length=1)

    @field_validator("node")
    @classmethod
    def node_must_be_address(cls, value: str) -> str:
        if not is_valid_address(value):
            raise ValueError("node must be an absolute http(s) URL")
        return value


class PushRequest(BaseModel):
    """Body of POST /median."""

    value: float = Field(gt=0, allow_inf_nan=False)
    node: str | None = None


class PushReply(BaseModel):
    """Reply to POST /median: an acknowledgement, or our own estimate."""

    accepted: bool
    answer: float | None = None


class NodeStatus(BaseModel):
    """Reply to GET /status."""

    address: str
    members: list[str]
    state: str
    answers: int
    quorum: int
    last_published: float | None
    rounds_completed: int


def create_app(
    registry: MembershipRegistry,
    coordinator: RoundCoordinator,
    price_source: PriceSource,
) -> FastAPI:
    """Build the FastAPI application serving one node.

    :param registry: Membership registry of the node.
    :param coordinator: Round coordinator of the node.
    :param price_source: Source used to answer estimate requests.
    :returns: Configured FastAPI app.
    """
    name = registry.self_address
    app = FastAPI(title="Peer Oracle Node", description=name, version="0.1.0")

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug(f"[{name}] Rejected {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"detail": "Bad request"})

    async def local_estimate() -> float:
        try:
            return await price_source.get_local_estimate()
        except PriceSourceError as e:
            logger.warning(f"[{name}] No local estimate: {e}")
            raise HTTPException(status_code=503, detail="Estimate unavailable") from e

    @app.post("/sync")
    async def sync(body: SyncRequest) -> list[str]:
        logger.info(f"[{name}] Got request to sync from {body.node}")
        return registry.register_sync(body.node)

    @app.get("/answer")
    async def answer(node: str | None = None) -> float:
        if not node:
            raise HTTPException(status_code=400, detail="Bad request")
        if not registry.contains(node):
            raise HTTPException(status_code=400, detail="Invalid node")
        logger.info(f"[{name}] Got a median request from {node}")
        return await local_estimate()

    @app.post("/median")
    async def median(body: PushRequest) -> PushReply:
        if body.node is not None and not registry.contains(body.node):
            raise HTTPException(status_code=400, detail="Invalid node")
        logger.info(f"[{name}] Got median {body.value} from {body.node or 'unknown'}")

        participating, _ = await coordinator.accept_push(body.value)
        if not participating:
            return PushReply(accepted=False)
        return PushReply(accepted=True, answer=await local_estimate())

    @app.get("/status")
    async def status() -> NodeStatus:
        return NodeStatus(
            address=name,
            members=registry.snapshot(),
            state=coordinator.state.value,
            answers=len(coordinator.answers),
            quorum=coordinator.quorum(),
            last_published=coordinator.last_published,
            rounds_completed=coordinator.rounds_completed,
        )

    return app
