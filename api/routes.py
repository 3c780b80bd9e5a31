from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from services.orchestrator import EvaluatorOrchestrator

router = APIRouter()


def _admin_tokens(request: Request) -> list[str]:
    raw = request.app.state.settings.ADMIN_API_TOKENS
    return [t.strip() for t in raw.split(",") if t.strip()]


def require_admin(request: Request, authorization: str | None = Header(default=None)) -> str:
    """Bearer-token guard for internal endpoints. 401 without credentials, 403 for unknown ones."""
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not any(hmac.compare_digest(token, known) for known in _admin_tokens(request)):
        logger.warning("Rejected evaluation trigger with unknown token")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return token


def get_orchestrator(request: Request) -> EvaluatorOrchestrator:
    return request.app.state.orchestrator


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/internal/evaluate-trades")
async def evaluate_trades(
    _: str = Depends(require_admin),
    orchestrator: EvaluatorOrchestrator = Depends(get_orchestrator),
):
    try:
        summary = await orchestrator.run_once()
    except Exception as exc:
        logger.exception("Evaluation trigger failed: {}", exc)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})
    return summary.as_dict()
