from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.api.deps import get_chain_client, get_redis
from app.core.config import settings
from app.db.session import get_db
from app.services.chain.base import ChainUnavailableError
from app.services.chain.client import ChainClient


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(
    response: Response,
    db: Session = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
    chain: ChainClient = Depends(get_chain_client),
) -> dict:
    """Readiness probe - returns 503 if database or Redis are unavailable,
    or if the RPC node serves a different chain than configured.

    The payment network is reported but does not fail readiness: purchases
    answer chain_unavailable on their own while it is down.
    """
    try:
        # Check database
        db.execute(text("SELECT 1"))

        # Check Redis
        redis_client.ping()
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e)}

    chain_status = {"name": settings.chain_name, "expected_chain_id": settings.chain_id}
    try:
        chain_id = chain.get_chain_id()
        block_number = chain.get_block_number()
    except ChainUnavailableError as e:
        chain_status.update(status="unavailable", error=str(e))
        return {"status": "ready", "env": settings.app_env, "chain": chain_status}

    chain_status.update(chain_id=chain_id, block_number=block_number)
    if chain_id != settings.chain_id:
        # payments would be verified against the wrong network
        chain_status["status"] = "wrong_network"
        response.status_code = 503
        return {"status": "not_ready", "env": settings.app_env, "chain": chain_status}
    chain_status["status"] = "ok"
    return {"status": "ready", "env": settings.app_env, "chain": chain_status}
