"""
Request dependencies: principal from the bearer token, and the purchase
orchestrator wired to the shared chain client.
"""
from functools import lru_cache

import redis
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.services.auth.principal import Principal
from app.services.auth.tokens import InvalidTokenError, PrincipalTokenSigner, get_token_signer
from app.services.chain.client import ChainClient
from app.services.circuit_breaker import get_circuit_breaker
from app.services.payments.verifier import PaymentVerifier
from app.services.purchases.service import PurchaseOrchestrator

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache(maxsize=1)
def get_chain_client() -> ChainClient:
    return ChainClient(
        settings.chain_rpc_url,
        timeout=settings.chain_rpc_timeout,
        breaker=get_circuit_breaker("chain_rpc"),
    )


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


def get_payment_verifier(chain: ChainClient = Depends(get_chain_client)) -> PaymentVerifier:
    return PaymentVerifier(
        chain,
        token_contract_address=settings.usdc_contract_address,
        min_confirmations=settings.min_confirmations,
    )


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    signer: PrincipalTokenSigner = Depends(get_token_signer),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return signer.verify(credentials.credentials)
    except InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_purchase_orchestrator(
    db: Session = Depends(get_db),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    redis_client: redis.Redis = Depends(get_redis),
) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(
        db,
        verifier,
        store_wallet_address=settings.store_wallet_address,
        redis_client=redis_client,
        rate_limit=settings.purchase_rate_limit,
        rate_window_seconds=settings.purchase_rate_window_seconds,
        subscription_timezone=settings.subscription_timezone,
        content_url_ttl_seconds=settings.video_content_url_ttl_seconds,
    )
