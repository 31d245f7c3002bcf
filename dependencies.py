import logging
from typing import Optional
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from models.user_models import CallerContext
from stores import Store
from trade_engine import TradeEngine
from utils import verify_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_trade_engine(store: Store = Depends(get_store)) -> TradeEngine:
    return TradeEngine(store)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: Store = Depends(get_store),
) -> CallerContext:
    """Resolve the bearer token into the caller's identity."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authorized, no token")

    user_id = verify_token(credentials.credentials)
    if user_id is None:
        logger.info("Rejected request with an invalid token")
        raise HTTPException(status_code=401, detail="Not authorized, token failed")

    user = await store.users.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authorized, token failed")
    return CallerContext(user_id=user.id, username=user.username)
