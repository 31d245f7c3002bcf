import logging
from fastapi import APIRouter, Depends, HTTPException
from models.login_model import LoginUser
from models.profile_model import AuthenticatedUser, profile_from_record
from models.register_model import RegisterUser
from stores import DuplicateRecordError, Store
from dependencies import get_store
from utils import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _with_token(user) -> AuthenticatedUser:
    token = create_access_token(data={"user_id": user.id, "username": user.username})
    return AuthenticatedUser(**profile_from_record(user).model_dump(), token=token)


@router.post("/register", response_model=AuthenticatedUser, status_code=201)
async def register_user(user: RegisterUser, store: Store = Depends(get_store)):
    username = user.username.strip()
    try:
        if await store.users.find_by_username(username):
            raise HTTPException(status_code=400, detail="User already exists")

        created_user = await store.users.insert(
            username,
            hash_password(user.password),
            fullName=user.fullName.strip(),
            city=user.city.strip(),
            state=user.state.strip(),
        )
        logger.info("Registered user %s (%s)", created_user.id, username)
        return _with_token(created_user)
    except DuplicateRecordError:
        raise HTTPException(status_code=400, detail="User already exists")
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error registering user %s", username)
        raise HTTPException(status_code=500, detail="Server Error registering user.")


@router.post("/login", response_model=AuthenticatedUser)
async def login_user(user: LoginUser, store: Store = Depends(get_store)):
    try:
        existing_user = await store.users.find_by_username(user.username.strip())
        if not existing_user or not verify_password(user.password, existing_user.password):
            raise HTTPException(status_code=401, detail="Invalid username or password")
        return _with_token(existing_user)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error logging in %s", user.username)
        raise HTTPException(status_code=500, detail="Server Error logging in.")
