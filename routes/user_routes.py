import logging
from fastapi import APIRouter, Depends, HTTPException
from models.profile_model import UserProfile, profile_from_record
from models.update_profile_model import UpdateUserProfile
from models.user_models import CallerContext
from stores import Store
from dependencies import get_current_user, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserProfile)
async def get_my_profile(caller: CallerContext = Depends(get_current_user), store: Store = Depends(get_store)):
    user = await store.users.find_by_id(caller.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return profile_from_record(user)


@router.put("/me", response_model=UserProfile)
async def update_my_profile(
    updated_data: UpdateUserProfile,
    caller: CallerContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    # Username and password are not editable here
    update_dict = {k: v.strip() for k, v in updated_data.model_dump(exclude_unset=True).items() if v is not None}
    try:
        if update_dict:
            user = await store.users.update_profile(caller.user_id, update_dict)
        else:
            user = await store.users.find_by_id(caller.user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return profile_from_record(user)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error updating profile for %s", caller.user_id)
        raise HTTPException(status_code=500, detail="Server Error updating profile.")
