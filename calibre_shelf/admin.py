"""
Admin router: review accounts created by OAuth logins.

Every endpoint requires an admin account (403 otherwise).
"""
from fastapi import APIRouter, Depends, HTTPException

from calibre_shelf.auth import get_user_service, require_admin
from calibre_shelf.schemas import MessageResponse, UserOut
from calibre_shelf.services.user_service import UserService

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


@router.get("/pending", response_model=list[UserOut])
def list_pending(user_service: UserService = Depends(get_user_service)):
    """Accounts waiting for approval, newest first."""
    return user_service.list_pending()


@router.post("/approve/{user_id}", response_model=UserOut)
def approve_user(user_id: str, user_service: UserService = Depends(get_user_service)):
    user = user_service.approve(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/reject/{user_id}", response_model=MessageResponse)
def reject_user(user_id: str, user_service: UserService = Depends(get_user_service)):
    """Delete an account that has not been approved yet."""
    if not user_service.reject(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return MessageResponse(message="User rejected successfully")
