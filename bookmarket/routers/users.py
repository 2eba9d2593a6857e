"""User registration, role lookup and admin role management."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from bookmarket.auth import BoundIdentity, ensure_self
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.deps import get_db_service, require_admin, require_user
from bookmarket.errors import NotFound
from bookmarket.models import InsertResponse, Role, RoleResponse, UpdateResponse, UserCreate

router = APIRouter(tags=["Users"])


@router.post("/users", response_model=InsertResponse)
async def register_user(
    user: UserCreate,
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """
    Register a user on first sign-in.

    Re-registering an existing email is a successful no-op that returns
    `insertedId: null`.
    """
    inserted_id = await db_service.register_user(user.model_dump(by_alias=True, exclude_none=True))
    if inserted_id is None:
        return InsertResponse(inserted_id=None, message="User already exists")
    return InsertResponse(inserted_id=inserted_id)


@router.get("/users/role/{email}", response_model=RoleResponse)
async def get_user_role(
    email: str,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    ensure_self(identity, email)
    role = await db_service.get_user_role(email)
    if role is None:
        raise NotFound("User not found.")
    return RoleResponse(role=role)


@router.get("/users", response_model=List[Dict[str, Any]])
async def list_users(
    identity: BoundIdentity = Depends(require_admin),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    return await db_service.list_users()


@router.patch("/users/make-librarian/{user_id}", response_model=UpdateResponse)
async def make_librarian(
    user_id: str,
    identity: BoundIdentity = Depends(require_admin),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    modified = await db_service.update_user_role(user_id, Role.LIBRARIAN)
    return UpdateResponse(modified_count=modified)


@router.patch("/users/make-admin/{user_id}", response_model=UpdateResponse)
async def make_admin(
    user_id: str,
    identity: BoundIdentity = Depends(require_admin),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    modified = await db_service.update_user_role(user_id, Role.ADMIN)
    return UpdateResponse(modified_count=modified)
