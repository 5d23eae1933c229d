from __future__ import annotations

from datetime import datetime

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException, Security, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database, settings
from ..models.user import AuthResponse, StaffRole, UserCreate, UserPublic
from ..utils.logging import store_unavailable
from ..utils.security import create_access_token, decode_token, hash_password, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_user_collection(database: AsyncIOMotorDatabase = Depends(get_database)) -> AsyncIOMotorCollection:
    return database.get_collection("users")


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register_user(payload: UserCreate, users: AsyncIOMotorCollection = Depends(get_user_collection)) -> UserPublic:
    try:
        existing = await users.find_one({"email": payload.email})
        if existing:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
        doc = {
            "email": payload.email,
            "name": payload.name,
            "password": hash_password(payload.password),
            "role": payload.role,
            "created_at": datetime.utcnow(),
        }
        result = await users.insert_one(doc)
        stored = await users.find_one({"_id": result.inserted_id})
    except PyMongoError as exc:  # pragma: no cover - requires external service
        raise store_unavailable("register_user", exc) from exc
    stored["_id"] = str(stored["_id"])
    return UserPublic(**stored)


@router.post("/login", response_model=AuthResponse)
async def login_user(
    form_data: OAuth2PasswordRequestForm = Depends(),
    users: AsyncIOMotorCollection = Depends(get_user_collection),
) -> AuthResponse:
    try:
        user = await users.find_one({"email": form_data.username})
    except PyMongoError as exc:  # pragma: no cover
        raise store_unavailable("login_user", exc) from exc
    if not user or not verify_password(form_data.password, user.get("password", "")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")
    user_id = str(user["_id"])
    user["_id"] = user_id
    token = create_access_token(user_id)
    return AuthResponse(access_token=token, user=UserPublic(**user), message="Welcome back")


async def _ensure_demo_user(users: AsyncIOMotorCollection) -> UserPublic:
    demo = await users.find_one({"email": settings.demo_user_email})
    if not demo:
        doc = {
            "email": settings.demo_user_email,
            "name": settings.demo_user_name,
            "password": hash_password(settings.demo_user_password),
            "role": "admin",
            "created_at": datetime.utcnow(),
        }
        result = await users.insert_one(doc)
        demo = await users.find_one({"_id": result.inserted_id})
    demo["_id"] = str(demo["_id"])
    return UserPublic(**demo)


async def get_current_user(
    token: str | None = Security(oauth2_scheme),
    users: AsyncIOMotorCollection = Depends(get_user_collection),
) -> UserPublic:
    if not token:
        if settings.auto_authorize_demo:
            return await _ensure_demo_user(users)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing authorization token")

    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        object_id = ObjectId(user_id)
    except InvalidId as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc
    user = await users.find_one({"_id": object_id})
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    user["_id"] = str(user["_id"])
    return UserPublic(**user)


def require_roles(*roles: StaffRole):
    def dependency(user: UserPublic = Depends(get_current_user)) -> UserPublic:
        if roles and user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this action",
            )
        return user

    return dependency
