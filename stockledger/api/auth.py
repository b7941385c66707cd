from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from stockledger.actors import Actor, ActorRole, AdminActor, actor_for_user
from stockledger.database import get_db
from stockledger.models.user import User
from stockledger.services import auth_service
from stockledger.services.auth_service import TokenService

router = APIRouter(prefix="/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: str
    username: str
    full_name: str
    role: ActorRole
    admin_id: str | None = None
    active: bool = True

    model_config = {"from_attributes": True}


class CreateStaffRequest(BaseModel):
    username: str
    password: str
    full_name: str = ""


def get_token_service() -> TokenService:
    return auth_service.default_token_service()


def get_current_user(
    authorization: str | None = Header(default=None),
    token: str | None = Cookie(default=None, alias="token"),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> User:
    """Dependency: extract user from a bearer token or the JWT cookie."""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        raise HTTPException(401, "Not authenticated")
    payload = tokens.decode_token(token)
    if not payload:
        raise HTTPException(401, "Invalid or expired token")
    user = auth_service.get_user_by_id(db, payload["sub"])
    if not user or not user.active:
        raise HTTPException(401, "User not found or disabled")
    return user


def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    actor = actor_for_user(user)
    if actor is None:
        raise HTTPException(403, "No inventory access for this account")
    return actor


def get_admin_actor(actor: Actor = Depends(get_current_actor)) -> AdminActor:
    if not isinstance(actor, AdminActor):
        raise HTTPException(403, "Admin only")
    return actor


@router.post("/login")
def login(
    data: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    user = auth_service.authenticate(db, data.username, data.password)
    if not user:
        raise HTTPException(401, "Invalid username or password")
    token = tokens.create_access_token(user.id, user.username, user.role.value)
    response.set_cookie("token", token, httponly=True, samesite="lax", max_age=3600 * tokens.expire_hours)
    return {"token": token, "user": UserOut.model_validate(user)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("token")
    return {"ok": True}


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@router.post("/staff", response_model=UserOut, status_code=201)
def create_staff(
    data: CreateStaffRequest,
    admin: AdminActor = Depends(get_admin_actor),
    db: Session = Depends(get_db),
):
    return auth_service.create_staff(db, admin.id, data.username, data.password, data.full_name)
