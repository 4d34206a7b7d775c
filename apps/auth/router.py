from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session
from database import get_session
from apps.auth.services import AuthService, AuthError
from apps.auth.models import UserPublic, RegisterInput, LoginInput, ProfileInput

router = APIRouter(prefix="/api/auth", tags=["auth"])

def get_service(session: Session = Depends(get_session)) -> AuthService:
    return AuthService(session)

def _raise(e: AuthError):
    raise HTTPException(status_code=e.status_code, detail=e.message)

@router.post("/register", response_model=UserPublic, status_code=201)
def register(payload: RegisterInput, service: AuthService = Depends(get_service)):
    try:
        user = service.register(payload.name, payload.email, payload.password)
    except AuthError as e:
        _raise(e)
    return user.to_public()

@router.post("/login", response_model=UserPublic)
def login(request: Request, payload: LoginInput, service: AuthService = Depends(get_service)):
    try:
        user = service.authenticate(payload.email, payload.password)
    except AuthError as e:
        _raise(e)

    # Set Session
    request.session["user_id"] = user.id
    return user.to_public()

@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"status": "ok"}

@router.patch("/profile", response_model=UserPublic)
def update_profile(payload: ProfileInput, service: AuthService = Depends(get_service)):
    try:
        user = service.update_profile(payload.user_id, payload.name, payload.username, payload.photo_url)
    except AuthError as e:
        _raise(e)
    return user.to_public()
