from fastapi import HTTPException, Request, status
from passlib.context import CryptContext

import schemas
from store import Store

def make_password_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

# Password hashing context
pwd_context = make_password_context()

def hash_password(password: str, context: CryptContext = pwd_context) -> str:
    return context.hash(password)

def verify_password(password: str, password_hash: str, context: CryptContext = pwd_context) -> bool:
    return context.verify(password, password_hash)

def get_store(request: Request) -> Store:
    return request.app.state.store

def get_pwd_context(request: Request) -> CryptContext:
    return request.app.state.pwd_context

def login_user(request: Request, user: schemas.UserOut) -> schemas.SessionUser:
    session_user = schemas.SessionUser(user_id=user.id, username=user.username)
    request.session.update(session_user.model_dump())
    return session_user

def logout_user(request: Request) -> None:
    request.session.clear()

def get_current_user(request: Request) -> schemas.SessionUser:
    if request.session.get("logged_in") and request.session.get("user_id"):
        return schemas.SessionUser(
            user_id=request.session["user_id"],
            username=request.session["username"],
        )
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in")
