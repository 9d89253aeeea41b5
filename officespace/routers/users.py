from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..deps import (
    authenticate_user,
    create_access_token,
    get_current_user,
    get_db,
    get_password_hash,
    get_user_by_email,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/register", response_model=schemas.UserOut, status_code=201)
def register_user(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    """
    Register a new user.

    Parameters
    ----------
    user_in : UserCreate
        Name, email and password of the new account.
    db : Session
        Database session.

    Raises
    ------
    HTTPException
        - 400 if the email is already registered.
    """
    if get_user_by_email(db, user_in.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = models.User(
        name=user_in.name,
        email=user_in.email,
        hashed_password=get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.post("/login", response_model=schemas.Token, tags=["auth"])
def login_for_access_token(
    email: str,
    password: str,
    db: Session = Depends(get_db),
):
    """
    Authenticate a user and return a JWT access token.

    Raises
    ------
    HTTPException
        - 401 if credentials are invalid.
    """
    user = authenticate_user(db, email, password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )
    token = create_access_token({"sub": str(user.id)})
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me", response_model=schemas.UserOut)
def read_current_user(current_user: models.User = Depends(get_current_user)):
    """Get the currently authenticated user."""
    return current_user
