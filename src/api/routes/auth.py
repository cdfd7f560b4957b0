from typing import Annotated

from fastapi import APIRouter, Depends, Response
from fastapi.security import OAuth2PasswordRequestForm

from src.api.auth_utils import issue_token, verify_password
from src.api.deps import get_current_identity, get_rules, get_user_repo
from src.api.schemas import IdentityResponse, Token
from src.domain.entities import Identity
from src.domain.errors import AuthenticationError
from src.ports.repo import IdentityRepoPort
from src.rules.models import Rules

router = APIRouter()


@router.post("/login", response_model=Token)
async def login_for_access_token(
    response: Response,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    user_repo: IdentityRepoPort = Depends(get_user_repo),
    rules: Rules = Depends(get_rules),
) -> Token:
    """Check credentials and return an access token."""
    user = user_repo.get_by_email(form_data.username)
    if not user or not verify_password(form_data.password, user.password_hash):
        raise AuthenticationError("Incorrect username or password")

    if user.status != "active":
        raise AuthenticationError("User account is inactive")

    ttl_minutes = rules.auth.access_token_ttl_minutes
    access_token = issue_token(user.id, user.role, ttl_minutes=ttl_minutes)

    # Set HttpOnly Cookie
    response.set_cookie(
        key="access_token",
        value=f"Bearer {access_token}",
        httponly=True,
        max_age=ttl_minutes * 60,
        expires=ttl_minutes * 60,
        samesite="lax",
        secure=False,  # Set to True for HTTPS prod
    )

    return Token(access_token=access_token, token_type="bearer")


@router.post("/logout")
def logout(response: Response) -> dict[str, str]:
    """Log out user by clearing cookie."""
    response.delete_cookie(key="access_token")
    return {"status": "success"}


@router.get("/me", response_model=IdentityResponse)
def read_identity(
    identity: Identity = Depends(get_current_identity),
) -> IdentityResponse:
    """Identity lookup: {id, role} of the caller."""
    return IdentityResponse(id=identity.id, role=identity.role)
