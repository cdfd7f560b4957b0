import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from src.adapters.clock import SystemClock
from src.adapters.sqlite.repos import SQLiteMangaRepo, SQLiteUserRepo
from src.api.auth_utils import token_subject
from src.domain.entities import Identity
from src.domain.errors import AuthenticationError, StorageError
from src.domain.policy import PolicyEngine
from src.ports.blobstore import BlobStorePort
from src.ports.repo import IdentityRepoPort
from src.rules.loader import load_rules_cached
from src.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("MANGA_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "manga.db")
        self.rules_path = Path(
            os.environ.get("MANGA_RULES_PATH", str(self.base_dir / "rules.yaml"))
        )
        self.migrations_dir = Path(
            os.environ.get("MANGA_MIGRATIONS_DIR", str(self.base_dir / "migrations"))
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return load_rules_cached(settings.rules_path)


# --- Repos ---
def get_manga_repo(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
) -> SQLiteMangaRepo:
    return SQLiteMangaRepo(settings.db_path, timeout=rules.storage.busy_timeout_seconds)


def get_user_repo(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
) -> IdentityRepoPort:
    return SQLiteUserRepo(settings.db_path, timeout=rules.storage.busy_timeout_seconds)


# --- Blob store ---
def get_blob_store(request: Request) -> BlobStorePort:
    """The handle built once in the application lifespan."""
    store: BlobStorePort | None = getattr(request.app.state, "blob_store", None)
    if store is None:
        raise StorageError("Blob store not initialised")
    return store


# --- Services ---
def get_policy() -> PolicyEngine:
    return PolicyEngine()


# Time adapter for deterministic time operations
_clock_instance: SystemClock | None = None


def get_clock() -> SystemClock:
    """Get clock singleton."""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = SystemClock()
    return _clock_instance


# --- Auth ---
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _resolve_identity(
    request: Request,
    token: str | None,
    user_repo: IdentityRepoPort,
) -> Identity | None:
    # 1. Try Cookie first (HttpOnly)
    cookie_token = request.cookies.get("access_token")
    if not token and cookie_token and cookie_token.startswith("Bearer "):
        token = cookie_token.split(" ", 1)[1]

    if not token:
        return None

    # 2. Identity lookup (active users only); the role comes from the store, not the token
    identity = user_repo.get_identity(token_subject(token))
    if identity is None:
        raise AuthenticationError("User not found")
    return identity


async def get_current_identity(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    user_repo: IdentityRepoPort = Depends(get_user_repo),
) -> Identity:
    identity = _resolve_identity(request, token, user_repo)
    if identity is None:
        raise AuthenticationError("Not authenticated")
    return identity


async def get_optional_identity(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    user_repo: IdentityRepoPort = Depends(get_user_repo),
) -> Identity | None:
    """Anonymous callers get None; a present but invalid credential is still a 401."""
    return _resolve_identity(request, token, user_repo)
