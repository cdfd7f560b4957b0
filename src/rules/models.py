from pydantic import BaseModel, Field, model_validator


class ProjectRules(BaseModel):
    slug: str
    rules_version: str


class FileKindRules(BaseModel):
    mime_types: list[str]
    extensions: list[str]


class UploadsRules(BaseModel):
    max_upload_bytes: int = Field(gt=0)
    chunk_size_bytes: int = Field(gt=0)
    kinds: dict[str, FileKindRules]
    cover_kinds: list[str]

    @model_validator(mode="after")
    def _cover_kinds_known(self) -> "UploadsRules":
        unknown = [k for k in self.cover_kinds if k not in self.kinds]
        if unknown:
            raise ValueError(f"cover_kinds reference unknown kinds: {unknown}")
        return self

    @property
    def allowlist_mime_types(self) -> list[str]:
        return sorted({m for kind in self.kinds.values() for m in kind.mime_types})

    @property
    def allowlist_extensions(self) -> list[str]:
        return sorted({e for kind in self.kinds.values() for e in kind.extensions})


class RangeRule(BaseModel):
    min: int
    max: int | None = None


class ContentRules(BaseModel):
    title: RangeRule
    description: RangeRule
    genre_items: RangeRule
    release_year: RangeRule  # max omitted means "current year"
    rejection_reason_max: int


class StorageRules(BaseModel):
    busy_timeout_seconds: float = Field(gt=0)


class AuthRules(BaseModel):
    access_token_ttl_minutes: int = Field(gt=0)


class Rules(BaseModel):
    project: ProjectRules
    uploads: UploadsRules
    content: ContentRules
    storage: StorageRules
    auth: AuthRules
