from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_PROVIDERS = ("psi", "authority", "serper", "dataforseo", "content", "faqs", "keywords")
DEFAULT_PROVIDERS = ["psi", "authority", "serper", "dataforseo", "content"]


class SeoRequest(BaseModel):
    """Body of ``POST /seo``. Unknown provider names are ignored."""

    url: Optional[str] = None
    keyword: Optional[str] = None
    country_code: str = Field(default="in", alias="countryCode")
    language_code: str = Field(default="en", alias="languageCode")
    depth: int = Field(default=10, ge=1, le=100)
    keywords_only: bool = Field(default=False, alias="keywordsOnly")
    providers: List[str] = Field(default_factory=lambda: list(DEFAULT_PROVIDERS))

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "url": "https://example.com",
                "keyword": "seo audit tool",
                "countryCode": "in",
                "languageCode": "en",
                "providers": DEFAULT_PROVIDERS,
            }
        },
    )

    @field_validator("providers", mode="before")
    @classmethod
    def normalize_providers(cls, v):
        if v is None:
            return list(DEFAULT_PROVIDERS)
        if isinstance(v, str):
            v = v.split(",")
        out = []
        for name in v:
            name = str(name or "").strip().lower()
            if name in SUPPORTED_PROVIDERS and name not in out:
                out.append(name)
        return out

    @field_validator("keyword", mode="before")
    @classmethod
    def blank_keyword_is_none(cls, v):
        v = str(v).strip() if v is not None else ""
        return v or None

    def wants(self, provider: str) -> bool:
        return provider in self.providers
