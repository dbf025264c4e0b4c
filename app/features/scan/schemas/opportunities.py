"""
Opportunities Schemas

Request and response models for the opportunities scan endpoints.
Wire names are camelCase; Python attributes are snake_case.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Content items
# ============================================================================

class PlagiarismSource(BaseModel):
    url: str
    note: str = ""


class ContentItem(CamelModel):
    """A discovered URL and its extracted content."""
    url: str
    title: str = ""
    description: str = ""
    word_count: int = Field(default=0, ge=0, alias="wordCount")
    content_html: str = Field(default="", alias="contentHtml")
    is_draft: bool = Field(default=False, alias="isDraft")
    plagiarism: Optional[int] = Field(default=None, ge=0, le=100)
    plagiarism_checked_at: Optional[str] = Field(default=None, alias="plagiarismCheckedAt")
    plagiarism_sources: List[PlagiarismSource] = Field(default_factory=list, alias="plagiarismSources")

    @field_validator("word_count", mode="before")
    @classmethod
    def coerce_word_count(cls, v):
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# ============================================================================
# Opportunities
# ============================================================================

class OpportunitiesRequest(CamelModel):
    website_url: Optional[str] = Field(default=None, alias="websiteUrl")
    allow_subdomains: bool = Field(default=False, alias="allowSubdomains")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "websiteUrl": "https://example.com",
                "allowSubdomains": False,
            }
        },
    )


class OpportunitiesSource(CamelModel):
    scan_id: Optional[str] = Field(default=None, alias="scanId")
    status: Optional[str] = None
    mode: str = "published"
    provider: Optional[str] = None
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
    from_cache: bool = Field(default=False, alias="fromCache")
    allow_subdomains: bool = Field(default=False, alias="allowSubdomains")


class OpportunitiesResponse(CamelModel):
    website_url: Optional[str] = Field(default=None, alias="websiteUrl")
    hostname: str
    blogs: List[ContentItem] = Field(default_factory=list)
    pages: List[ContentItem] = Field(default_factory=list)
    source: OpportunitiesSource


# ============================================================================
# Scan status
# ============================================================================

class ScanStatusResponse(CamelModel):
    scan_id: str = Field(alias="scanId")
    status: str
    hostname: str
    mode: str = "published"
    provider: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


# ============================================================================
# Draft scan / plagiarism
# ============================================================================

class DraftScanRequest(BaseModel):
    """
    WordPress example:
        {"hostname": "example.com", "provider": "wordpress",
         "payload": {"siteUrl": "https://example.com", "postId": 6195,
                     "authBasic": "<base64(username:app_password)>"}}
    """
    hostname: Optional[str] = None
    provider: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


class PlagiarismRequest(CamelModel):
    url: str = ""
    draft_html: str = Field(default="", alias="draftHtml")
    draft_text: str = Field(default="", alias="draftText")
    source_url: str = Field(default="", alias="sourceUrl")
    source_html: str = Field(default="", alias="sourceHtml")
    source_text: str = Field(default="", alias="sourceText")
    cache_key: str = Field(default="", alias="cacheKey")


class PlagiarismResponse(CamelModel):
    plagiarism: int = Field(ge=0, le=100)
    sources: List[PlagiarismSource] = Field(default_factory=list)
    notes: str = ""
    checked_at: str = Field(alias="checkedAt")
    cache_key: str = Field(default="", alias="cacheKey")
