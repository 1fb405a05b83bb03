from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


_BROWSER_SAME_SITE = ("Strict", "Lax", "None")


class Cookie(BaseModel):
    """
    One persisted cookie record.

    Field aliases follow the browser's own cookie shape (`httpOnly`, `sameSite`) so the
    session file stays readable by other tooling.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    value: str
    domain: str
    path: str = "/"
    expires: Optional[float] = None
    http_only: bool = Field(default=False, alias="httpOnly")
    secure: bool = False
    same_site: Optional[str] = Field(default=None, alias="sameSite")

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_browser_param(self) -> dict[str, Any]:
        # Session cookies come back from the browser with expires=-1; the add API rejects that value.
        param = self.to_record()
        if self.expires is None or self.expires < 0:
            param.pop("expires", None)
        if self.same_site not in _BROWSER_SAME_SITE:
            param.pop("sameSite", None)
        return param


# Ordered set of cookie records; validity is only ever established by probing a protected page.
Session = list[Cookie]


class ExtractionResult(BaseModel):
    """
    Output contract handed to the interpreter: `{content, method, rawSize, cleanedSize}`.
    """

    model_config = ConfigDict(populate_by_name=True)

    content: str
    method: str
    raw_size: int = Field(alias="rawSize")
    cleaned_size: int = Field(alias="cleanedSize")

    @property
    def reduction_pct(self) -> float:
        if self.raw_size <= 0:
            return 0.0
        return (self.raw_size - self.cleaned_size) / self.raw_size * 100.0

    @property
    def degraded(self) -> bool:
        # The full-page fallback is a valid result, just a much larger payload.
        return self.method == "full-page"

    def to_contract(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
