"""
Pydantic models for the admission filter rule set.

A FilterConfig is built once per process and handed to every component by
reference. All models are frozen; nothing assigns into them at runtime.

Rule modes
----------
  none         nothing in this dimension is blocked
  all          everything in this dimension is blocked (except whitelist)
  list         only entries in the blacklist are blocked
  unspecified  any unrecognized mode string; treated as allow
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleMode(str, Enum):
    NONE = "none"
    ALL = "all"
    LIST = "list"
    UNSPECIFIED = "unspecified"


def _normalize_entries(value: Any) -> frozenset:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    return frozenset(str(v).strip().lower() for v in value if str(v).strip())


class RuleGroup(BaseModel):
    """Mode plus whitelist/blacklist for one rule dimension (domains or usernames)."""
    model_config = ConfigDict(frozen=True)

    mode: RuleMode = RuleMode.NONE
    whitelist: frozenset[str] = frozenset()
    blacklist: frozenset[str] = frozenset()

    @field_validator("mode", mode="before")
    @classmethod
    def coerce_mode(cls, v: Any) -> RuleMode:
        if isinstance(v, RuleMode):
            return v
        if not isinstance(v, str):
            return RuleMode.UNSPECIFIED
        try:
            return RuleMode(v.strip().lower())
        except ValueError:
            return RuleMode.UNSPECIFIED

    @field_validator("whitelist", "blacklist", mode="before")
    @classmethod
    def lowercase_entries(cls, v: Any) -> frozenset:
        return _normalize_entries(v)


class LengthRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int = 0
    max: Optional[int] = None  # None = unbounded


class AttachmentRule(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_count: Optional[int] = Field(default=None, alias="maxCount")  # None = unbounded


class FilterConfig(BaseModel):
    """Complete static rule configuration for the admission filter."""
    model_config = ConfigDict(frozen=True)

    domains: RuleGroup = RuleGroup()
    usernames: RuleGroup = RuleGroup()
    length: LengthRule = LengthRule()
    attachments: AttachmentRule = AttachmentRule()

    def to_public_dict(self) -> dict:
        """JSON-friendly view used in diagnostic payloads."""
        def group(g: RuleGroup) -> dict:
            return {
                "mode": g.mode.value,
                "whitelist": sorted(g.whitelist),
                "blacklist": sorted(g.blacklist),
            }

        return {
            "domains": group(self.domains),
            "usernames": group(self.usernames),
            "length": {"min": self.length.min, "max": self.length.max},
            "attachments": {"maxCount": self.attachments.max_count},
        }
