"""
Schemas for the client-side session.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNSET = "unset"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Gender":
        """
        Parse a stored or user-supplied gender value.

        Accepts canonical values and the registration form's
        Spanish options. Unknown values map to UNSET.
        """
        if not value:
            return cls.UNSET

        normalized = value.strip().lower()
        aliases = {
            "hombre": cls.MALE,
            "mujer": cls.FEMALE,
            "otro": cls.OTHER,
            "nd": cls.UNSET,
        }
        if normalized in aliases:
            return aliases[normalized]

        try:
            return cls(normalized)
        except ValueError:
            return cls.UNSET


class UserProfile(BaseModel):
    """
    Profile attributes attached to a logged-in identity.
    """

    name: Optional[str] = Field(None, description="Display name")
    gender: Gender = Field(Gender.UNSET, description="Self-reported gender")
    country: Optional[str] = Field(None, description="Country of residence")

    def is_empty(self) -> bool:
        return not (self.name or self.country or self.gender != Gender.UNSET)

    def as_context(self) -> Optional[dict]:
        """
        Profile snippet sent along with chat requests.

        Returns None when every field is empty.
        """
        if self.is_empty():
            return None

        return {
            "name": self.name or "",
            "gender": "" if self.gender == Gender.UNSET else self.gender.value,
            "country": self.country or "",
        }


class Session(BaseModel):
    """
    Authenticated identity and its metadata.

    A session without a token carries no profile and no flags.
    """

    token: Optional[str] = None
    email: Optional[str] = None
    profile: Optional[UserProfile] = None

    is_sponsor: bool = False
    is_premium: bool = False
    is_sponsor_active: bool = False
    is_premium_active: bool = False

    # Billing details; held in memory only, reloaded after restore
    subscription_type: Optional[str] = None
    premium_valid_until: Optional[str] = None
    sponsor_valid_until: Optional[str] = None

    session_timeout_minutes: int = Field(30, ge=0)

    @property
    def is_logged_in(self) -> bool:
        return bool(self.token)
