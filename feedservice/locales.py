"""Locale value object: country code, language and storefront locale."""

from dataclasses import dataclass, field

from feedservice.config import LANGUAGE_TO_COUNTRY, LOCALE_TO_COUNTRY, SHORT_TO_LONG_LANGUAGE

__all__ = ["Locale", "LocaleError"]


class LocaleError(ValueError):
    """Raised when a locale is incomplete or unknown."""
    pass


@dataclass(frozen=True)
class Locale:
    """For example: SE - sv - sv_se"""

    country: str
    language: str
    locale: str
    long_language: str = field(init=False, default="")

    def __post_init__(self) -> None:
        long_language = SHORT_TO_LONG_LANGUAGE.get(self.language.lower())
        if long_language is None:
            raise LocaleError(f"Couldn't find long language for {self.language!r}")
        object.__setattr__(self, "long_language", long_language)
        self.validate()

    def validate(self) -> None:
        if not all([self.country, self.language, self.locale]):
            raise LocaleError(f"Locale incomplete - {self}")

        if len(self.language) != 2 or len(self.country) != 2:
            raise LocaleError("Language and country code need to be two letters")

        if self.country.upper() not in LANGUAGE_TO_COUNTRY.get(self.language.lower(), []):
            raise LocaleError(f"Couldn't map language to country - {self}")

        if self.country.upper() not in LOCALE_TO_COUNTRY.get(self.locale.lower(), []):
            raise LocaleError(f"Couldn't map locale to country - {self}")

    @classmethod
    def sweden(cls) -> "Locale":
        return cls("SE", "sv", "sv_se")
