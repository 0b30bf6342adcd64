"""Result values returned by the login flow handlers.

Handlers never raise to signal a redirect. They return one of ``Redirect``,
``Rendered`` or ``Failed`` together with the cookie changes to apply, and the
HTTP layer translates that into a response.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from passlink.shared.errors import PasslinkError


@dataclass(frozen=True)
class CookieUpdate:
    """A cookie to set, or to delete when ``value`` is None."""

    name: str
    value: str | None = field(default=None, repr=False)
    max_age: int | None = None

    @property
    def is_deletion(self) -> bool:
        return self.value is None

    @classmethod
    def set(cls, name: str, value: str, max_age: int | None = None) -> CookieUpdate:
        return cls(name=name, value=value, max_age=max_age)

    @classmethod
    def delete(cls, name: str) -> CookieUpdate:
        return cls(name=name)


@dataclass(frozen=True)
class Redirect:
    url: str
    cookies: tuple[CookieUpdate, ...] = ()


@dataclass(frozen=True)
class Rendered:
    view: str
    context: dict[str, Any] = field(default_factory=dict)
    cookies: tuple[CookieUpdate, ...] = ()


@dataclass(frozen=True)
class Failed:
    error: PasslinkError
    cookies: tuple[CookieUpdate, ...] = ()

    @property
    def category(self) -> str:
        return self.error.category.value


FlowResult = Redirect | Rendered | Failed
