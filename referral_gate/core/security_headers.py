"""Static security header policy applied to every filtered response.

The only switch is ``is_development``: live-reload tooling needs
``'unsafe-eval'`` scripts and plain websocket connections, production does not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, MutableMapping

from referral_gate.core.config import Settings, parse_csv

BASE_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}


def _directive(name: str, sources: Iterable[str]) -> str:
    return " ".join([name, *sources])


@dataclass(frozen=True)
class SecurityHeaderPolicy:
    """Header table keyed by a single development/production flag.

    Attributes:
        is_development: Emit the permissive development CSP.
        script_sources: Extra script-src origins.
        style_sources: Extra style-src origins.
        font_sources: Extra font-src origins.
        image_sources: Extra img-src origins.
        connect_sources: Extra connect-src origins.
    """

    is_development: bool = False
    script_sources: tuple[str, ...] = ()
    style_sources: tuple[str, ...] = ()
    font_sources: tuple[str, ...] = ()
    image_sources: tuple[str, ...] = ()
    connect_sources: tuple[str, ...] = ()
    _headers: dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        headers = dict(BASE_HEADERS)
        headers["Content-Security-Policy"] = self.content_security_policy()
        object.__setattr__(self, "_headers", headers)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecurityHeaderPolicy":
        sec = settings.security
        return cls(
            is_development=settings.is_development,
            script_sources=tuple(parse_csv(sec.script_sources)),
            style_sources=tuple(parse_csv(sec.style_sources)),
            font_sources=tuple(parse_csv(sec.font_sources)),
            image_sources=tuple(parse_csv(sec.image_sources)),
            connect_sources=tuple(parse_csv(sec.connect_sources)),
        )

    def content_security_policy(self) -> str:
        """Render the Content-Security-Policy value for this mode."""
        script = ["'self'", "'unsafe-inline'"]
        if self.is_development:
            script.append("'unsafe-eval'")
        connect = ["'self'", *self.connect_sources]
        if self.is_development:
            connect += ["ws:", "wss:"]

        directives = [
            _directive("default-src", ["'self'"]),
            _directive("script-src", [*script, *self.script_sources]),
            _directive("style-src", ["'self'", "'unsafe-inline'", *self.style_sources]),
            _directive("font-src", ["'self'", *self.font_sources]),
            _directive("img-src", ["'self'", "data:", *self.image_sources, "blob:"]),
            _directive("connect-src", connect),
        ]
        return "; ".join(directives) + ";"

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def apply(self, headers: MutableMapping[str, str]) -> None:
        """Set every policy header on a response header mapping."""
        for name, value in self._headers.items():
            headers[name] = value
