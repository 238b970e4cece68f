"""Shared data structures for nekomcp."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class CatPhoto:
    """Normalized projection of one upstream Cat API image record."""

    id: str
    url: str
    alt: str
    attribution: Optional[str] = None
    breed_name: Optional[str] = None
    temperament: Optional[str] = None
    origin: Optional[str] = None
    wikipedia_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "id": self.id,
            "url": self.url,
            "alt": self.alt,
            "attribution": self.attribution,
            "breedName": self.breed_name,
            "temperament": self.temperament,
            "origin": self.origin,
            "wikipediaUrl": self.wikipedia_url,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(slots=True)
class Metrics:
    """Simple counter metrics for the session control plane."""

    sessions_opened: int = 0
    sessions_closed: int = 0
    messages_routed: int = 0
    errors: int = 0

    def to_dict(self, active_sessions: int = 0) -> dict[str, Any]:
        return {
            "sessions_opened": self.sessions_opened,
            "sessions_closed": self.sessions_closed,
            "active_sessions": active_sessions,
            "messages_routed": self.messages_routed,
            "errors": self.errors,
        }
