"""Template definitions: per-channel fragments keyed by (name, language)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from ..delivery import Channel


class ChannelTemplate(BaseModel):
    """Raw template fragments for one channel.

    Email uses ``subject``, ``html`` and ``text``; SMS uses ``text``; push and
    in-app use ``title`` and ``text``; in-app may set ``kind``.
    """

    model_config = ConfigDict(frozen=True)

    text: str = ""
    subject: str | None = None
    html: str | None = None
    title: str | None = None
    kind: str | None = None


class Template(BaseModel):
    """Immutable template version.

    Storing a template with an existing (name, language) key creates a new
    version; compiled forms of the previous version are evicted by the engine.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    language: str = "en"
    channels: dict[Channel, ChannelTemplate] = Field(default_factory=dict)
    variables: tuple[str, ...] = ()
    version: int = 1
    active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.language)
