"""Template engine: language fallback, compiled-template cache, channel post-processing."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..delivery import Channel, RenderedContent
from ..exceptions import TemplateNotFoundError, TemplateRenderError
from .compiler import CompiledTemplate, compile_template, has_value
from .helpers import DEFAULT_HELPERS
from .text import html_to_text

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ..ports.stores import ITemplateStore
    from .compiler import Helper
    from .model import ChannelTemplate, Template

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 1600
ELLIPSIS = "..."


@dataclass(frozen=True)
class CompiledChannel:
    text: CompiledTemplate
    subject: CompiledTemplate | None = None
    html: CompiledTemplate | None = None
    title: CompiledTemplate | None = None
    kind: str | None = None


@dataclass(frozen=True)
class CompiledTemplateSet:
    """Every channel fragment of one template version, compiled once."""

    name: str
    language: str
    version: int
    channels: dict[Channel, CompiledChannel]
    required: tuple[str, ...] = ()


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending with an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(ELLIPSIS))] + ELLIPSIS


class TemplateEngine:
    """
    Renders named templates per channel and language.

    Lookup order is the exact (name, language) pair, then the platform default
    language, then :class:`TemplateNotFoundError`. Compiled forms are cached by
    the resolved (name, language) key and evicted only by :meth:`invalidate`
    (called by :meth:`put_template`), never by age.
    """

    def __init__(
        self,
        store: ITemplateStore,
        *,
        default_language: str = "en",
        strict: bool = False,
        sms_max_length: int = SMS_MAX_LENGTH,
        helpers: Mapping[str, Helper] | None = None,
        revalidate_seconds: float | None = 30.0,
    ) -> None:
        self._store = store
        self._revalidate_seconds = revalidate_seconds
        self._default_language = default_language
        self._strict = strict
        self._sms_max_length = sms_max_length
        self._helpers: dict[str, Helper] = dict(DEFAULT_HELPERS)
        if helpers:
            self._helpers.update(helpers)
        self._helper_names = frozenset(self._helpers)
        self._cache: dict[tuple[str, str], CompiledTemplateSet] = {}
        # resolved key -> monotonic time the store was last consulted
        self._checked_at: dict[tuple[str, str], float] = {}
        # requested (name, language) -> resolved (name, language) after fallback
        self._aliases: dict[tuple[str, str], tuple[str, str]] = {}

    @property
    def default_language(self) -> str:
        return self._default_language

    # -- cache ------------------------------------------------------------

    def invalidate(self, name: str, language: str | None = None) -> None:
        """Evict compiled forms of ``name`` (one language or all)."""
        for key in [k for k in self._cache if k[0] == name]:
            if language is None or key[1] == language:
                del self._cache[key]
                self._checked_at.pop(key, None)
        # Any fallback alias for the name may now resolve differently.
        for alias in [a for a in self._aliases if a[0] == name]:
            del self._aliases[alias]

    def cached_keys(self) -> set[tuple[str, str]]:
        return set(self._cache)

    async def put_template(self, template: Template) -> Template:
        """Store a new template version and evict its stale compiled form."""
        stored = await self._store.put(template)
        self.invalidate(stored.name, stored.language)
        logger.info(
            "Template %s/%s stored as version %d",
            stored.name,
            stored.language,
            stored.version,
        )
        return stored

    # -- lookup -----------------------------------------------------------

    async def compile(self, name: str, language: str | None = None) -> CompiledTemplateSet:
        """Return the compiled template set for name/language, with fallback."""
        requested = (name, language or self._default_language)
        resolved = self._aliases.get(requested, requested)
        cached = self._cache.get(resolved)
        if cached is not None and not self._is_stale(resolved):
            return cached

        template = await self._load_with_fallback(name, requested[1])
        self._checked_at[template.key] = time.monotonic()
        current = self._cache.get(template.key)
        if current is not None and current.version == template.version:
            compiled = current
        else:
            if cached is not None:
                logger.info(
                    "Template %s/%s changed to version %d, recompiling",
                    template.name,
                    template.language,
                    template.version,
                )
            compiled = self._compile(template)
            self._cache[template.key] = compiled
        if template.key != requested:
            self._aliases[requested] = template.key
        else:
            self._aliases.pop(requested, None)
        return compiled

    def _is_stale(self, key: tuple[str, str]) -> bool:
        if self._revalidate_seconds is None:
            return False
        checked = self._checked_at.get(key)
        return checked is None or time.monotonic() - checked >= self._revalidate_seconds

    async def _load_with_fallback(self, name: str, language: str) -> Template:
        template = await self._store.get(name, language)
        if template is not None and template.active:
            return template
        if language != self._default_language:
            fallback = await self._store.get(name, self._default_language)
            if fallback is not None and fallback.active:
                logger.debug(
                    "Template %s has no %s version, using %s",
                    name,
                    language,
                    self._default_language,
                )
                return fallback
        raise TemplateNotFoundError(name, language)

    def _compile(self, template: Template) -> CompiledTemplateSet:
        channels = {
            channel: self._compile_channel(fragment)
            for channel, fragment in template.channels.items()
        }
        return CompiledTemplateSet(
            name=template.name,
            language=template.language,
            version=template.version,
            channels=channels,
            required=template.variables,
        )

    def _compile_channel(self, fragment: ChannelTemplate) -> CompiledChannel:
        def _c(source: str | None) -> CompiledTemplate | None:
            return compile_template(source, self._helper_names) if source else None

        return CompiledChannel(
            text=compile_template(fragment.text, self._helper_names),
            subject=_c(fragment.subject),
            html=_c(fragment.html),
            title=_c(fragment.title),
            kind=fragment.kind,
        )

    # -- rendering --------------------------------------------------------

    async def render(
        self,
        name: str,
        language: str | None,
        channel: Channel,
        data: Mapping[str, Any],
    ) -> RenderedContent:
        """Render ``name`` for ``channel``; helpers format for ``language``."""
        compiled = await self.compile(name, language)
        fragment = compiled.channels.get(channel)
        if fragment is None:
            raise TemplateNotFoundError(name, compiled.language, channel.value)

        lang = language or compiled.language
        unresolved: list[str] = [v for v in compiled.required if not has_value(data, v)]

        def _render(part: CompiledTemplate | None, *, escape: bool = False) -> str | None:
            if part is None:
                return None
            out = part.render(data, helpers=self._helpers, language=lang, escape=escape)
            unresolved.extend(out.unresolved)
            return out.text

        text = _render(fragment.text) or ""
        subject = _render(fragment.subject)
        body_html = _render(fragment.html, escape=True)
        title = _render(fragment.title)

        missing = sorted(set(unresolved))
        if missing:
            if self._strict:
                raise TemplateRenderError(name, missing)
            logger.warning(
                "Template %s/%s rendered with unresolved variables: %s",
                name,
                channel.value,
                ", ".join(missing),
            )

        return self._post_process(channel, text, subject, body_html, title, fragment.kind)

    def _post_process(
        self,
        channel: Channel,
        text: str,
        subject: str | None,
        body_html: str | None,
        title: str | None,
        kind: str | None,
    ) -> RenderedContent:
        if channel == Channel.EMAIL:
            body_text = text.strip() or (html_to_text(body_html) if body_html else "")
            return RenderedContent(
                channel=channel,
                body_text=body_text,
                subject=subject,
                body_html=body_html,
            )
        if channel == Channel.SMS:
            return RenderedContent(
                channel=channel,
                body_text=truncate(text.strip(), self._sms_max_length),
            )
        if channel == Channel.PUSH:
            push_title, push_body = _split_title(title, text.strip())
            return RenderedContent(channel=channel, title=push_title, body_text=push_body)
        in_app_title, in_app_body = _split_title(title, text.strip())
        return RenderedContent(
            channel=channel,
            title=in_app_title,
            body_text=in_app_body,
            kind=kind or "info",
        )


def _split_title(title: str | None, text: str) -> tuple[str, str]:
    """Use the explicit title, otherwise the first line of the text."""
    if title:
        return title.strip(), text
    head, _, rest = text.partition("\n")
    return head.strip(), rest.strip() or head.strip()
