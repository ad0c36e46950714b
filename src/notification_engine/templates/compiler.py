"""Template compiler: parses ``{{...}}`` placeholders into a token list once."""

from __future__ import annotations

import html
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    Helper = Callable[[list[Any], str], str]

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")
_PATH = re.compile(r"^[A-Za-z_]\w*(?:\.\w+)*$")

_MISSING = object()


@dataclass(frozen=True)
class TextToken:
    text: str


@dataclass(frozen=True)
class VariableToken:
    path: str
    raw: str


@dataclass(frozen=True)
class HelperToken:
    helper: str
    args: tuple[str, ...]
    raw: str


Token = TextToken | VariableToken | HelperToken


@dataclass(frozen=True)
class RenderOutput:
    text: str
    unresolved: tuple[str, ...] = ()


def resolve_path(data: Mapping[str, Any], path: str) -> Any:
    """Walk a dotted path through mappings and attributes.

    Returns the module-private ``_MISSING`` sentinel when any segment is
    absent or the value is None.
    """
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING or current is None:
            return _MISSING
    return current


def has_value(data: Mapping[str, Any], path: str) -> bool:
    return resolve_path(data, path) is not _MISSING


@dataclass(frozen=True)
class CompiledTemplate:
    """A template fragment pre-parsed into text, variable and helper tokens."""

    source: str
    tokens: tuple[Token, ...]
    variables: frozenset[str] = field(default_factory=frozenset)

    def render(
        self,
        data: Mapping[str, Any],
        *,
        helpers: Mapping[str, Helper] | None = None,
        language: str = "en",
        escape: bool = False,
    ) -> RenderOutput:
        """Substitute tokens. Unresolved placeholders stay verbatim and are
        reported in ``RenderOutput.unresolved``."""
        helpers = helpers or {}
        parts: list[str] = []
        unresolved: list[str] = []
        for token in self.tokens:
            if isinstance(token, TextToken):
                parts.append(token.text)
            elif isinstance(token, VariableToken):
                value = resolve_path(data, token.path)
                if value is _MISSING:
                    unresolved.append(token.path)
                    parts.append(token.raw)
                    continue
                text = str(value)
                parts.append(html.escape(text) if escape else text)
            else:
                rendered = self._render_helper(token, data, helpers, language)
                if rendered is None:
                    unresolved.append(token.raw.strip("{} "))
                    parts.append(token.raw)
                    continue
                parts.append(html.escape(rendered) if escape else rendered)
        return RenderOutput(text="".join(parts), unresolved=tuple(unresolved))

    @staticmethod
    def _render_helper(
        token: HelperToken,
        data: Mapping[str, Any],
        helpers: Mapping[str, Helper],
        language: str,
    ) -> str | None:
        helper = helpers.get(token.helper)
        if helper is None:
            return None
        values = [resolve_path(data, arg) for arg in token.args]
        if any(v is _MISSING for v in values):
            return None
        return helper(values, language)


def compile_template(source: str, helper_names: frozenset[str] = frozenset()) -> CompiledTemplate:
    """Parse ``source`` into tokens.

    ``{{path.to.value}}`` becomes a variable token; ``{{helper arg ...}}``
    becomes a helper token when ``helper`` is a known helper name; a bare
    ``{{helper}}`` with no arguments is also a helper call. Anything else
    between braces is kept as literal text.
    """
    tokens: list[Token] = []
    variables: set[str] = set()
    pos = 0
    for match in _PLACEHOLDER.finditer(source):
        if match.start() > pos:
            tokens.append(TextToken(source[pos : match.start()]))
        raw = match.group(0)
        words = match.group(1).split()
        if words and words[0] in helper_names and all(_PATH.match(w) for w in words[1:]):
            tokens.append(HelperToken(words[0], tuple(words[1:]), raw))
            variables.update(words[1:])
        elif len(words) == 1 and _PATH.match(words[0]):
            tokens.append(VariableToken(words[0], raw))
            variables.add(words[0])
        else:
            tokens.append(TextToken(raw))
        pos = match.end()
    if pos < len(source):
        tokens.append(TextToken(source[pos:]))
    return CompiledTemplate(source=source, tokens=tuple(tokens), variables=frozenset(variables))
