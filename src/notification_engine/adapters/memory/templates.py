"""In-memory template store for testing and inline templates."""

from __future__ import annotations

from ...ports.stores import ITemplateStore
from ...templates.model import Template


class InMemoryTemplateStore(ITemplateStore):
    """Keeps every version; ``get`` returns the latest stored version."""

    def __init__(self, templates: list[Template] | None = None) -> None:
        # Key: (name, language) -> versions, oldest first
        self._versions: dict[tuple[str, str], list[Template]] = {}
        self.reads = 0
        for template in templates or []:
            self._versions.setdefault(template.key, []).append(template)

    async def get(self, name: str, language: str) -> Template | None:
        self.reads += 1
        versions = self._versions.get((name, language))
        return versions[-1] if versions else None

    async def put(self, template: Template) -> Template:
        versions = self._versions.setdefault(template.key, [])
        version = versions[-1].version + 1 if versions else max(template.version, 1)
        stored = template.model_copy(update={"version": version})
        versions.append(stored)
        return stored

    def history(self, name: str, language: str) -> list[Template]:
        return list(self._versions.get((name, language), []))
