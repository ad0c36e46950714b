from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from notification_engine.adapters.memory import (
    InMemoryAuditStore,
    InMemoryJobStore,
    InMemoryPreferenceStore,
    InMemoryRecipientDirectory,
    InMemoryTemplateStore,
)
from notification_engine.channels import InMemoryChannelAdapter
from notification_engine.delivery import Channel
from notification_engine.instrumentation import HookRegistry, set_hook_registry
from notification_engine.orchestrator import NotificationOrchestrator
from notification_engine.preferences import PreferenceResolver
from notification_engine.queue import (
    DeliveryQueue,
    DeliveryWorkerPool,
    RetryPolicy,
)
from notification_engine.templates import ChannelTemplate, Template, TemplateEngine

pytest_plugins = ["pytest_asyncio"]

# Noon in Toronto: outside the default quiet-hours window.
NOON_UTC = datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)


def welcome_template(language: str = "en") -> Template:
    greeting = "Bonjour" if language == "fr" else "Hello"
    return Template(
        name="welcome",
        language=language,
        channels={
            Channel.EMAIL: ChannelTemplate(
                subject=f"{greeting} {{{{name}}}}",
                html="<p>" + greeting + " <b>{{name}}</b></p>",
                text=f"{greeting} {{{{name}}}}",
            ),
            Channel.SMS: ChannelTemplate(text=f"{greeting} {{{{name}}}}"),
            Channel.PUSH: ChannelTemplate(title="Welcome", text=f"{greeting} {{{{name}}}}"),
            Channel.IN_APP: ChannelTemplate(
                title="Welcome", text=f"{greeting} {{{{name}}}}", kind="success"
            ),
        },
        variables=("name",),
    )


@pytest.fixture(autouse=True)
def hook_registry() -> HookRegistry:
    registry = HookRegistry()
    set_hook_registry(registry)
    return registry


@pytest.fixture
def preference_store() -> InMemoryPreferenceStore:
    return InMemoryPreferenceStore()


@pytest.fixture
def preferences(preference_store: InMemoryPreferenceStore) -> PreferenceResolver:
    return PreferenceResolver(preference_store)


@pytest.fixture
def template_store() -> InMemoryTemplateStore:
    return InMemoryTemplateStore([welcome_template("en"), welcome_template("fr")])


@pytest.fixture
def templates(template_store: InMemoryTemplateStore) -> TemplateEngine:
    return TemplateEngine(template_store)


@pytest.fixture
def directory() -> InMemoryRecipientDirectory:
    directory = InMemoryRecipientDirectory()
    directory.add_recipient(
        "u1", email="u1@example.com", phone="+14165550101", push_tokens=["tok-u1-" + "a" * 32]
    )
    directory.add_recipient(
        "u2", email="u2@example.com", phone="+14165550102", push_tokens=["tok-u2-" + "b" * 32]
    )
    directory.add_recipient("u3", email="u3@example.com")
    directory.add_group("team", ["u1", "u2", "u3"])
    return directory


@pytest.fixture
def audit() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def channel_adapters() -> dict[Channel, InMemoryChannelAdapter]:
    return {channel: InMemoryChannelAdapter(channel) for channel in Channel}


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def queue(
    job_store: InMemoryJobStore, channel_adapters: dict[Channel, InMemoryChannelAdapter]
) -> DeliveryQueue:
    return DeliveryQueue(
        job_store,
        channel_adapters,
        retry_policy=RetryPolicy(base_delay=0, max_delay=0, jitter=False),
    )


@pytest.fixture
def workers(queue: DeliveryQueue) -> DeliveryWorkerPool:
    return DeliveryWorkerPool(queue, size=4)


@pytest_asyncio.fixture
async def orchestrator(
    preferences: PreferenceResolver,
    templates: TemplateEngine,
    queue: DeliveryQueue,
    directory: InMemoryRecipientDirectory,
    audit: InMemoryAuditStore,
) -> NotificationOrchestrator:
    return NotificationOrchestrator(preferences, templates, queue, directory, audit)
