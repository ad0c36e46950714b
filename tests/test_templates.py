from __future__ import annotations

from datetime import date

import pytest

from notification_engine.adapters.memory import InMemoryTemplateStore
from notification_engine.delivery import Channel
from notification_engine.exceptions import TemplateNotFoundError, TemplateRenderError
from notification_engine.templates import (
    ChannelTemplate,
    Template,
    TemplateEngine,
    compile_template,
    truncate,
)
from notification_engine.templates.helpers import format_currency, format_date, format_number
from notification_engine.templates.text import html_to_text


def single(channel: Channel, language: str = "en", **fragment) -> Template:
    return Template(
        name="notice",
        language=language,
        channels={channel: ChannelTemplate(**fragment)},
    )


class TestCompiler:
    def test_tokens(self):
        compiled = compile_template(
            "Hi {{user.name}}, {{formatDate due}} {{ not a var }}", frozenset({"formatDate"})
        )
        assert compiled.variables == {"user.name", "due"}
        out = compiled.render({"user": {"name": "Ann"}, "due": "2026-03-05"})
        # Helpers are only applied when passed in.
        assert out.text.startswith("Hi Ann, {{formatDate due}}")
        assert out.unresolved == ("formatDate due",)

    def test_unresolved_placeholders_stay_verbatim(self):
        out = compile_template("Dear {{name}}").render({})
        assert out.text == "Dear {{name}}"
        assert out.unresolved == ("name",)

    def test_none_counts_as_missing(self):
        out = compile_template("{{name}}").render({"name": None})
        assert out.unresolved == ("name",)

    def test_attribute_paths(self):
        class Order:
            number = 42

        assert compile_template("#{{order.number}}").render({"order": Order()}).text == "#42"

    def test_html_escaping(self):
        out = compile_template("<b>{{name}}</b>").render({"name": "<script>"}, escape=True)
        assert out.text == "<b>&lt;script&gt;</b>"


class TestHelpers:
    def test_format_date(self):
        assert format_date(date(2026, 3, 5), "en") == "March 5, 2026"
        assert format_date("2026-03-05T10:00:00Z", "fr") == "5 mars 2026"
        assert format_date("not a date") == "not a date"

    def test_format_number(self):
        assert format_number(1234567.891) == "1,234,567.89"
        assert format_number(1234.5, "fr") == "1\u202f234,50"
        assert format_number("abc") == "abc"

    def test_format_currency(self):
        assert format_currency(10) == "$10.00"
        assert format_currency(10, "fr") == "10,00 $"

    def test_html_to_text(self):
        text = html_to_text(
            "<html><head><style>p{}</style></head><body>"
            "<h1>Title</h1><p>See <a href='https://x.test'>this</a></p>"
            "<ul><li>one</li><li>two</li></ul></body></html>"
        )
        assert text == "Title\n\nSee this (https://x.test)\n\n- one\n\n- two"

    def test_truncate(self):
        assert truncate("short", 10) == "short"
        assert truncate("abcdefghij", 6) == "abc..."


@pytest.mark.asyncio
class TestTemplateEngine:
    async def test_render_email(self, templates):
        content = await templates.render("welcome", "en", Channel.EMAIL, {"name": "<Ann>"})

        assert content.subject == "Hello <Ann>"
        assert content.body_html == "<p>Hello <b>&lt;Ann&gt;</b></p>"
        assert content.body_text == "Hello <Ann>"

    async def test_email_text_derived_from_html(self):
        engine = TemplateEngine(
            InMemoryTemplateStore([single(Channel.EMAIL, subject="s", html="<p>Hi {{name}}</p>")])
        )
        content = await engine.render("notice", "en", Channel.EMAIL, {"name": "Ann"})
        assert content.body_text == "Hi Ann"

    async def test_language_fallback(self, template_store):
        engine = TemplateEngine(template_store)

        french = await engine.render("welcome", "fr", Channel.SMS, {"name": "Ann"})
        cree = await engine.render("welcome", "cree", Channel.SMS, {"name": "Ann"})

        assert french.body_text == "Bonjour Ann"
        assert cree.body_text == "Hello Ann"

    async def test_unknown_template(self, templates):
        with pytest.raises(TemplateNotFoundError):
            await templates.render("missing", "en", Channel.EMAIL, {})

    async def test_missing_channel(self):
        engine = TemplateEngine(InMemoryTemplateStore([single(Channel.SMS, text="hi")]))
        with pytest.raises(TemplateNotFoundError) as exc_info:
            await engine.render("notice", "en", Channel.PUSH, {})
        assert exc_info.value.channel == "push"

    async def test_inactive_template_is_not_used(self):
        inactive = single(Channel.SMS, text="hi").model_copy(update={"active": False})
        engine = TemplateEngine(InMemoryTemplateStore([inactive]))
        with pytest.raises(TemplateNotFoundError):
            await engine.compile("notice", "en")

    async def test_compiled_once(self, template_store, templates):
        await templates.render("welcome", "en", Channel.EMAIL, {"name": "a"})
        await templates.render("welcome", "en", Channel.SMS, {"name": "b"})
        await templates.render("welcome", "fr", Channel.SMS, {"name": "c"})

        assert template_store.reads == 2
        assert templates.cached_keys() == {("welcome", "en"), ("welcome", "fr")}

    async def test_fallback_alias_is_cached(self, template_store, templates):
        await templates.compile("welcome", "cree")
        await templates.compile("welcome", "cree")

        # cree misses, en hits; the second call is served from the alias.
        assert template_store.reads == 2

    async def test_put_template_invalidates(self, template_store, templates):
        await templates.render("welcome", "en", Channel.SMS, {"name": "Ann"})

        current = await template_store.get("welcome", "en")
        updated = current.model_copy(
            update={"channels": {Channel.SMS: ChannelTemplate(text="Hey {{name}}")}}
        )
        stored = await templates.put_template(updated)
        content = await templates.render("welcome", "en", Channel.SMS, {"name": "Ann"})

        assert stored.version == 2
        assert content.body_text == "Hey Ann"
        assert len(template_store.history("welcome", "en")) == 2

    async def test_new_version_from_another_process_is_picked_up(self, template_store):
        reader = TemplateEngine(template_store, revalidate_seconds=0)
        writer = TemplateEngine(template_store)
        before = await reader.render("welcome", "en", Channel.SMS, {"name": "Ann"})

        current = await template_store.get("welcome", "en")
        await writer.put_template(
            current.model_copy(
                update={"channels": {Channel.SMS: ChannelTemplate(text="Hey {{name}}")}}
            )
        )
        after = await reader.render("welcome", "en", Channel.SMS, {"name": "Ann"})

        assert before.body_text == "Hello Ann"
        assert after.body_text == "Hey Ann"
        assert (await reader.compile("welcome", "en")).version == 2

    async def test_unchanged_version_is_not_recompiled(self, template_store):
        engine = TemplateEngine(template_store, revalidate_seconds=0)

        first = await engine.compile("welcome", "en")
        second = await engine.compile("welcome", "en")

        assert second is first
        assert template_store.reads == 2

    async def test_revalidation_disabled_keeps_cached_version(self, template_store):
        reader = TemplateEngine(template_store, revalidate_seconds=None)
        await reader.compile("welcome", "en")

        current = await template_store.get("welcome", "en")
        await template_store.put(current)

        assert (await reader.compile("welcome", "en")).version == 1

    async def test_lenient_mode_leaves_placeholders(self, templates):
        content = await templates.render("welcome", "en", Channel.SMS, {})
        assert content.body_text == "Hello {{name}}"

    async def test_strict_mode_rejects_missing_variables(self, template_store):
        engine = TemplateEngine(template_store, strict=True)
        with pytest.raises(TemplateRenderError) as exc_info:
            await engine.render("welcome", "en", Channel.SMS, {})
        assert exc_info.value.missing == ["name"]

    async def test_helpers_use_render_language(self):
        engine = TemplateEngine(
            InMemoryTemplateStore(
                [single(Channel.SMS, text="{{greeting}}, due {{formatDate due}}")]
            )
        )
        content = await engine.render("notice", "fr", Channel.SMS, {"due": "2026-03-05"})
        assert content.body_text == "Bonjour, due 5 mars 2026"

    async def test_custom_helper(self):
        engine = TemplateEngine(
            InMemoryTemplateStore([single(Channel.SMS, text="{{shout name}}")]),
            helpers={"shout": lambda args, lang: str(args[0]).upper()},
        )
        content = await engine.render("notice", "en", Channel.SMS, {"name": "ann"})
        assert content.body_text == "ANN"

    async def test_sms_truncation(self):
        engine = TemplateEngine(
            InMemoryTemplateStore([single(Channel.SMS, text="{{body}}")]), sms_max_length=20
        )
        content = await engine.render("notice", "en", Channel.SMS, {"body": "x" * 50})
        assert content.body_text == "x" * 17 + "..."

    async def test_push_title_from_first_line(self):
        engine = TemplateEngine(
            InMemoryTemplateStore([single(Channel.PUSH, text="Bid accepted\nRFQ {{rfq}} won")])
        )
        content = await engine.render("notice", "en", Channel.PUSH, {"rfq": "42"})
        assert content.title == "Bid accepted"
        assert content.body_text == "RFQ 42 won"

    async def test_in_app_kind(self, templates):
        content = await templates.render("welcome", "en", Channel.IN_APP, {"name": "Ann"})
        assert content.title == "Welcome"
        assert content.kind == "success"

    async def test_in_app_default_kind(self):
        engine = TemplateEngine(InMemoryTemplateStore([single(Channel.IN_APP, text="hi")]))
        content = await engine.render("notice", "en", Channel.IN_APP, {})
        assert content.kind == "info"
