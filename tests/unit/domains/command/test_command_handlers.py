"""Tests for the command handler table and target resolution."""

import asyncio

import pytest

from agentui.domains.command import (
    CommandExecutor,
    CommandHandlers,
    InvalidParametersError,
    TargetResolutionError,
)
from agentui.domains.emission import EventPipeline
from agentui.domains.identity import RegionResolver
from agentui.domains.shared import ContextRef, RegionKind


# ── Helpers ──────────────────────────────────────────────────────────


def _executor(document, sent, config) -> CommandExecutor:
    resolver = RegionResolver(document)
    resolver.register_all()
    pipeline = EventPipeline(document, resolver, ContextRef("ctx_cmd"), sent.append, config)
    pipeline.publish_snapshot()
    handlers = CommandHandlers(document, resolver, pipeline, config)
    return CommandExecutor(handlers, pipeline, config.result_memo_size)


async def _run(executor, command, request_id="r1", **parameters):
    return await executor.process_message(
        {"requestId": request_id, "command": command, "parameters": parameters}
    )


def _of_type(sent, event_type):
    return [m for m in sent if m["type"] == event_type]


# ── Target resolution ────────────────────────────────────────────────


class TestResolveTarget:
    @pytest.mark.asyncio
    async def test_instance_id_beats_type_id(self, app_page, sent, fast_config):
        handlers = _executor(app_page, sent, fast_config).handlers
        sidebar = app_page.get_element_by_id("sidebar")
        instance = sidebar.get_attribute("data-assist-panel-instance")
        target = handlers.resolve_target({"instanceId": instance, "viewId": "view:cart"})
        assert target is sidebar

    @pytest.mark.asyncio
    async def test_unknown_instance_id(self, app_page, sent, fast_config):
        handlers = _executor(app_page, sent, fast_config).handlers
        with pytest.raises(TargetResolutionError):
            handlers.resolve_target({"instanceId": "mi_missing"})

    @pytest.mark.asyncio
    async def test_type_id_with_kind(self, app_page, sent, fast_config):
        handlers = _executor(app_page, sent, fast_config).handlers
        target = handlers.resolve_target({"typeId": "panel:filters", "kind": "panel"})
        assert target.id == "sidebar"
        with pytest.raises(InvalidParametersError):
            handlers.resolve_target({"typeId": "panel:filters"})
        with pytest.raises(InvalidParametersError):
            handlers.resolve_target({"typeId": "panel:filters", "kind": "sidebar"})

    @pytest.mark.asyncio
    async def test_type_id_requires_visibility_unless_hidden_allowed(
        self, app_page, sent, fast_config
    ):
        handlers = _executor(app_page, sent, fast_config).handlers
        with pytest.raises(TargetResolutionError, match="visible"):
            handlers.resolve_target({"modalId": "modal:login"})
        hidden = handlers.resolve_target({"modalId": "modal:login"}, include_hidden=True)
        assert hidden.id == "login"

    @pytest.mark.asyncio
    async def test_implicit_target_is_modal_then_view(self, app_page, sent, fast_config):
        handlers = _executor(app_page, sent, fast_config).handlers
        assert handlers.resolve_target({}).id == "main"
        app_page.get_element_by_id("login").hidden = False
        assert handlers.resolve_target({}).id == "login"

    @pytest.mark.asyncio
    async def test_invalid_selector_is_a_parameter_error(self, app_page, sent, fast_config):
        handlers = _executor(app_page, sent, fast_config).handlers
        with pytest.raises(InvalidParametersError):
            handlers.query("input[")


# ── navigate ─────────────────────────────────────────────────────────


class TestNavigate:
    @pytest.mark.asyncio
    async def test_push_updates_url_and_fires_popstate(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        popstates = []
        app_page.default_view.add_event_listener("popstate", popstates.append)
        result = await _run(executor, "navigate", url="/cart")
        assert result.ok
        assert result.result == {"url": "http://shop.test/cart"}
        assert app_page.default_view.history.length == 2
        assert len(popstates) == 1

    @pytest.mark.asyncio
    async def test_replace(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        result = await _run(executor, "navigate", url="/cart", mode="replace")
        assert result.ok
        assert app_page.default_view.history.length == 1

    @pytest.mark.asyncio
    async def test_bad_mode(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "navigate", url="/x", mode="teleport")
        assert not result.ok
        assert result.error_kind == "protocol"

    @pytest.mark.asyncio
    async def test_route_id_must_be_visible(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        visible = await _run(executor, "navigate", "r1", routeId="route:checkout")
        assert visible.ok
        missing = await _run(executor, "navigate", "r2", routeId="route:account")
        assert not missing.ok
        assert missing.error_kind == "resolution"

    @pytest.mark.asyncio
    async def test_requires_url_or_route(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "navigate")
        assert result.error_kind == "protocol"


# ── focus ────────────────────────────────────────────────────────────


class TestFocus:
    @pytest.mark.asyncio
    async def test_selector(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "focus", selector="[name=email]")
        assert result.ok
        assert result.result == {"focus": "#email"}
        assert app_page.active_element.id == "email"

    @pytest.mark.asyncio
    async def test_first_focusable_of_active_view(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "focus")
        assert result.ok
        assert app_page.active_element.id == "email"

    @pytest.mark.asyncio
    async def test_selector_outside_target_falls_back_to_document(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "focus", selector="#sidebar input")
        assert result.ok
        assert app_page.active_element.get_attribute("name") == "q"

    @pytest.mark.asyncio
    async def test_not_focusable(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "focus", selector="#main")
        assert not result.ok
        assert result.error_kind == "resolution"

    @pytest.mark.asyncio
    async def test_missing_element(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "focus", selector="#nope")
        assert result.error_kind == "resolution"
        assert "#nope" in result.error


# ── modal.open / modal.close ─────────────────────────────────────────


class TestModalCommands:
    @pytest.mark.asyncio
    async def test_open_isolates_and_focuses(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        app_page.get_element_by_id("email").focus()
        result = await _run(executor, "modal.open", modalId="modal:login")
        assert result.ok
        assert result.result["modal"]["typeId"] == "modal:login"

        login = app_page.get_element_by_id("login")
        app = app_page.get_element_by_id("app")
        assert not login.hidden
        assert login.get_attribute("role") == "dialog"
        assert login.get_attribute("aria-modal") == "true"
        assert app.get_attribute("aria-hidden") == "true"
        assert app.has_attribute("inert")
        assert not login.has_attribute("aria-hidden")
        assert app_page.active_element.id == "username"

        (opened,) = _of_type(sent, "modal.opened")
        assert opened["modalId"] == "modal:login"
        snapshot = _of_type(sent, "state.snapshot")[-1]
        assert snapshot["version"] == result.resulting_state_version
        assert snapshot["modal"]["typeId"] == "modal:login"
        assert snapshot["view"] is None
        assert snapshot["focus"] == "#username"

    @pytest.mark.asyncio
    async def test_close_reverses_and_restores_focus(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        app_page.get_element_by_id("email").focus()
        await _run(executor, "modal.open", "r1", modalId="modal:login")
        result = await _run(executor, "modal.close", "r2")
        assert result.ok

        login = app_page.get_element_by_id("login")
        app = app_page.get_element_by_id("app")
        assert login.hidden
        assert not login.has_attribute("role")
        assert not app.has_attribute("aria-hidden")
        assert not app.has_attribute("inert")
        assert app_page.active_element.id == "email"
        assert [m["type"] for m in sent if m["type"].startswith("modal.")] == [
            "modal.opened", "modal.closed",
        ]
        assert _of_type(sent, "state.snapshot")[-1]["view"]["typeId"] == "view:cart"

    @pytest.mark.asyncio
    async def test_open_requires_identifier(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "modal.open")
        assert result.error_kind == "protocol"

    @pytest.mark.asyncio
    async def test_open_by_instance_id(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        instance = app_page.get_element_by_id("login").get_attribute("data-assist-modal-instance")
        result = await _run(executor, "modal.open", instanceId=instance)
        assert result.ok

    @pytest.mark.asyncio
    async def test_open_instance_of_other_kind_fails(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        instance = app_page.get_element_by_id("sidebar").get_attribute("data-assist-panel-instance")
        result = await _run(executor, "modal.open", instanceId=instance)
        assert result.error_kind == "resolution"

    @pytest.mark.asyncio
    async def test_close_without_active_modal(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "modal.close")
        assert result.error_kind == "resolution"


# ── panel.toggle ─────────────────────────────────────────────────────


class TestPanelToggle:
    @pytest.mark.asyncio
    async def test_toggle_flips_hidden(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        help_panel = app_page.get_element_by_id("help")

        opened = await _run(executor, "panel.toggle", "r1", panelId="panel:help")
        assert opened.ok and opened.result["open"] is True
        assert not help_panel.hidden
        assert [p["typeId"] for p in _of_type(sent, "state.snapshot")[-1]["panels"]] == [
            "panel:filters", "panel:help",
        ]

        closed = await _run(executor, "panel.toggle", "r2", panelId="panel:help")
        assert closed.result["open"] is False
        assert help_panel.hidden

    @pytest.mark.asyncio
    async def test_explicit_open_state(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        result = await _run(executor, "panel.toggle", panelId="panel:filters", open=True)
        assert result.result["open"] is True
        assert not app_page.get_element_by_id("sidebar").hidden

    @pytest.mark.asyncio
    async def test_unknown_panel(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "panel.toggle", panelId="panel:x")
        assert result.error_kind == "resolution"


# ── click / type / scroll ────────────────────────────────────────────


class TestClickTypeScroll:
    @pytest.mark.asyncio
    async def test_click_by_selector(self, app_page, sent, fast_config):
        clicks = []
        app_page.get_element_by_id("checkout").add_event_listener("click", clicks.append)
        result = await _run(_executor(app_page, sent, fast_config), "click", selector="#checkout")
        assert result.ok
        assert len(clicks) == 1

    @pytest.mark.asyncio
    async def test_click_disabled(self, app_page, sent, fast_config):
        app_page.get_element_by_id("checkout").set_attribute("disabled", "")
        result = await _run(_executor(app_page, sent, fast_config), "click", selector="#checkout")
        assert result.error_kind == "resolution"

    @pytest.mark.asyncio
    async def test_click_requires_target(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "click")
        assert result.error_kind == "protocol"

    @pytest.mark.asyncio
    async def test_type_sets_value_and_fires_events(self, app_page, sent, fast_config):
        email = app_page.get_element_by_id("email")
        fired = []
        email.add_event_listener("input", lambda e: fired.append(e.type))
        email.add_event_listener("change", lambda e: fired.append(e.type))
        result = await _run(
            _executor(app_page, sent, fast_config), "type", fieldId="email", value="ada@example.com"
        )
        assert result.ok
        assert email.value == "ada@example.com"
        assert fired == ["input", "change"]

    @pytest.mark.asyncio
    async def test_type_into_select(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "type", fieldId="country", value="fr")
        assert result.ok
        assert app_page.query_selector("select").value == "fr"

    @pytest.mark.asyncio
    async def test_type_rejects_non_editable(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "type", selector="#checkout", value="x")
        assert result.error_kind == "resolution"

    @pytest.mark.asyncio
    async def test_type_requires_value(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "type", fieldId="email")
        assert result.error_kind == "protocol"

    @pytest.mark.asyncio
    async def test_scroll_variants(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        window = app_page.default_view
        app_page.get_element_by_id("app").set_style(height="2000px")

        bottom = await _run(executor, "scroll", "r1", to="bottom")
        assert bottom.result["scrollY"] == app_page.scroll_height > 0
        top = await _run(executor, "scroll", "r2", to="top")
        assert top.result["scrollY"] == 0
        point = await _run(executor, "scroll", "r3", to={"x": 10, "y": 300})
        assert (window.scroll_x, window.scroll_y) == (10.0, 300.0)
        assert point.ok

        app_page.get_element_by_id("checkout").set_style(top="640px")
        into_view = await _run(executor, "scroll", "r4", selector="#checkout")
        assert into_view.result["scrollY"] == 640.0

    @pytest.mark.asyncio
    async def test_scroll_invalid(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        assert (await _run(executor, "scroll", "r1", to="sideways")).error_kind == "protocol"
        assert (await _run(executor, "scroll", "r2", to={"y": "far"})).error_kind == "protocol"


# ── waitFor ──────────────────────────────────────────────────────────


class TestWaitFor:
    @pytest.mark.asyncio
    async def test_resolves_when_target_appears(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, lambda: setattr(app_page.get_element_by_id("login"), "hidden", False))
        result = await _run(executor, "waitFor", modalId="modal:login", timeoutMs=1000)
        assert result.ok
        assert result.result["waitedMs"] >= 40

    @pytest.mark.asyncio
    async def test_already_satisfied(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "waitFor", viewId="view:cart")
        assert result.ok
        assert result.result["waitedMs"] == 0

    @pytest.mark.asyncio
    async def test_times_out_at_or_after_deadline(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await _run(executor, "waitFor", modalId="modal:login", timeoutMs=150)
        elapsed = loop.time() - started
        assert not result.ok
        assert result.error_kind == "timeout"
        assert "150ms" in result.error
        assert 0.15 <= elapsed < 0.15 + 0.25

    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self, app_page, sent, fast_config):
        fast_config.default_wait_timeout = 0.05
        result = await _run(_executor(app_page, sent, fast_config), "waitFor", selector="#missing")
        assert result.error_kind == "timeout"

    @pytest.mark.asyncio
    async def test_wait_for_hidden(self, app_page, sent, fast_config):
        executor = _executor(app_page, sent, fast_config)
        loop = asyncio.get_running_loop()
        loop.call_later(0.03, lambda: setattr(app_page.get_element_by_id("sidebar"), "hidden", True))
        result = await _run(executor, "waitFor", panelId="panel:filters", visible=False, timeoutMs=500)
        assert result.ok

    @pytest.mark.asyncio
    async def test_requires_condition(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "waitFor", timeoutMs=10)
        assert result.error_kind == "protocol"

    @pytest.mark.asyncio
    async def test_bad_timeout(self, app_page, sent, fast_config):
        result = await _run(_executor(app_page, sent, fast_config), "waitFor", viewId="x", timeoutMs="soon")
        assert result.error_kind == "protocol"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout_ms", ["nan", "inf", float("nan"), float("inf"), -5])
    async def test_non_finite_or_negative_timeout_rejected(
        self, app_page, sent, fast_config, timeout_ms
    ):
        executor = _executor(app_page, sent, fast_config)
        result = await asyncio.wait_for(
            _run(executor, "waitFor", modalId="modal:login", timeoutMs=timeout_ms), timeout=1.0
        )
        assert not result.ok
        assert result.error_kind == "protocol"
        assert "timeoutMs" in result.error


# ── Handler table ────────────────────────────────────────────────────


class TestHandlerTable:
    @pytest.mark.asyncio
    async def test_closed_command_set(self, app_page, sent, fast_config):
        handlers = _executor(app_page, sent, fast_config).handlers
        assert set(handlers.table()) == {
            "navigate", "focus", "modal.open", "modal.close", "panel.toggle",
            "click", "type", "scroll", "waitFor",
        }

    @pytest.mark.asyncio
    async def test_find_any_falls_back_to_hidden(self, app_page, sent, fast_config):
        handlers = _executor(app_page, sent, fast_config).handlers
        assert handlers.find_any(RegionKind.PANEL, type_id="panel:help").id == "help"
        assert handlers.resolver.find_region(RegionKind.PANEL, type_id="panel:help") is None
