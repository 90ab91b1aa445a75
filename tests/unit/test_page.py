"""
Unit tests for the page controller: load synchronization and printing.
"""

import base64
from unittest.mock import MagicMock
from urllib.parse import unquote

import pytest

from adapters.cdp import CdpCommandError, CdpSession
from adapters.page import (
    ABOUT_BLANK,
    DATA_URL_PREFIX,
    MAX_DATA_URL_LENGTH,
    PageController,
    PageState,
    inject_base_url,
    to_data_url,
)
from adapters.wait import ElementWait, WaitStrategy
from models import ErrorKind, PageOptions, PdfOptions, PresseError
from tests.helpers import LOADED, MINIMAL_PDF, FakeConnection, Reply


class TestConstruction:

    def test_rejects_missing_session(self) -> None:
        with pytest.raises(ValueError, match="CdpSession cannot be None"):
            PageController(None)

    @pytest.mark.parametrize("timeout", [0, -5])
    def test_rejects_non_positive_load_timeout(self, timeout: int) -> None:
        with pytest.raises(ValueError, match="must be positive"):
            PageController(MagicMock(spec=CdpSession), timeout)

    def test_rejects_non_positive_print_timeout(self) -> None:
        with pytest.raises(ValueError, match="Print timeout"):
            PageController(MagicMock(spec=CdpSession), 1000, print_timeout_ms=0)

    def test_exposes_timeout(self) -> None:
        controller = PageController(MagicMock(spec=CdpSession), 1234)
        assert controller.page_load_timeout_ms == 1234
        assert controller.state is PageState.IDLE


class TestNavigateToUrl:

    def test_waits_for_dom_content_loaded(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        controller = PageController(session, 2000)

        controller.navigate_to_url("https://example.com")

        assert controller.state is PageState.LOADED
        assert fake_chrome.methods()[:2] == ["Page.enable", "Page.navigate"]

    @pytest.mark.parametrize("url", ["", "   ", None])
    def test_empty_url_rejected_before_any_command(self, session: CdpSession, fake_chrome: FakeConnection, url) -> None:
        with pytest.raises(ValueError):
            PageController(session).navigate_to_url(url)
        assert fake_chrome.sent == []

    def test_timeout_reports_bound(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.navigate"] = {"frameId": "F1"}  # no load event
        controller = PageController(session, 75)

        with pytest.raises(PresseError) as exc_info:
            controller.navigate_to_url("https://slow.example.com")

        error = exc_info.value
        assert error.kind is ErrorKind.TIMEOUT
        assert "75 ms" in error.message
        assert error.timeout_ms == 75
        assert controller.state is PageState.TIMED_OUT

    def test_error_text_fails_without_waiting(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.navigate"] = {"frameId": "F1", "errorText": "net::ERR_NAME_NOT_RESOLVED"}
        # A wait would take the full minute
        controller = PageController(session, 60_000)

        with pytest.raises(PresseError) as exc_info:
            controller.navigate_to_url("https://nonexistent.invalid")

        assert exc_info.value.kind is ErrorKind.PAGE_LOAD_FAILED
        assert "net::ERR_NAME_NOT_RESOLVED" in exc_info.value.message
        assert controller.state is PageState.LOAD_ERROR

    def test_protocol_error_wrapped_as_page_load_failure(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.navigate"] = Reply(error={"code": -32000, "message": "Invalid url"})

        with pytest.raises(PresseError) as exc_info:
            PageController(session, 1000).navigate_to_url("https://example.com")

        assert exc_info.value.kind is ErrorKind.PAGE_LOAD_FAILED
        assert isinstance(exc_info.value.cause, CdpCommandError)

    def test_waiter_armed_before_navigate(self) -> None:
        calls: list[str] = []
        session = MagicMock(spec=CdpSession)
        session.page_enable.side_effect = lambda: calls.append("enable")

        def expect_event(method: str) -> MagicMock:
            calls.append(f"arm:{method}")
            waiter = MagicMock()
            waiter.__enter__.return_value = waiter
            return waiter

        session.expect_event.side_effect = expect_event
        session.navigate.side_effect = lambda url: calls.append("navigate") or {}

        PageController(session, 1000).navigate_to_url("https://example.com")

        assert calls == ["enable", "arm:Page.domContentEventFired", "navigate"]

    def test_waiter_retired_after_load(self, session: CdpSession) -> None:
        PageController(session, 2000).navigate_to_url("https://example.com")
        assert session._waiters == set()


class TestLoadHtmlContent:

    def test_navigates_to_encoded_data_url(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        html = "<h1>Café & 100% </h1>"

        PageController(session, 2000).load_html_content(html)

        url = fake_chrome.params_for("Page.navigate")["url"]
        assert url.startswith(DATA_URL_PREFIX)
        assert " " not in url
        assert unquote(url[len(DATA_URL_PREFIX):]) == html

    def test_none_rejected(self, session: CdpSession) -> None:
        with pytest.raises(ValueError, match="cannot be None"):
            PageController(session).load_html_content(None)

    def test_oversized_document_rejected(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        huge = "<p>" + "x" * MAX_DATA_URL_LENGTH + "</p>"

        with pytest.raises(ValueError, match="set_document_content"):
            PageController(session).load_html_content(huge)
        assert fake_chrome.sent == []


class TestSetDocumentContent:

    def test_blank_page_then_frame_injection(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        controller = PageController(session, 2000)

        controller.set_document_content("<h1>Report</h1>")

        assert fake_chrome.params_for("Page.navigate") == {"url": ABOUT_BLANK}
        methods = fake_chrome.methods()
        assert methods.index("Page.getFrameTree") < methods.index("Page.setDocumentContent")
        assert fake_chrome.params_for("Page.setDocumentContent") == {
            "frameId": "F1", "html": "<h1>Report</h1>",
        }
        assert controller.state is PageState.LOADED

    def test_base_url_injected(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        PageController(session, 2000).set_document_content(
            "<html><head><title>t</title></head><body><img src='logo.png'></body></html>",
            base_url="https://cdn.example.com/assets/",
        )

        html = fake_chrome.params_for("Page.setDocumentContent")["html"]
        assert html.startswith('<html><head><base href="https://cdn.example.com/assets/">')

    def test_none_rejected(self, session: CdpSession) -> None:
        with pytest.raises(ValueError, match="cannot be None"):
            PageController(session).set_document_content(None)

    def test_content_load_timeout(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.setDocumentContent"] = {}  # never fires the event
        controller = PageController(session, 60)

        with pytest.raises(PresseError) as exc_info:
            controller.set_document_content("<p>x</p>")

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert controller.state is PageState.TIMED_OUT

    def test_missing_frame_id(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.getFrameTree"] = {"frameTree": {}}

        with pytest.raises(PresseError) as exc_info:
            PageController(session, 2000).set_document_content("<p>x</p>")

        assert exc_info.value.kind is ErrorKind.PAGE_LOAD_FAILED
        assert "root frame" in exc_info.value.message

    def test_injection_protocol_error(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.setDocumentContent"] = Reply(error={"code": -32000, "message": "No frame"})

        with pytest.raises(PresseError) as exc_info:
            PageController(session, 2000).set_document_content("<p>x</p>")

        assert exc_info.value.kind is ErrorKind.PAGE_LOAD_FAILED
        assert "No frame" in exc_info.value.message


class TestGeneratePdf:

    def test_decodes_payload(self, session: CdpSession) -> None:
        assert PageController(session).generate_pdf() == MINIMAL_PDF

    def test_sends_every_print_parameter(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        options = PdfOptions.build(landscape=True, scale=1.5, page_ranges="1-2")

        PageController(session).generate_pdf(options)

        params = fake_chrome.params_for("Page.printToPDF")
        assert params == options.to_print_params()
        assert len(params) == 15
        assert params["ignoreInvalidPageRanges"] is False
        assert "transferMode" not in params

    def test_null_result(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.printToPDF"] = Reply(result=None)

        with pytest.raises(PresseError, match="null result") as exc_info:
            PageController(session).generate_pdf()
        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED

    @pytest.mark.parametrize("result", [{}, {"data": ""}])
    def test_empty_data(self, session: CdpSession, fake_chrome: FakeConnection, result: dict) -> None:
        fake_chrome.script["Page.printToPDF"] = result

        with pytest.raises(PresseError, match="empty data") as exc_info:
            PageController(session).generate_pdf()
        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED

    def test_undecodable_data(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.printToPDF"] = {"data": "!!!not base64!!!"}

        with pytest.raises(PresseError, match="Failed to decode PDF data") as exc_info:
            PageController(session).generate_pdf()
        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED
        assert exc_info.value.cause is not None

    def test_non_ascii_data(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        # str input with non-ASCII raises plain ValueError, not binascii.Error
        fake_chrome.script["Page.printToPDF"] = {"data": "JVBERi0x\u00e9"}

        with pytest.raises(PresseError, match="Failed to decode PDF data") as exc_info:
            PageController(session).generate_pdf()
        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED
        assert isinstance(exc_info.value.cause, ValueError)

    def test_protocol_error_wrapped(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.printToPDF"] = Reply(error={"code": -32000, "message": "Printing failed"})

        with pytest.raises(PresseError) as exc_info:
            PageController(session).generate_pdf()

        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED
        assert isinstance(exc_info.value.cause, CdpCommandError)

    def test_print_unbounded_by_default(self) -> None:
        session = MagicMock(spec=CdpSession)
        session.print_to_pdf.return_value = {"data": base64.b64encode(MINIMAL_PDF).decode()}

        PageController(session, 1000).generate_pdf()

        assert session.print_to_pdf.call_args.kwargs["timeout_ms"] is None

    def test_opt_in_print_bound(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Page.printToPDF"] = Reply(silent=True)

        with pytest.raises(PresseError) as exc_info:
            PageController(session, 1000, print_timeout_ms=40).generate_pdf()

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert exc_info.value.timeout_ms == 40


class TestPageSetup:

    def test_apply_page_options(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        options = PageOptions(viewport_width=800, viewport_height=600, user_agent="bot", javascript_enabled=False)

        PageController(session).apply_page_options(options)

        assert fake_chrome.params_for("Emulation.setDeviceMetricsOverride")["width"] == 800
        assert fake_chrome.params_for("Emulation.setUserAgentOverride") == {"userAgent": "bot"}
        assert fake_chrome.params_for("Emulation.setScriptExecutionDisabled") == {"value": True}

    def test_default_page_options_skip_optional_overrides(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        PageController(session).apply_page_options(PageOptions())
        assert fake_chrome.methods() == ["Emulation.setDeviceMetricsOverride"]

    def test_inject_css_escapes_content(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        css = "body::after { content: 'it\\'s \"quoted\"'; }\n"

        PageController(session).inject_css(css)

        expression = fake_chrome.params_for("Runtime.evaluate")["expression"]
        assert "style.textContent = " in expression
        assert '"body::after' in expression

    def test_blank_css_sends_nothing(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        PageController(session).inject_css("   ")
        assert fake_chrome.sent == []

    def test_css_exception_in_page(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Runtime.evaluate"] = {
            "result": {"type": "object"},
            "exceptionDetails": {"text": "Uncaught", "exception": {"description": "TypeError: x"}},
        }

        with pytest.raises(PresseError, match="TypeError: x") as exc_info:
            PageController(session).inject_css("p { color: red }")
        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED


class TestExecuteJavascript:

    def test_wrapped_as_async_function_and_awaited(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        PageController(session).execute_javascript("await document.fonts.ready;")

        params = fake_chrome.params_for("Runtime.evaluate")
        assert params["expression"] == "(async function() { await document.fonts.ready; })()"
        assert params["awaitPromise"] is True

    def test_blank_script_sends_nothing(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        PageController(session).execute_javascript("  \n ")
        assert fake_chrome.sent == []

    def test_none_rejected(self, session: CdpSession) -> None:
        with pytest.raises(ValueError, match="JavaScript cannot be None"):
            PageController(session).execute_javascript(None)

    def test_thrown_error_reported(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Runtime.evaluate"] = {
            "result": {"type": "object", "subtype": "error"},
            "exceptionDetails": {"text": "Uncaught (in promise)", "exception": {"description": "Error: boom"}},
        }

        with pytest.raises(PresseError, match="Failed to execute JavaScript: Error: boom") as exc_info:
            PageController(session).execute_javascript("throw new Error('boom')")
        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED

    def test_exception_text_used_without_description(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Runtime.evaluate"] = {"result": {}, "exceptionDetails": {"text": "SyntaxError"}}

        with pytest.raises(PresseError, match="SyntaxError"):
            PageController(session).execute_javascript("}{")

    def test_protocol_error_wrapped(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Runtime.evaluate"] = Reply(error={"code": -32000, "message": "Execution context was destroyed"})

        with pytest.raises(PresseError, match="Failed to execute custom JavaScript") as exc_info:
            PageController(session).execute_javascript("location.reload()")

        assert exc_info.value.kind is ErrorKind.GENERATION_FAILED
        assert isinstance(exc_info.value.cause, CdpCommandError)


class TestWaitUntilReady:

    def test_no_strategies_is_a_no_op(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        PageController(session).wait_until_ready([], 1000)
        assert fake_chrome.sent == []

    def test_strategies_share_one_deadline(self) -> None:
        first, second = MagicMock(spec=WaitStrategy), MagicMock(spec=WaitStrategy)
        session = MagicMock(spec=CdpSession)

        PageController(session, 1000).wait_until_ready([first, second], 400)

        (_, first_deadline), _ = first.wait.call_args
        (_, second_deadline), _ = second.wait.call_args
        assert first_deadline == second_deadline
        assert first.wait.call_args.args[0] is session

    def test_strategy_timeout_becomes_timeout_error(self, session: CdpSession, fake_chrome: FakeConnection) -> None:
        fake_chrome.script["Runtime.evaluate"] = {"result": {"type": "boolean", "value": False}}
        controller = PageController(session, 1000)

        with pytest.raises(PresseError, match="element '#late'") as exc_info:
            controller.wait_until_ready([ElementWait("#late", poll_interval_ms=10)], 30)

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert exc_info.value.timeout_ms == 1000
        assert controller.state is PageState.TIMED_OUT

    def test_later_strategies_skipped_after_timeout(self) -> None:
        first, second = MagicMock(spec=WaitStrategy), MagicMock(spec=WaitStrategy)
        first.wait.side_effect = TimeoutError("Timed out waiting for something")

        with pytest.raises(PresseError):
            PageController(MagicMock(spec=CdpSession), 1000).wait_until_ready([first, second], 100)

        second.wait.assert_not_called()

    def test_unexpected_failure_is_page_load_failed(self) -> None:
        strategy = MagicMock(spec=WaitStrategy)
        strategy.describe.return_value = "network idle"
        strategy.wait.side_effect = CdpCommandError("Network.enable", -32601, "not found")

        with pytest.raises(PresseError, match="Failed waiting for network idle") as exc_info:
            PageController(MagicMock(spec=CdpSession), 1000).wait_until_ready([strategy], 100)
        assert exc_info.value.kind is ErrorKind.PAGE_LOAD_FAILED


class TestHelpers:

    def test_data_url_matches_encode_uri_component(self) -> None:
        assert to_data_url("a b!'()*~") == DATA_URL_PREFIX + "a%20b!'()*~"

    @pytest.mark.parametrize("html,expected", [
        ("<HEAD lang='x'><p>", "<HEAD lang='x'><base href=\"u\"><p>"),
        ("<html><body></body></html>", "<html><head><base href=\"u\"></head><body></body></html>"),
        ("<p>fragment</p>", "<head><base href=\"u\"></head><p>fragment</p>"),
    ])
    def test_inject_base_url(self, html: str, expected: str) -> None:
        assert inject_base_url(html, "u") == expected

    def test_inject_base_url_escapes_quotes(self) -> None:
        assert '&quot;' in inject_base_url("<p>", 'https://x/"y')
