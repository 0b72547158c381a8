import logging
from unittest.mock import Mock

import httpx
import pytest

from proxy_gateway.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
    unwrap_single_exception,
)


class BrokenStrException(Exception):
    """An exception that breaks when __str__ is called."""

    def __str__(self):
        raise RuntimeError("Cannot convert to string!")

    def __repr__(self):
        return "BrokenStrException(cannot convert to string)"


class BrokenReprException(Exception):
    def __str__(self):
        raise RuntimeError("Cannot convert to string!")

    def __repr__(self):
        raise RuntimeError("Cannot convert to repr!")


class MockExceptionGroup(Exception):
    """Stand-in for the exception groups raised from HTTP client task groups."""

    def __init__(self, message, exceptions):
        super().__init__(message)
        self.exceptions = exceptions


class MockBrokenExceptionGroup(Exception):
    @property
    def exceptions(self):
        raise RuntimeError("Cannot access exceptions!")


class TestFormatExceptionMessage:
    def test_plain_exception_is_str(self):
        assert format_exception_message(RuntimeError("mockProxyClient.Do failed")) == (
            "mockProxyClient.Do failed"
        )

    def test_httpx_error(self):
        error = httpx.ConnectError("All connection attempts failed")
        assert format_exception_message(error) == "All connection attempts failed"

    def test_empty_message(self):
        assert format_exception_message(TimeoutError()) == ""

    def test_exception_group_lists_members(self):
        group = MockExceptionGroup(
            "unhandled errors in a TaskGroup",
            [httpx.ConnectError("refused"), OSError("reset")],
        )

        assert format_exception_message(group) == (
            "unhandled errors in a TaskGroup "
            "(Sub-exceptions: ConnectError: refused; OSError: reset)"
        )

    def test_broken_str_falls_back_to_repr(self):
        assert format_exception_message(BrokenStrException()) == (
            "BrokenStrException(cannot convert to string)"
        )

    def test_broken_str_and_repr(self):
        assert format_exception_message(BrokenReprException()) == (
            "<BrokenReprException object (string conversion failed)>"
        )

    def test_broken_group_is_treated_as_plain(self):
        assert format_exception_message(MockBrokenExceptionGroup("Broken group")) == (
            "Broken group"
        )

    def test_none(self):
        assert format_exception_message(None) == "None"


class TestLogExceptionWithDetails:
    def setup_method(self):
        self.logger = Mock(spec=logging.Logger)

    def test_normal_exception_logging(self):
        exception = ValueError("Normal test error")

        log_exception_with_details(self.logger, "[TEST]", exception)

        self.logger.log.assert_called_once_with(
            logging.ERROR,
            "[TEST] Exception: Normal test error",
            exc_info=exception,
        )

    def test_exception_with_custom_level(self):
        exception = ValueError("Warning level error")

        log_exception_with_details(self.logger, "[TEST]", exception, logging.WARNING)

        self.logger.log.assert_called_once_with(
            logging.WARNING,
            "[TEST] Exception: Warning level error",
            exc_info=exception,
        )

    def test_exception_group_logging(self):
        sub_exceptions = [ValueError("Sub error 1"), RuntimeError("Sub error 2")]
        group = MockExceptionGroup("Multiple errors occurred", sub_exceptions)

        log_exception_with_details(self.logger, "[TEST]", group)

        assert self.logger.log.call_count == 3
        calls = self.logger.log.call_args_list
        assert calls[0].args == (
            logging.ERROR,
            "[TEST] Exception with 2 sub-exceptions: Multiple errors occurred",
        )
        assert calls[1].args == (
            logging.ERROR,
            "[TEST] Sub-exception 1: ValueError: Sub error 1",
        )
        assert calls[1].kwargs["exc_info"] is sub_exceptions[0]
        assert calls[2].args == (
            logging.ERROR,
            "[TEST] Sub-exception 2: RuntimeError: Sub error 2",
        )

    def test_empty_exception_group(self):
        group = MockExceptionGroup("Empty group", [])

        log_exception_with_details(self.logger, "[TEST]", group)

        self.logger.log.assert_called_once_with(
            logging.ERROR, "[TEST] Exception: Empty group", exc_info=group
        )

    def test_broken_str_exception(self):
        log_exception_with_details(self.logger, "[TEST]", BrokenStrException())

        assert self.logger.log.call_count == 1

    def test_none_exception(self):
        log_exception_with_details(self.logger, "[TEST]", None)

        self.logger.log.assert_called_once_with(
            logging.ERROR, "[TEST] Exception: None", exc_info=False
        )

    def test_logger_failure_is_swallowed(self):
        self.logger.log.side_effect = [RuntimeError("handler broke"), None]

        log_exception_with_details(self.logger, "[TEST]", ValueError("x"))

        assert self.logger.log.call_args_list[-1].args == (
            logging.ERROR,
            "[TEST] Exception (logging failed)",
        )

    def test_logger_failing_twice(self):
        self.logger.log.side_effect = RuntimeError("handler broke")

        try:
            log_exception_with_details(self.logger, "[TEST]", ValueError("x"))
        except Exception as e:
            pytest.fail(f"Should not raise exception, but got: {e}")


class TestUnwrapSingleException:
    def test_plain_exception_is_returned(self):
        error = OSError("client disconnected")
        assert unwrap_single_exception(error) is error

    def test_single_member_group_is_unwrapped(self):
        error = OSError("client disconnected")
        group = MockExceptionGroup("unhandled errors in a TaskGroup", [error])
        assert unwrap_single_exception(group) is error

    def test_nested_groups_are_unwrapped(self):
        error = OSError("client disconnected")
        inner = MockExceptionGroup("inner", [error])
        assert unwrap_single_exception(MockExceptionGroup("outer", [inner])) is error

    def test_multi_member_group_is_kept(self):
        group = MockExceptionGroup("errors", [ValueError("a"), ValueError("b")])
        assert unwrap_single_exception(group) is group

    def test_broken_group_is_kept(self):
        group = MockBrokenExceptionGroup("Broken group")
        assert unwrap_single_exception(group) is group
