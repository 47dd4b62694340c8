import logging
from unittest.mock import MagicMock

import pytest

from stacks.util.log import LoggerMixin, elapsed_time_logging, pluralize


class MockClass(LoggerMixin):
    pass


def test_logger_mixin():
    assert MockClass.logger().name == f"{__name__}.MockClass"
    assert MockClass().log is MockClass.logger()


class TestElapsedTimeLogging:
    def test_logs(self):
        log_method = MagicMock()
        with elapsed_time_logging(log_method=log_method, message_prefix="Sweep"):
            pass

        [start, end] = [c.args[0] for c in log_method.call_args_list]
        assert start == "Sweep: Starting..."
        assert end.startswith("Sweep: Completed. (elapsed time: ")

    def test_skip_start(self):
        log_method = MagicMock()
        with elapsed_time_logging(log_method=log_method, skip_start=True):
            pass
        [end] = [c.args[0] for c in log_method.call_args_list]
        assert end.startswith("Completed.")

    def test_exception(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.INFO)
        log = logging.getLogger("sweep")
        with (
            pytest.raises(ValueError),
            elapsed_time_logging(log_method=log.info, message_prefix="Sweep"),
        ):
            raise ValueError("boom")

        assert "Sweep: Failed (raised ValueError)." in caplog.text


@pytest.mark.parametrize(
    "count, singular, plural, expected",
    [
        (0, "loan", None, "0 loans"),
        (1, "loan", None, "1 loan"),
        (2, "overdue fine", None, "2 overdue fines"),
        (1, "copy", "copies", "1 copy"),
        (3, "copy", "copies", "3 copies"),
    ],
)
def test_pluralize(count: int, singular: str, plural: str | None, expected: str):
    assert pluralize(count, singular, plural) == expected
