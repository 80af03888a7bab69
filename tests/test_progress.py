import logging
from datetime import timedelta

import pytest

from avsampler.progress import ProgressLogger, human_bytes, human_duration


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def _messages(caplog):
    return [r.getMessage() for r in caplog.records if r.name == "test.progress"]


def test_no_log_before_first_interval(caplog, clock):
    caplog.set_level(logging.INFO, logger="test.progress")
    logger = ProgressLogger("test.progress", clock=clock)
    clock.now = 10.0
    logger.update(timedelta(seconds=10), timedelta(seconds=5), 30.0)
    assert _messages(caplog) == []


def test_logs_at_growing_intervals(caplog, clock):
    caplog.set_level(logging.INFO, logger="test.progress")
    logger = ProgressLogger("test.progress", clock=clock)
    clock.now = 17.0
    logger.update(10, 5, 30.0)
    assert len(_messages(caplog)) == 1
    clock.now = 20.0
    logger.update(10, 6, 30.0)
    assert len(_messages(caplog)) == 1
    clock.now = 33.0
    logger.update(10, 7, 30.0)
    messages = _messages(caplog)
    assert len(messages) == 2
    assert all(" fps, eta " in m for m in messages)
    assert messages[0].startswith("50%")


def test_zero_completed_never_logs(caplog, clock):
    caplog.set_level(logging.INFO, logger="test.progress")
    logger = ProgressLogger("test.progress", clock=clock)
    clock.now = 100.0
    logger.update(10, 0, 30.0)
    assert _messages(caplog) == []


def test_disabled_info_does_not_log(caplog, clock):
    caplog.set_level(logging.WARNING, logger="test.progress")
    logger = ProgressLogger("test.progress", clock=clock)
    clock.now = 100.0
    logger.update(10, 5, 30.0)
    assert _messages(caplog) == []


def test_human_bytes_small_is_plain():
    for n in (0, 1, 512, 1023):
        assert human_bytes(n) == f"{n} B"


def test_human_bytes_prefixes():
    assert human_bytes(1024) == "1.00 KiB"
    assert human_bytes(1024**2).endswith(" MiB")
    assert human_bytes(1024**3).endswith(" GiB")
    assert human_bytes(3 * 1024**3).startswith("3.00")


def test_human_duration_single_second():
    assert human_duration(1) == "1 second"


def test_human_duration_units():
    assert human_duration(timedelta(hours=2)).endswith(" hours")
    assert human_duration(timedelta(days=3)).endswith(" days")
    assert human_duration(45).endswith(" seconds")
    assert human_duration(timedelta(minutes=5)).startswith("5 ")


def test_human_duration_non_second_units_at_least_two():
    out = human_duration(timedelta(minutes=1, seconds=30))
    assert out.endswith(" minutes")
    assert int(out.split()[0]) >= 2