import logging

import pytest

from sonar_preprocessing import Profiler


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_measure_accumulates_per_name(clock):
    profiler = Profiler(clock=clock)

    for elapsed in (0.5, 1.5):
        with profiler.measure('mean_filter'):
            clock.advance(elapsed)
    with profiler.measure('median_blur'):
        clock.advance(0.25)

    stats = {s['name']: s for s in profiler.summary()}
    assert stats['mean_filter']['total'] == pytest.approx(2.0)
    assert stats['mean_filter']['count'] == 2
    assert stats['mean_filter']['avg'] == pytest.approx(1.0)
    assert stats['mean_filter']['min'] == pytest.approx(0.5)
    assert stats['mean_filter']['max'] == pytest.approx(1.5)
    assert [s['name'] for s in profiler.summary()] == ['mean_filter', 'median_blur']
    assert [s['name'] for s in profiler.summary(min_time=1.0)] == ['mean_filter']


def test_measure_records_on_exception(clock):
    profiler = Profiler(clock=clock)
    with pytest.raises(RuntimeError):
        with profiler.measure('insonification'):
            clock.advance(0.1)
            raise RuntimeError("boom")
    assert profiler.call_counts['insonification'] == 1


def test_disabled_profiler_records_nothing(clock):
    profiler = Profiler(clock=clock)
    profiler.disable()
    with profiler.measure('border_filter'):
        clock.advance(1.0)
    assert profiler.summary() == []

    profiler.enable()
    with profiler.measure('border_filter'):
        clock.advance(1.0)
    assert len(profiler.summary()) == 1

    profiler.reset()
    assert profiler.summary() == []


def test_report_logs_table(clock, caplog):
    profiler = Profiler(clock=clock)
    with profiler.measure('extract_roi'):
        clock.advance(0.2)

    with caplog.at_level(logging.INFO, logger='sonar_preprocessing.profiler'):
        profiler.report()

    assert 'PERFORMANCE PROFILE' in caplog.text
    assert 'extract_roi' in caplog.text


def test_report_without_data(caplog):
    with caplog.at_level(logging.INFO, logger='sonar_preprocessing.profiler'):
        Profiler().report()
    assert 'No profiling data collected.' in caplog.text
