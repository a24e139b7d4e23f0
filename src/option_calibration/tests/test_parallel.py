"""Tests for the ordered worker pool."""

import threading
import time

import pytest

from option_calibration.exceptions import ConvergenceError, PricingError, ValidationError
from option_calibration.parallel import ordered_map


def _square_after_delay(x):
    # Later items finish first.
    time.sleep(0.01 * (5 - x))
    return x * x


def _fail_on_odd(x):
    if x % 2:
        raise ConvergenceError(f"odd item {x}")
    return x


class TestOrderedMap:
    """Outcome order, error capture, cancellation and timeouts."""

    @pytest.mark.parametrize("max_workers", [None, 1, 4])
    def test_results_in_submission_order(self, max_workers):
        outcomes = ordered_map(_square_after_delay, range(5), max_workers=max_workers)
        assert [o.value for o in outcomes] == [0, 1, 4, 9, 16]
        assert all(o.ok for o in outcomes)

    @pytest.mark.parametrize("max_workers", [None, 3])
    def test_numerical_errors_are_captured(self, max_workers):
        outcomes = ordered_map(_fail_on_odd, range(4), max_workers=max_workers)
        assert [o.ok for o in outcomes] == [True, False, True, False]
        assert isinstance(outcomes[1].error, ConvergenceError)
        assert outcomes[1].value is None
        assert outcomes[2].value == 2

    @pytest.mark.parametrize("max_workers", [None, 3])
    def test_other_errors_propagate(self, max_workers):
        def boom(x):
            raise KeyError(x)

        with pytest.raises(KeyError):
            ordered_map(boom, range(3), max_workers=max_workers)

    @pytest.mark.parametrize("max_workers", [None, 2])
    def test_cancelled_batch(self, max_workers):
        cancel = threading.Event()
        cancel.set()
        outcomes = ordered_map(lambda x: x, range(3), max_workers=max_workers, cancel_event=cancel)
        assert all(isinstance(o.error, PricingError) for o in outcomes)
        assert "cancelled" in str(outcomes[0].error)

    def test_cancel_mid_batch(self):
        cancel = threading.Event()

        def work(x):
            if x == 1:
                cancel.set()
            return x

        outcomes = ordered_map(work, range(4), cancel_event=cancel)
        assert [o.ok for o in outcomes] == [True, True, False, False]

    def test_serial_timeout_skips_remaining_items(self):
        def slow(x):
            time.sleep(0.1)
            return x

        outcomes = ordered_map(slow, range(4), timeout=0.15)
        assert outcomes[0].ok and outcomes[1].ok
        assert not outcomes[3].ok
        assert "timed out" in str(outcomes[3].error)

    def test_pool_timeout_abandons_running_items(self, caplog):
        def slow(x):
            time.sleep(0.5)
            return x

        outcomes = ordered_map(slow, range(4), max_workers=2, timeout=0.05)
        assert len(outcomes) == 4
        assert not any(o.ok for o in outcomes)
        assert "Batch timed out" in caplog.text

    def test_empty_input(self):
        assert ordered_map(lambda x: x, [], max_workers=2) == []

    @pytest.mark.parametrize("kwargs", [{"max_workers": 0}, {"timeout": 0.0}])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValidationError):
            ordered_map(lambda x: x, [1], **kwargs)
