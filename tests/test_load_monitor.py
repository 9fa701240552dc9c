"""Tests for the system load monitor."""

import pytest

from quotaguard.services.load_monitor import LoadMonitor, get_load_monitor, reset_load_monitor


class TestLoadMonitor:
    """Tests for LoadMonitor."""

    def test_no_sample_yet(self):
        assert LoadMonitor().current() is None

    def test_observe_clamps(self):
        monitor = LoadMonitor()

        assert monitor.observe(1.7) == 1.0
        assert monitor.current() == 1.0
        assert monitor.observe(-0.2) == 0.0
        assert monitor.observe(0.4) == 0.4

    def test_observe_rejects_nan(self):
        with pytest.raises(ValueError):
            LoadMonitor().observe(float("nan"))

    def test_provider_takes_precedence(self):
        monitor = LoadMonitor(provider=lambda: 0.9)
        monitor.observe(0.1)

        assert monitor.current() == 0.9

    def test_failing_provider_falls_back_to_sample(self):
        def broken():
            raise RuntimeError("sensor offline")

        monitor = LoadMonitor(provider=broken)
        monitor.observe(0.3)

        assert monitor.current() == 0.3

    def test_reset(self):
        monitor = LoadMonitor()
        monitor.observe(0.5)
        monitor.reset()
        assert monitor.current() is None

    def test_global_monitor(self):
        reset_load_monitor()
        monitor = get_load_monitor()
        assert get_load_monitor() is monitor
        reset_load_monitor()
        assert get_load_monitor() is not monitor
        reset_load_monitor()
