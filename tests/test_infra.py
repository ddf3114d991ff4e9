"""Tests for infra helpers: hashing, time and best-effort calls."""

from unittest.mock import patch

from linqgate.infra.background import fire_and_forget, run_best_effort
from linqgate.infra.hashing import hash_identifier
from linqgate.infra.time import epoch_ms, utc_now
from linqgate.observability.correlation import (
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .helpers import LogRecorder


class TestHashIdentifier:
    def test_length_is_12(self):
        assert len(hash_identifier("+15550002222")) == 12

    def test_deterministic(self):
        assert hash_identifier("+15550002222") == hash_identifier("+15550002222")

    def test_different_inputs_differ(self):
        assert hash_identifier("+15550002222") != hash_identifier("+15550003333")


class TestTime:
    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo is not None

    def test_epoch_ms_matches_utc_now(self):
        assert abs(epoch_ms() - utc_now().timestamp() * 1000) < 5000


class TestBestEffort:
    def test_success(self):
        calls = []
        assert run_best_effort("op", calls.append, 1) is True
        assert calls == [1]

    def test_failure_logged_not_raised(self):
        recorder = LogRecorder()

        def boom():
            raise RuntimeError("secret detail")

        with patch("linqgate.infra.background.logger", recorder):
            assert run_best_effort("mark_read", boom) is False

        assert recorder.messages("warning") == ["best-effort call failed"]
        assert "secret detail" not in recorder.get_all_logged_content()

    def test_fire_and_forget_runs_detached_with_context(self):
        seen = []
        token = set_correlation_id("cid-bg")
        try:
            thread = fire_and_forget("typing", lambda: seen.append(get_correlation_id()))
        finally:
            reset_correlation_id(token)
        thread.join(timeout=5)

        assert thread.daemon is True
        assert seen == ["cid-bg"]

    def test_fire_and_forget_kwargs(self):
        seen = {}
        thread = fire_and_forget("op", lambda **kw: seen.update(kw), to="x")
        thread.join(timeout=5)
        assert seen == {"to": "x"}
