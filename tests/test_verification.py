"""Tests for the verification pass."""

from hostforge.orchestrator.verification import Check, VerificationPass


class TestVerificationPass:
    """All checks run and failures are collected."""

    def test_does_not_short_circuit(self):
        """A failing check early on does not stop later checks."""
        calls = []

        def probe(name, result):
            def run():
                calls.append(name)
                return result
            return run

        report = VerificationPass().verify([
            Check("first", probe("first", False)),
            Check("second", probe("second", True)),
            Check("third", probe("third", False)),
        ])

        assert calls == ["first", "second", "third"]
        assert not report.passed
        assert [r.name for r in report.failures()] == ["first", "third"]

    def test_raising_check_is_recorded_as_failed(self):
        """An exception in a probe becomes a failed result."""
        def broken():
            raise RuntimeError("socket missing")

        report = VerificationPass().verify([Check("fpm socket", broken), Check("ok", lambda: True)])

        failed = report.failures()
        assert len(failed) == 1
        assert failed[0].name == "fpm socket"
        assert "socket missing" in failed[0].detail
        assert failed[0].failure is not None
        assert report.results[1].passed

    def test_tuple_outcome_carries_detail(self):
        """A (bool, detail) outcome overrides the static detail."""
        report = VerificationPass().verify([
            Check("nginx config", lambda: (True, "syntax is ok"), detail="static"),
            Check("redis", lambda: True, detail="running"),
        ])

        assert report.passed
        assert report.results[0].as_tuple() == ("nginx config", True, "syntax is ok")
        assert report.results[1].detail == "running"

    def test_empty_pass_succeeds(self):
        assert VerificationPass().verify([]).passed
