"""
Tests for the engine tracer decorator and input fingerprinting.
"""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from ledger_engines.batch_allocation import AllocationPolicy
from ledger_engines.tracer import TRACE_MESSAGE, compute_input_fingerprint, traced_engine


@dataclass(frozen=True)
class _Item:
    code: str
    qty: Decimal


class TestFingerprint:
    def test_deterministic(self):
        kwargs = {"qty": Decimal("5"), "items": [_Item("A", Decimal("1"))]}
        assert compute_input_fingerprint(("qty", "items"), kwargs) == compute_input_fingerprint(
            ("qty", "items"), dict(kwargs)
        )

    def test_decimal_scale_ignored(self):
        a = compute_input_fingerprint(("qty",), {"qty": Decimal("5")})
        b = compute_input_fingerprint(("qty",), {"qty": Decimal("5.000")})
        assert a == b

    def test_dict_order_ignored(self):
        a = compute_input_fingerprint(("m",), {"m": {"x": 1, "y": 2}})
        b = compute_input_fingerprint(("m",), {"m": {"y": 2, "x": 1}})
        assert a == b

    def test_sequence_order_matters(self):
        a = compute_input_fingerprint(("s",), {"s": ["A", "B"]})
        b = compute_input_fingerprint(("s",), {"s": ["B", "A"]})
        assert a != b

    def test_enum_by_value(self):
        a = compute_input_fingerprint(("p",), {"p": AllocationPolicy.FEFO})
        b = compute_input_fingerprint(("p",), {"p": "FEFO"})
        assert a == b

    def test_unlisted_fields_ignored(self):
        a = compute_input_fingerprint(("qty",), {"qty": 1, "noise": "x"})
        b = compute_input_fingerprint(("qty",), {"qty": 1, "noise": "y"})
        assert a == b


class TestTracedEngine:
    def test_result_passed_through_and_traced(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("n",))
        def double(*, n: int) -> int:
            return n * 2

        assert double(n=4) == 8

        traces = [r for r in captured_logs() if r["message"] == TRACE_MESSAGE]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "demo"
        assert traces[0]["engine_version"] == "2.1"
        assert traces[0]["input_fingerprint"] == compute_input_fingerprint(("n",), {"n": 4})
        assert traces[0]["duration_ms"] >= 0

    def test_no_trace_on_failure(self, captured_logs):
        @traced_engine("demo", "1.0")
        def boom():
            raise RuntimeError("fail")

        with pytest.raises(RuntimeError):
            boom()

        assert not [r for r in captured_logs() if r["message"] == TRACE_MESSAGE]

    def test_wraps_preserves_name(self):
        @traced_engine("demo", "1.0")
        def named():
            """Docstring kept."""

        assert named.__name__ == "named"
        assert named.__doc__ == "Docstring kept."
