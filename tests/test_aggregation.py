"""
tests/test_aggregation.py

Reduction, merge and channel behaviour of the aggregation layer.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import reduce

import pytest

from aggregation.channel import AggregationChannel, CancellationToken, IngestionCancelledError
from aggregation.reducer import BatchRequest, reduce_batch, reduce_rows
from aggregation.result import AggregationResult, merge, merge_all

CODE = "Codigo da Ultima Ocorrencia"
UF = "UF"
UNIT = "Unidade"
CITY = "Cidade"

ROWS = [
    {CODE: "1", UF: "SC", UNIT: "BLU", CITY: "Blumenau"},
    {CODE: "59", UF: "SC", UNIT: "BLU", CITY: "Gaspar"},
    {CODE: "26", UF: "SC", UNIT: "JCA", CITY: "Joinville"},
    {CODE: "1", UF: "PR", UNIT: "CTB", CITY: "Curitiba"},
    {CODE: "", UF: "PR", UNIT: "LDB", CITY: "Londrina"},
    {CODE: "1", UF: "", UNIT: "XXX", CITY: "Blumenau"},
    {CODE: 59.0, UF: "SC", UNIT: "", CITY: ""},
]


def _reduce(rows: list[dict]) -> AggregationResult:
    return reduce_rows(rows, CODE, uf_key=UF, unit_key=UNIT, city_key=CITY)


def _batches(rows: list[dict], size: int) -> list[list[dict]]:
    return [rows[offset:offset + size] for offset in range(0, len(rows), size)]


class TestReduce:
    def test_counts_codes_and_membership(self) -> None:
        result = _reduce(ROWS)

        assert result.frequency_map == {"1": 3, "59": 2, "26": 1}
        assert result.uf_list == ("PR", "SC")
        assert result.uf_to_units == {
            "SC": frozenset({"BLU", "JCA"}),
            "PR": frozenset({"CTB", "LDB"}),
        }
        assert result.city_by_code == {
            "1": {"Blumenau": 2, "Curitiba": 1},
            "59": {"Gaspar": 1},
            "26": {"Joinville": 1},
        }
        assert result.total_processed == len(ROWS)

    def test_missing_code_still_contributes_uf_and_unit(self) -> None:
        result = _reduce([{CODE: "", UF: "PR", UNIT: "LDB", CITY: "Londrina"}])

        assert result.frequency_map == {}
        assert result.city_by_code == {}
        assert result.uf_to_units == {"PR": frozenset({"LDB"})}

    def test_unit_without_uf_is_not_recorded(self) -> None:
        result = _reduce([{CODE: "1", UF: "", UNIT: "XXX"}])
        assert result.uf_to_units == {}
        assert result.frequency_map == {"1": 1}

    def test_unresolved_columns_only_count_codes(self) -> None:
        result = reduce_batch(BatchRequest(rows=tuple(ROWS), target_column=CODE))
        assert result.frequency_map == {"1": 3, "59": 2, "26": 1}
        assert result.uf_list == ()
        assert result.city_by_code == {}

    def test_empty_batch(self) -> None:
        assert _reduce([]) == AggregationResult.empty()


class TestMerge:
    @pytest.mark.parametrize("batch_size", [1, 2, 3, 5, len(ROWS)])
    def test_invariant_to_batch_size(self, batch_size: int) -> None:
        partials = [_reduce(batch) for batch in _batches(ROWS, batch_size)]
        assert merge_all(partials) == _reduce(ROWS)

    def test_invariant_to_order_and_grouping(self) -> None:
        partials = [_reduce(batch) for batch in _batches(ROWS, 2)]
        whole = _reduce(ROWS)

        assert merge_all(reversed(partials)) == whole
        right_fold = reduce(lambda acc, item: merge(item, acc), partials, AggregationResult.empty())
        assert right_fold == whole
        nested = merge(merge(partials[0], partials[1]), merge(partials[2], partials[3]))
        assert nested == whole

    def test_merge_does_not_mutate_inputs(self) -> None:
        left = _reduce(ROWS[:2])
        right = _reduce(ROWS[2:])
        snapshot = left.to_dict()

        merge(left, right)

        assert left.to_dict() == snapshot

    def test_units_for(self) -> None:
        result = _reduce(ROWS)
        assert result.units_for("SC") == ["BLU", "JCA"]
        assert result.units_for() == ["BLU", "CTB", "JCA", "LDB"]
        assert result.units_for("RS") == []


class _StalledExecutor(Executor):
    """Accepts work but never runs it."""

    def __init__(self) -> None:
        self.futures: list[Future] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.futures.append(future)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        return None


class TestAggregationChannel:
    def test_thread_worker_round_trips_batches(self) -> None:
        with AggregationChannel(executor_kind="thread") as channel:
            partials = [
                channel.request(BatchRequest(rows=tuple(batch), target_column=CODE, uf_key=UF, unit_key=UNIT, city_key=CITY))
                for batch in _batches(ROWS, 3)
            ]
            assert channel.batches_completed == 3

        assert merge_all(partials) == _reduce(ROWS)

    def test_cancelled_token_blocks_dispatch(self) -> None:
        token = CancellationToken()
        token.cancel()
        executor = _StalledExecutor()

        with AggregationChannel(executor_factory=lambda: executor) as channel:
            with pytest.raises(IngestionCancelledError):
                channel.request(BatchRequest(rows=tuple(ROWS), target_column=CODE), token=token)

        assert executor.futures == []

    def test_cancel_while_in_flight_aborts_wait(self) -> None:
        token = CancellationToken()
        executor = _StalledExecutor()
        timer = threading.Timer(0.05, token.cancel)

        with AggregationChannel(executor_factory=lambda: executor, poll_interval=0.01) as channel:
            timer.start()
            try:
                with pytest.raises(IngestionCancelledError):
                    channel.request(BatchRequest(rows=tuple(ROWS), target_column=CODE), token=token)
            finally:
                timer.cancel()

            assert executor.futures[0].cancelled()
            assert channel.batches_completed == 0

    def test_request_opens_one_executor_lazily(self) -> None:
        built: list[int] = []

        def factory() -> Executor:
            built.append(1)
            return ThreadPoolExecutor(max_workers=1)

        channel = AggregationChannel(executor_factory=factory)
        try:
            for batch in _batches(ROWS, 4):
                channel.request(BatchRequest(rows=tuple(batch), target_column=CODE))
        finally:
            channel.close()

        assert built == [1]
        assert channel.batches_completed == 2

    def test_token_cancel_is_idempotent(self) -> None:
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled

    def test_unknown_executor_kind(self) -> None:
        with pytest.raises(ValueError):
            AggregationChannel(executor_kind="fiber").open()
