import random
from datetime import date, timedelta
from decimal import Decimal

import pytest

from investment_ledger.models import LotState, OperationType, WarningKind
from investment_ledger.services.cost_basis import (
    EMPTY_LOT,
    LotReplay,
    apply_operation,
    average_holding_days,
    resolve_all,
    resolve_lot,
)

BUY, SELL, SPLIT = OperationType.BUY, OperationType.SELL, OperationType.STOCK_SPLIT


class TestApplyOperation:
    def test_buy_from_empty_lot(self, make_operation):
        effect = apply_operation(EMPTY_LOT, make_operation(BUY, "2024-01-05", 10, 10000))

        assert effect.state.quantity == 10
        assert effect.state.average_cost == 10000
        assert effect.warning is None

    def test_average_cost_rounds_half_up(self, make_operation):
        state = apply_operation(EMPTY_LOT, make_operation(BUY, "2024-01-05", 1, 100)).state
        state = apply_operation(state, make_operation(BUY, "2024-01-06", 1, 101)).state

        # 100.5 rounds away from zero
        assert state.average_cost == 101

    def test_sell_keeps_average_and_realizes_profit(self, make_operation):
        state = LotState(Decimal(20), 15000, Decimal(300000))
        effect = apply_operation(state, make_operation(SELL, "2024-03-01", 5, 18000))

        assert effect.state.quantity == 15
        assert effect.state.average_cost == 15000
        assert effect.realized_profit == 15000

    def test_sell_at_a_loss(self, make_operation):
        state = LotState(Decimal(10), 5000, Decimal(50000))
        effect = apply_operation(state, make_operation(SELL, "2024-03-01", 4, 4000))

        assert effect.realized_profit == -4000

    def test_overdraft_sell_is_ignored_and_flagged(self, make_operation):
        state = LotState(Decimal(10), 5000, Decimal(50000))
        effect = apply_operation(state, make_operation(SELL, "2024-03-01", 100, 6000))

        assert effect.state == state
        assert effect.realized_profit == 0
        assert effect.warning is not None
        assert effect.warning.kind == WarningKind.OVERDRAFT_SELL
        assert not effect.applied

    def test_dividend_and_interest_leave_lot_untouched(self, make_operation):
        state = LotState(Decimal(10), 5000, Decimal(50000))

        dividend = apply_operation(state, make_operation(OperationType.DIVIDEND, "2024-04-01", 0, 1234))
        interest = apply_operation(state, make_operation(OperationType.INTEREST, "2024-04-01", 0, 99))

        assert dividend.state == state
        assert dividend.dividends == 1234
        assert interest.dividends == 99

    @pytest.mark.parametrize("ratio", ["0", "-2"])
    def test_invalid_split_ratio_is_ignored(self, make_operation, ratio):
        state = LotState(Decimal(10), 5000, Decimal(50000))
        effect = apply_operation(state, make_operation(SPLIT, "2024-05-01", ratio))

        assert effect.state == state
        assert effect.warning is not None
        assert effect.warning.kind == WarningKind.INVALID_SPLIT_RATIO

    def test_buy_after_sell_averages_the_exact_remaining_cost(self, make_operation):
        state = EMPTY_LOT
        for operation in [
            make_operation(BUY, "2024-01-05", 3, 100),
            make_operation(BUY, "2024-01-06", 3, 101),
            make_operation(SELL, "2024-01-07", 1, 120),
        ]:
            state = apply_operation(state, operation).state
        assert state == LotState(Decimal(5), 101, Decimal("502.5"))

        state = apply_operation(state, make_operation(BUY, "2024-01-08", 1, 100)).state

        # (5 * 101 + 100) / 6 on the rounded average would give 101
        assert state.cost == Decimal("602.5")
        assert state.average_cost == 100

    def test_reverse_split(self, make_operation):
        state = LotState(Decimal(100), 250, Decimal(25000))
        effect = apply_operation(state, make_operation(SPLIT, "2024-05-01", "0.1"))

        assert effect.state.quantity == 10
        assert effect.state.average_cost == 2500

    def test_unknown_type_is_cash_flow_only(self, make_operation):
        state = LotState(Decimal(10), 5000, Decimal(50000))
        effect = apply_operation(state, make_operation("Transfer", "2024-06-01", 3, 700, total_amount=2100))

        assert effect.state == state
        assert effect.other_cash_flow == 2100
        assert effect.warning is not None
        assert effect.warning.kind == WarningKind.UNKNOWN_OPERATION_TYPE
        assert effect.applied


class TestResolveLot:
    def test_concrete_scenario(self, make_operation):
        operations = [
            make_operation(BUY, "2024-01-05", 10, 10000),
            make_operation(BUY, "2024-02-10", 10, 20000),
        ]
        lot = resolve_lot(operations)
        assert lot.state.quantity == 20
        assert lot.state.average_cost == 15000

        operations.append(make_operation(SELL, "2024-03-01", 5, 18000))
        lot = resolve_lot(operations)
        assert lot.state.quantity == 15
        assert lot.state.average_cost == 15000
        assert lot.realized_profit == 15000

        operations.append(make_operation(SPLIT, "2024-04-01", 2))
        lot = resolve_lot(operations)
        assert lot.state.quantity == 30
        assert lot.state.average_cost == 7500
        assert lot.realized_profit == 15000

    def test_overdraft_keeps_prior_state(self, make_operation):
        lot = resolve_lot(
            [
                make_operation(BUY, "2024-01-05", 10, 10000),
                make_operation(SELL, "2024-02-01", 100, 12000),
            ]
        )

        assert lot.state.quantity == 10
        assert lot.state.average_cost == 10000
        assert lot.realized_profit == 0
        assert [w.kind for w in lot.warnings] == [WarningKind.OVERDRAFT_SELL]

    def test_until_excludes_later_operations(self, make_operation):
        operations = [
            make_operation(BUY, "2024-01-05", 10, 10000),
            make_operation(BUY, "2024-02-10", 10, 20000),
        ]

        lot = resolve_lot(operations, until=date(2024, 1, 31))

        assert lot.state.quantity == 10
        assert lot.last_date == date(2024, 1, 5)

    def test_nothing_before_cutoff_returns_none(self, make_operation):
        operations = [make_operation(BUY, "2024-02-10", 10, 20000)]

        assert resolve_lot(operations, until=date(2024, 1, 31)) is None

    def test_keep_history_records_each_state(self, make_operation):
        lot = resolve_lot(
            [
                make_operation(BUY, "2024-01-05", 10, 10000),
                make_operation(BUY, "2024-02-10", 10, 20000),
                make_operation(SELL, "2024-03-01", 5, 18000),
            ],
            keep_history=True,
        )

        assert [(s.quantity, s.average_cost) for s in lot.history] == [
            (10, 10000),
            (20, 15000),
            (15, 15000),
        ]

    def test_mixed_assets_are_rejected(self, make_operation):
        with pytest.raises(ValueError):
            resolve_lot(
                [
                    make_operation(BUY, "2024-01-05", 10, 10000, asset="PETR4"),
                    make_operation(BUY, "2024-01-06", 10, 10000, asset="VALE3"),
                ]
            )

    def test_brokers_collected_in_order(self, make_operation):
        lot = resolve_lot(
            [
                make_operation(BUY, "2024-01-05", 1, 100, broker="XP"),
                make_operation(BUY, "2024-01-06", 1, 100, broker="Rico"),
                make_operation(BUY, "2024-01-07", 1, 100, broker="XP"),
            ]
        )

        assert lot.brokers == ["XP", "Rico"]


class TestResolveAll:
    def test_same_asset_in_two_currencies_is_two_lots(self, make_operation):
        lots = resolve_all(
            [
                make_operation(BUY, "2024-01-05", 10, 1000, asset="BTC", currency="BRL"),
                make_operation(BUY, "2024-01-06", 2, 300, asset="BTC", currency="USD"),
            ]
        )

        assert set(lots) == {("BTC", "BRL"), ("BTC", "USD")}
        assert lots[("BTC", "USD")].state.quantity == 2

    def test_assets_do_not_interfere(self, make_operation):
        lots = resolve_all(
            [
                make_operation(BUY, "2024-01-05", 10, 1000, asset="PETR4"),
                make_operation(BUY, "2024-01-06", 5, 4000, asset="VALE3"),
                make_operation(SELL, "2024-01-07", 10, 1500, asset="PETR4"),
            ]
        )

        assert lots[("PETR4", "BRL")].state.quantity == 0
        assert lots[("PETR4", "BRL")].realized_profit == 5000
        assert lots[("VALE3", "BRL")].state.average_cost == 4000


class TestLotReplay:
    def test_incremental_replay_matches_full_replay(self, make_operation):
        operations = [
            make_operation(BUY, "2024-01-05", 10, 10000),
            make_operation(OperationType.DIVIDEND, "2024-01-20", 0, 500),
            make_operation(BUY, "2024-02-10", 10, 20000),
            make_operation(SELL, "2024-03-01", 5, 18000),
            make_operation(SPLIT, "2024-04-01", 2),
        ]

        replay = LotReplay("PETR4", "BRL")
        for operation in operations[:2]:
            _ = replay.apply(operation)
        partial = replay.snapshot()
        for operation in operations[2:]:
            _ = replay.apply(operation)

        assert replay.snapshot().state == resolve_lot(operations).state
        assert partial.state == resolve_lot(operations[:2]).state
        assert replay.dividends == 500

    def test_acquisitions_consumed_oldest_first(self, make_operation):
        replay = LotReplay("PETR4", "BRL")
        for operation in [
            make_operation(BUY, "2024-01-01", 10, 100),
            make_operation(BUY, "2024-02-01", 10, 100),
            make_operation(SELL, "2024-03-01", 15, 100),
        ]:
            _ = replay.apply(operation)

        assert [(a.date, a.quantity) for a in replay.acquisitions] == [(date(2024, 2, 1), 5)]


class TestAverageHoldingDays:
    def test_weighted_by_quantity(self, make_operation):
        lot = resolve_lot(
            [
                make_operation(BUY, "2024-01-01", 10, 100),
                make_operation(BUY, "2024-01-31", 30, 100),
            ]
        )

        # (10 * 60 + 30 * 30) / 40
        assert average_holding_days(lot.acquisitions, date(2024, 3, 1)) == 38

    def test_empty_is_zero(self):
        assert average_holding_days([], date(2024, 1, 1)) == 0


class TestProperties:
    """Seeded random checks of the replay invariants."""

    @pytest.mark.parametrize("seed", range(25))
    def test_average_cost_is_weighted_mean_of_buys(self, make_operation, seed):
        rng = random.Random(seed)
        day = date(2023, 1, 1)
        operations = []
        for _ in range(rng.randint(1, 30)):
            day += timedelta(days=rng.randint(0, 10))
            quantity = Decimal(rng.randint(1, 100_000)) / 100
            operations.append(make_operation(BUY, day, quantity, rng.randint(1, 1_000_000)))

        lot = resolve_lot(operations)
        total_quantity = sum(op.quantity for op in operations)
        true_mean = sum(op.quantity * op.price for op in operations) / total_quantity

        assert lot.state.quantity == total_quantity
        assert abs(lot.state.average_cost - true_mean) <= 1

    @pytest.mark.parametrize("seed", range(25))
    def test_sell_all_then_rebuy_resets_average(self, make_operation, seed):
        rng = random.Random(seed)
        operations = [
            make_operation(BUY, "2024-01-01", rng.randint(1, 500), rng.randint(1, 100_000)),
            make_operation(BUY, "2024-01-02", rng.randint(1, 500), rng.randint(1, 100_000)),
        ]
        held = sum(op.quantity for op in operations)
        operations.append(make_operation(SELL, "2024-02-01", held, rng.randint(1, 100_000)))
        rebuy_price = rng.randint(1, 100_000)
        operations.append(make_operation(BUY, "2024-03-01", rng.randint(1, 500), rebuy_price))

        assert resolve_lot(operations).state.average_cost == rebuy_price

    @pytest.mark.parametrize("seed", range(25))
    def test_split_preserves_cost_basis(self, make_operation, seed):
        rng = random.Random(seed)
        operations = [
            make_operation(BUY, "2024-01-01", rng.randint(1, 1000), rng.randint(100, 100_000)),
            make_operation(BUY, "2024-01-15", rng.randint(1, 1000), rng.randint(100, 100_000)),
        ]
        before = resolve_lot(operations).state
        ratio = rng.choice([2, 3, 4, 5, 10])
        after = resolve_lot(operations + [make_operation(SPLIT, "2024-02-01", ratio)]).state

        assert after.quantity == before.quantity * ratio
        # Average rounding is spread over every unit held
        assert abs(after.cost_basis - before.cost_basis) <= after.quantity

    @pytest.mark.parametrize("seed", range(25))
    def test_realized_profit_sums_per_sell(self, make_operation, seed):
        rng = random.Random(seed)
        operations = [make_operation(BUY, "2024-01-01", 1000, rng.randint(1, 100_000))]
        expected = 0
        held = 1000
        average = operations[0].price
        for day in range(2, 20):
            quantity = rng.randint(0, held)
            price = rng.randint(1, 100_000)
            operations.append(make_operation(SELL, date(2024, 1, day), quantity, price))
            expected += quantity * (price - average)
            held -= quantity

        lot = resolve_lot(operations)
        assert lot.state.quantity == held
        assert lot.realized_profit == expected

    @pytest.mark.parametrize("seed", range(10))
    def test_replay_is_deterministic(self, make_operation, seed):
        rng = random.Random(seed)
        types = [BUY, BUY, SELL, OperationType.DIVIDEND, SPLIT]
        operations = [
            make_operation(
                rng.choice(types),
                date(2024, 1, 1) + timedelta(days=i),
                rng.randint(1, 50),
                rng.randint(1, 10_000),
            )
            for i in range(40)
        ]

        assert resolve_lot(operations) == resolve_lot(list(operations))
