# Overview: Pytest coverage for the pure reservation diff.

"""
Reservation Diff Tests

The diff only sees two persisted states. These tests pin down the
reserving sets, the per-product summing, and the "no drift" property: the
net effect of any chain of saves equals the diff of its endpoints.
"""

import itertools
import random
from decimal import Decimal

import pytest

from docledger.services.reservation_service import (
    RESERVING_STATUSES,
    DocumentSnapshot,
    LineItemSnapshot,
    StockAdjustment,
    compute_delta,
    diff_snapshots,
    quantities_by_product,
    reserving_statuses,
)


def items(*pairs):
    return tuple(LineItemSnapshot(product_id=pid, quantity=Decimal(str(qty))) for pid, qty in pairs)


def as_map(adjustments):
    return {a.product_id: a.delta for a in adjustments}


INVOICE = RESERVING_STATUSES["invoice"]


class TestReservingSets:
    def test_invoice(self):
        assert reserving_statuses("invoice") == {"sent", "overdue", "paid"}

    def test_quote(self):
        assert reserving_statuses("quote") == {"sent", "accepted"}

    def test_visit(self):
        assert reserving_statuses("visit") == {"planned", "completed"}

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            reserving_statuses("delivery_note")


class TestComputeDelta:
    def test_draft_to_sent_reserves_all_lines(self):
        result = compute_delta("draft", "sent", items((1, 3)), items((1, 3), (2, 1)), INVOICE)
        assert result == [
            StockAdjustment(product_id=1, delta=Decimal(3)),
            StockAdjustment(product_id=2, delta=Decimal(1)),
        ]

    def test_sent_to_draft_releases(self):
        result = compute_delta("sent", "draft", items((1, 3)), items((1, 3)), INVOICE)
        assert as_map(result) == {1: Decimal(-3)}

    def test_neither_state_reserving_is_empty(self):
        assert compute_delta("draft", "draft", items((1, 3)), items((1, 99)), INVOICE) == []

    def test_quantity_edit_while_reserving(self):
        result = compute_delta("sent", "sent", items((1, 3)), items((1, 5)), INVOICE)
        assert as_map(result) == {1: Decimal(2)}

    def test_product_swap_while_reserving(self):
        result = compute_delta("sent", "paid", items((1, 3)), items((2, 3)), INVOICE)
        assert as_map(result) == {1: Decimal(-3), 2: Decimal(3)}

    def test_unchanged_reserving_state_is_empty(self):
        assert compute_delta("sent", "overdue", items((1, 3)), items((1, 3)), INVOICE) == []

    def test_duplicate_lines_are_summed(self):
        result = compute_delta("draft", "sent", (), items((7, 2), (7, 3), (7, 1)), INVOICE)
        assert result == [StockAdjustment(product_id=7, delta=Decimal(6))]

    def test_lines_without_product_are_ignored(self):
        new = items((None, 10), (4, 1))
        assert as_map(compute_delta("draft", "sent", (), new, INVOICE)) == {4: Decimal(1)}

    def test_new_document_has_non_reserving_prior(self):
        result = compute_delta(None, "sent", (), items((1, 2)), INVOICE)
        assert as_map(result) == {1: Decimal(2)}

    def test_delete_releases_everything(self):
        result = compute_delta("paid", None, items((1, 2), (3, 4)), (), INVOICE)
        assert as_map(result) == {1: Decimal(-2), 3: Decimal(-4)}

    def test_results_sorted_by_product(self):
        result = compute_delta("draft", "sent", (), items((9, 1), (2, 1), (5, 1)), INVOICE)
        assert [a.product_id for a in result] == [2, 5, 9]

    def test_fractional_quantities_pass_through(self):
        result = compute_delta("draft", "sent", (), items((1, "1.5")), INVOICE)
        assert as_map(result) == {1: Decimal("1.5")}

    def test_same_states_in_any_order_sum_to_zero(self):
        a = ("sent", items((1, 3), (2, 1)))
        b = ("draft", items((1, 5)))
        forward = as_map(compute_delta(a[0], b[0], a[1], b[1], INVOICE))
        backward = as_map(compute_delta(b[0], a[0], b[1], a[1], INVOICE))
        for pid in set(forward) | set(backward):
            assert forward.get(pid, 0) + backward.get(pid, 0) == 0


class TestVisitScenario:
    """Planned visit, product swap, cancel: the ledger ends where it started."""

    def test_visit_lifecycle_nets_to_zero(self):
        stock = {1: 10, 2: 10}

        def apply(adjustments):
            for adj in adjustments:
                stock[adj.product_id] -= int(adj.delta)

        s0 = DocumentSnapshot.empty()
        s1 = DocumentSnapshot(status="planned", items=items((1, 2)))
        s2 = DocumentSnapshot(status="planned", items=items((2, 2)))
        s3 = DocumentSnapshot(status="cancelled", items=items((2, 2)))

        apply(diff_snapshots("visit", s0, s1))
        assert stock == {1: 8, 2: 10}
        apply(diff_snapshots("visit", s1, s2))
        assert stock == {1: 10, 2: 8}
        apply(diff_snapshots("visit", s2, s3))
        assert stock == {1: 10, 2: 10}


class TestNoDrift:
    STATUSES = ("draft", "sent", "paid", "overdue")

    def _random_state(self, rng):
        status = rng.choice(self.STATUSES)
        lines = [(rng.randint(1, 4), rng.randint(0, 5)) for _ in range(rng.randint(0, 4))]
        return DocumentSnapshot(status=status, items=items(*lines))

    def test_chain_equals_endpoints(self):
        rng = random.Random(20241019)
        for _ in range(200):
            chain = [DocumentSnapshot.empty()] + [self._random_state(rng) for _ in range(rng.randint(1, 6))]

            accumulated = {}
            for before, after in zip(chain, chain[1:]):
                for adj in diff_snapshots("invoice", before, after):
                    accumulated[adj.product_id] = accumulated.get(adj.product_id, 0) + adj.delta
            accumulated = {pid: d for pid, d in accumulated.items() if d != 0}

            assert accumulated == as_map(diff_snapshots("invoice", chain[0], chain[-1]))

    def test_any_reserving_status_pair_with_same_items_is_empty(self):
        same = items((1, 2), (2, 3))
        for old, new in itertools.product(INVOICE, INVOICE):
            assert compute_delta(old, new, same, same, INVOICE) == []


class TestSnapshots:
    def test_from_mapping(self):
        snap = DocumentSnapshot.from_mapping({
            "status": "sent",
            "version_id": 4,
            "items": [{"product_id": "3", "quantity": "2"}, {"description": "labour", "quantity": 1}],
        })
        assert snap.status == "sent"
        assert snap.version_id == 4
        assert snap.items[0] == LineItemSnapshot(product_id=3, quantity=Decimal(2))
        assert snap.items[1].product_id is None

    def test_quantities_by_product(self):
        assert quantities_by_product(items((1, 1), (1, 2), (None, 5))) == {1: Decimal(3)}
