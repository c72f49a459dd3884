import itertools

import pytest

from storesync.common.errors import AlreadyCancelled, IllegalTransition
from storesync.orders.model import OrderStatus
from storesync.orders.state_machine import can_transition, check_transition, is_terminal, path_to

P, C, S, D, X = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
)

ALLOWED = {(P, C), (P, X), (C, S), (C, X), (S, D), (S, X)}


class TestTransitionGraph:
    @pytest.mark.parametrize("current,target", list(itertools.product(OrderStatus, repeat=2)))
    def test_exactly_the_documented_edges_are_allowed(self, current, target):
        assert can_transition(current, target) is ((current, target) in ALLOWED)

    def test_terminal_states(self):
        assert [s for s in OrderStatus if is_terminal(s)] == [D, X]

    def test_check_transition_passes_legal_edge(self):
        check_transition(1, P, C)

    def test_cancel_twice_is_already_cancelled(self):
        with pytest.raises(AlreadyCancelled):
            check_transition(7, X, X)

    @pytest.mark.parametrize("current,target", [(D, X), (C, P), (X, P), (P, S), (D, D)])
    def test_illegal_edges_raise(self, current, target):
        with pytest.raises(IllegalTransition) as exc:
            check_transition(1, current, target)
        assert exc.value.to_dict() == {"error": "illegal_transition", "from": current.value, "to": target.value}


class TestPathTo:
    def test_single_forward_step(self):
        assert path_to(P, C) == [C]

    def test_multi_step_forward(self):
        assert path_to(P, D) == [C, S, D]
        assert path_to(C, D) == [S, D]

    def test_backwards_has_no_path(self):
        assert path_to(S, C) is None
        assert path_to(C, C) is None

    def test_cancel_is_one_step_from_non_terminal(self):
        assert path_to(S, X) == [X]
        assert path_to(D, X) is None
        assert path_to(X, X) is None

    def test_nothing_leaves_cancelled(self):
        assert path_to(X, C) is None
