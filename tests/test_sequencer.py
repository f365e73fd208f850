"""
Tests for the dependency sequencer — stable topological order and graph errors.
"""

import pytest

from hostconverge.core.engine.sequencer import order, resolve_dependencies
from hostconverge.core.errors import ValidationError
from hostconverge.core.models import parse_action


def _pkg(identity: str, *deps: str):
    return parse_action({"kind": "package", "identity": identity, "depends_on": list(deps)})


def _keys(specs) -> list[str]:
    return [s.identity for s in specs]


class TestOrder:
    def test_no_dependencies_keeps_declaration_order(self):
        specs = [_pkg("c"), _pkg("a"), _pkg("b")]
        assert _keys(order(specs)) == ["c", "a", "b"]

    def test_dependency_moves_after_prerequisite(self):
        specs = [_pkg("a", "c"), _pkg("b"), _pkg("c")]
        assert _keys(order(specs)) == ["b", "c", "a"]

    def test_ties_broken_by_declaration_index(self):
        # d becomes ready after a and was declared before b and c
        specs = [_pkg("a"), _pkg("d", "a"), _pkg("b"), _pkg("c")]
        assert _keys(order(specs)) == ["a", "d", "b", "c"]

    def test_late_declared_ready_action_waits_its_turn(self):
        specs = [_pkg("b"), _pkg("c"), _pkg("a", "c"), _pkg("e")]
        assert _keys(order(specs)) == ["b", "c", "a", "e"]

    def test_chain(self):
        specs = [_pkg("app", "lib"), _pkg("lib", "base"), _pkg("base")]
        assert _keys(order(specs)) == ["base", "lib", "app"]

    def test_diamond(self):
        specs = [_pkg("top", "left", "right"), _pkg("left", "root"), _pkg("right", "root"), _pkg("root")]
        assert _keys(order(specs)) == ["root", "left", "right", "top"]

    def test_deterministic(self):
        specs = [_pkg("x", "z"), _pkg("y"), _pkg("z", "y"), _pkg("w")]
        assert _keys(order(specs)) == _keys(order(specs))

    def test_empty(self):
        assert order([]) == []

    def test_full_key_reference(self):
        specs = [
            parse_action({"kind": "service", "identity": "xvfb", "depends_on": ["package:xvfb"]}),
            parse_action({"kind": "package", "identity": "xvfb"}),
        ]
        assert [s.key for s in order(specs)] == ["package:xvfb", "service:xvfb"]

    def test_bare_own_identity_resolves_to_other_kind(self):
        specs = [
            parse_action({"kind": "service", "identity": "xvfb", "depends_on": ["xvfb"]}),
            parse_action({"kind": "package", "identity": "xvfb"}),
        ]
        assert [s.key for s in order(specs)] == ["package:xvfb", "service:xvfb"]

    def test_resolve_dependencies_indices(self):
        specs = [_pkg("a", "b"), _pkg("b")]
        assert resolve_dependencies(specs) == [[1], []]


class TestGraphErrors:
    def test_cycle_names_members(self):
        specs = [_pkg("a", "b"), _pkg("b", "c"), _pkg("c", "a"), _pkg("d")]
        with pytest.raises(ValidationError, match="Dependency cycle detected") as exc:
            order(specs)
        message = str(exc.value)
        for key in ("package:a", "package:b", "package:c"):
            assert key in message
        assert "package:d" not in message

    def test_two_node_cycle(self):
        with pytest.raises(ValidationError, match="package:a -> package:b -> package:a"):
            order([_pkg("a", "b"), _pkg("b", "a")])

    def test_unknown_reference(self):
        with pytest.raises(ValidationError, match="unknown action 'ghost'"):
            order([_pkg("a", "ghost")])

    def test_ambiguous_bare_identity(self):
        specs = [
            parse_action({"kind": "package", "identity": "xvfb"}),
            parse_action({"kind": "service", "identity": "xvfb"}),
            _pkg("tests", "xvfb"),
        ]
        with pytest.raises(ValidationError, match="ambiguous 'xvfb'"):
            order(specs)

    def test_bare_own_identity_with_no_other_kind(self):
        with pytest.raises(ValidationError, match="'package:vim' depends on itself"):
            order([_pkg("vim", "vim"), _pkg("curl")])

    def test_bare_own_identity_among_several_other_kinds(self):
        specs = [
            parse_action({"kind": "package", "identity": "xvfb"}),
            parse_action({"kind": "user", "identity": "xvfb"}),
            parse_action({"kind": "service", "identity": "xvfb", "depends_on": ["xvfb"]}),
        ]
        with pytest.raises(ValidationError, match=r"ambiguous 'xvfb' \(one of: package:xvfb, user:xvfb\)"):
            order(specs)

    def test_duplicate_key(self):
        with pytest.raises(ValidationError, match="Duplicate action: package:vim"):
            order([_pkg("vim"), _pkg("vim")])

    def test_same_identity_different_kinds_is_fine(self):
        specs = [
            parse_action({"kind": "package", "identity": "xvfb"}),
            parse_action({"kind": "service", "identity": "xvfb"}),
        ]
        assert len(order(specs)) == 2

    def test_all_problems_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            order([_pkg("a", "x"), _pkg("b", "y")])
        assert "'x'" in str(exc.value)
        assert "'y'" in str(exc.value)
