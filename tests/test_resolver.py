import pytest

from warehouse.config import DimensionConfig, UnknownMemberPolicy
from warehouse.dimension import Dimension, DimensionRow
from warehouse.errors import UnresolvedReference
from warehouse.resolver import KeyResolver


@pytest.fixture
def dimension():
    return Dimension("item", [
        DimensionRow(1, "A", {"addr": "1 Main St"}),
        DimensionRow(2, "A", {"addr": "2 Oak St"}),
        DimensionRow(3, "B", {"addr": "9 Elm St"}),
    ])


def test_latest_version_wins(dimension):
    resolver = KeyResolver(dimension)

    assert resolver.resolve("A") == 2
    assert resolver.resolve("B") == 3


def test_unknown_member_fails_under_fail_policy(dimension):
    resolver = KeyResolver(dimension, UnknownMemberPolicy.FAIL)

    with pytest.raises(UnresolvedReference) as excinfo:
        resolver.resolve("Z", row_number=7)
    assert excinfo.value.dimension == "item"
    assert excinfo.value.business_key == "Z"
    assert excinfo.value.row_number == 7


@pytest.mark.parametrize("business_key", [None, "", "  "])
def test_empty_business_key_is_never_silently_null(dimension, business_key):
    with pytest.raises(UnresolvedReference):
        KeyResolver(dimension).resolve(business_key)
    assert KeyResolver(dimension, "PLACEHOLDER", 0).resolve(business_key) == 0


def test_unknown_member_gets_placeholder(dimension):
    resolver = KeyResolver(dimension, UnknownMemberPolicy.PLACEHOLDER, placeholder_key=-1)

    assert resolver.resolve("Z") == -1
    assert resolver.resolve("A") == 2


def test_placeholder_policy_needs_a_key(dimension):
    with pytest.raises(ValueError):
        KeyResolver(dimension, UnknownMemberPolicy.PLACEHOLDER)


def test_for_config_uses_dimension_policy(dimension):
    config = DimensionConfig("item", "id", type2_fields=("addr",), unknown_member_policy="PLACEHOLDER")
    resolver = KeyResolver.for_config(dimension, config)

    assert resolver.resolve("nope") == -1


def test_unhashable_key_does_not_resolve(dimension):
    assert KeyResolver(dimension).lookup(["A"]) is None
