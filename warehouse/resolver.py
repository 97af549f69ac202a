"""
resolver.py

Key Resolver: business key → surrogate key of the current version
(highest surrogate key wins). Lookups read a snapshot taken at construction,
so a resolver is bound to one published state of its dimension.
"""

from typing import Any, Dict, Hashable, Optional

from warehouse.config import DimensionConfig, UnknownMemberPolicy
from warehouse.dimension import Dimension
from warehouse.errors import UnresolvedReference


class KeyResolver:
    def __init__(
        self,
        dimension: Dimension,
        policy: UnknownMemberPolicy = UnknownMemberPolicy.FAIL,
        placeholder_key: Optional[int] = None,
    ):
        policy = UnknownMemberPolicy(policy)
        if policy is UnknownMemberPolicy.PLACEHOLDER and placeholder_key is None:
            raise ValueError("PLACEHOLDER policy needs a placeholder_key")
        self.dimension = dimension
        self.policy = policy
        self.placeholder_key = placeholder_key
        self._lookup: Dict[Hashable, int] = {
            row.business_key: row.surrogate_key for row in dimension.current_rows()
        }

    @classmethod
    def for_config(cls, dimension: Dimension, config: DimensionConfig) -> "KeyResolver":
        return cls(dimension, config.unknown_member_policy, config.placeholder_key)

    @property
    def name(self) -> str:
        return self.dimension.name

    def lookup(self, business_key: Any) -> Optional[int]:
        try:
            return self._lookup.get(business_key)
        except TypeError:
            return None

    def resolve(self, business_key: Any, row_number: Optional[int] = None) -> int:
        """
        Surrogate key of the current member, or the placeholder key when the
        member is unknown and the policy allows it. Never returns None.
        """
        key = None
        if business_key is not None and not (isinstance(business_key, str) and not business_key.strip()):
            key = self.lookup(business_key)
        if key is not None:
            return key
        if self.policy is UnknownMemberPolicy.PLACEHOLDER:
            return self.placeholder_key
        raise UnresolvedReference(self.dimension.name, business_key, row_number=row_number)
