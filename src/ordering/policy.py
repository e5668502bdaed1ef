"""Order policies — business switches read from the environment.

Provides get_policy() / set_policy() / reset_policy() in the same way the
adapter registries do, so tests can flip a policy without touching the
environment.

Environment:
    ORDER_COD_AUTO_COLLECT          "true" (default) marks COD orders as
                                    collected when they are delivered.
    ORDER_DELIVERY_PAYMENT_GUARD    "true" (default) blocks delivering a
                                    prepaid order whose payment is not
                                    captured. The audited override bypasses it.
"""

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class OrderPolicy:
    cod_auto_collect_on_delivery: bool = True
    block_delivery_until_paid: bool = True

    @classmethod
    def from_env(cls) -> "OrderPolicy":
        return cls(
            cod_auto_collect_on_delivery=_flag("ORDER_COD_AUTO_COLLECT", True),
            block_delivery_until_paid=_flag("ORDER_DELIVERY_PAYMENT_GUARD", True),
        )


_current_policy: OrderPolicy | None = None


def get_policy() -> OrderPolicy:
    """Return the active order policy. Defaults to the environment."""
    global _current_policy
    if _current_policy is None:
        _current_policy = OrderPolicy.from_env()
    return _current_policy


def set_policy(policy: OrderPolicy) -> None:
    """Override the active policy (useful for tests)."""
    global _current_policy
    _current_policy = policy


def reset_policy() -> None:
    """Reset to the environment-derived policy."""
    global _current_policy
    _current_policy = None
