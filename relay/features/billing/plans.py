"""Purchasable plan tiers."""
from typing import Tuple

PLAN_IDS: Tuple[str, ...] = ("pro", "master")


def is_valid_plan(plan_id: object) -> bool:
    return isinstance(plan_id, str) and plan_id in PLAN_IDS
