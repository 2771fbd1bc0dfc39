from __future__ import annotations

import copy
from typing import Any, Dict

from database import get_active_policy, upsert_policy


OVERLAP_MODES = {"advisory", "strict"}

BASELINE_POLICY: Dict[str, Any] = {
    "name": "Default Scheduling Policy",
    "assignments": {
        # advisory: overlapping assignments are reported as warnings; strict: rejected.
        "overlap_mode": "advisory",
    },
    "compliance": {
        "max_weekly_hours": 40,
        "max_shift_hours": 8,
        "min_rest_hours": 8,
        "night_start_hour": 22,
        "night_end_hour": 6,
    },
    "recurrence": {
        "max_instances": 366,
    },
    "shifts": {
        "default_break_minutes": 30,
        "default_start": "09:00",
        "default_end": "17:00",
    },
}


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a dict."""
    if conn is None:
        return build_default_policy()
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def _normalize_policy(policy: Dict) -> Dict:
    """Fill in missing sections so runtime lookups never need their own defaults."""
    if not isinstance(policy, dict):
        policy = {}
    normalized = _deep_update(build_default_policy(), policy)
    mode = str(normalized["assignments"].get("overlap_mode") or "advisory").lower()
    normalized["assignments"]["overlap_mode"] = mode if mode in OVERLAP_MODES else "advisory"
    try:
        cap = int(normalized["recurrence"].get("max_instances") or 0)
    except (TypeError, ValueError):
        cap = BASELINE_POLICY["recurrence"]["max_instances"]
    normalized["recurrence"]["max_instances"] = max(1, cap)
    return normalized


def overlap_mode(policy: Dict) -> str:
    return _normalize_policy(policy)["assignments"]["overlap_mode"]


def compliance_settings(policy: Dict) -> Dict[str, Any]:
    return _normalize_policy(policy)["compliance"]


def max_recurrence_instances(policy: Dict) -> int:
    return _normalize_policy(policy)["recurrence"]["max_instances"]


def build_default_policy() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the policy safely."""
    return copy.deepcopy(BASELINE_POLICY)


def ensure_default_policy(session_factory) -> None:
    """Seed the baseline policy exactly once."""

    with session_factory() as session:
        if get_active_policy(session):
            return
        baseline = build_default_policy()
        name = baseline.get("name", "Default Scheduling Policy")
        params = {key: value for key, value in baseline.items() if key != "name"}
        upsert_policy(session, name, params, edited_by="system")
