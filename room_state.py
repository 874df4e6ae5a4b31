"""Room snapshot model: constructors, normalization and debug member ids."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

PHASE_ANSWER = "ANSWER"
PHASE_VOTE = "VOTE"
PHASE_RESULT = "RESULT"
PHASE_FINAL_RESULT = "FINAL_RESULT"
PHASES = (PHASE_ANSWER, PHASE_VOTE, PHASE_RESULT, PHASE_FINAL_RESULT)

MAX_MEMBERS = 8
DEFAULT_ROUND_LIMIT = 5
MIN_ROUND_LIMIT = 1
MAX_ROUND_LIMIT = 30
MAX_ANSWER_LENGTH = 200
MAX_NAME_LENGTH = 28

DEBUG_MEMBER_PREFIX = "__debug_member_"


def create_initial_snapshot(
    *,
    host_id: str,
    host_name: str,
    prompt: dict,
    joined_at: int,
    round_limit: int | None = None,
) -> dict:
    limit = DEFAULT_ROUND_LIMIT if round_limit is None else round_limit
    return {
        "phase": PHASE_ANSWER,
        "round": 1,
        "round_limit": max(MIN_ROUND_LIMIT, min(int(limit), MAX_ROUND_LIMIT)),
        "prompt": dict(prompt),
        "active_member_ids": [host_id],
        "submissions": {},
        "votes": {},
        "scores": {},
        "members": {host_id: {"name": host_name, "joined_at": joined_at}},
        "host_id": host_id,
    }


def normalize_snapshot(payload) -> dict | None:
    """Coerce a decoded JSON document into a snapshot.

    Anything that cannot be a live room (not a mapping, unknown phase, no
    members) is treated as "room does not exist" and returns None.
    """
    if not isinstance(payload, dict):
        return None

    phase = payload.get("phase")
    if phase not in PHASES:
        return None

    members = _dict_of_dicts(payload.get("members"))
    if not members:
        return None

    try:
        round_number = max(1, int(payload.get("round", 1)))
    except (TypeError, ValueError):
        round_number = 1
    try:
        round_limit = int(payload.get("round_limit", DEFAULT_ROUND_LIMIT))
    except (TypeError, ValueError):
        round_limit = DEFAULT_ROUND_LIMIT
    round_limit = max(MIN_ROUND_LIMIT, min(round_limit, MAX_ROUND_LIMIT))

    scores: dict[str, int] = {}
    raw_scores = payload.get("scores")
    if isinstance(raw_scores, dict):
        for member_id, value in raw_scores.items():
            try:
                scores[str(member_id)] = int(value)
            except (TypeError, ValueError):
                continue

    raw_active = payload.get("active_member_ids")
    if isinstance(raw_active, list):
        active_ids = unique_ids(str(item) for item in raw_active)
    else:
        active_ids = list(members)

    host_id = str(payload.get("host_id") or "")
    if host_id not in members:
        host_id = elect_host(members)

    prompt = payload.get("prompt")
    return {
        "phase": phase,
        "round": round_number,
        "round_limit": round_limit,
        "prompt": dict(prompt) if isinstance(prompt, dict) else {"text": ""},
        "active_member_ids": active_ids,
        "submissions": _dict_of_dicts(payload.get("submissions")),
        "votes": _dict_of_dicts(payload.get("votes")),
        "scores": scores,
        "members": members,
        "host_id": host_id,
    }


def elect_host(members: dict) -> str:
    """Pick the longest-standing member (earliest join, then id)."""
    if not members:
        return ""

    def _sort_key(member_id: str):
        try:
            joined_at = int(members[member_id].get("joined_at", 0))
        except (TypeError, ValueError):
            joined_at = 0
        return joined_at, member_id

    return min(members, key=_sort_key)


def real_member_ids(snapshot: dict) -> list[str]:
    members = snapshot.get("members") or {}
    return sorted(
        (member_id for member_id in members if not is_debug_member_id(member_id)),
        key=lambda member_id: (int(members[member_id].get("joined_at", 0)), member_id),
    )


def unique_ids(ids) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in ids:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def sanitize_display_name(name: str) -> str:
    collapsed = re.sub(r"\s+", " ", str(name or "")).strip()
    if not collapsed:
        return "Guest"
    return collapsed[:MAX_NAME_LENGTH]


# ------------------------
# Synthetic debug members
# ------------------------


def debug_member_id(index: int) -> str:
    return f"{DEBUG_MEMBER_PREFIX}{index}"


def is_debug_member_id(member_id: str) -> bool:
    return str(member_id).startswith(DEBUG_MEMBER_PREFIX)


def debug_member_name(member_id: str) -> str:
    try:
        index = int(str(member_id)[len(DEBUG_MEMBER_PREFIX):]) + 1
    except ValueError:
        index = 0
    return f"Debug-{index:02d}"


def build_debug_active_member_ids(base_ids, max_members: int) -> list[str]:
    out = unique_ids(base_ids)[:max_members]
    index = 0
    while len(out) < max_members:
        candidate = debug_member_id(index)
        if candidate not in out:
            out.append(candidate)
        index += 1
    return out


def mock_submission_text(index: int) -> str:
    return f"Debug answer {index + 1}"


def _dict_of_dicts(value) -> dict[str, dict]:
    if not isinstance(value, dict):
        return {}
    return {
        str(key): dict(item) for key, item in value.items() if isinstance(item, dict)
    }
