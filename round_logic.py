"""Round state machine: pure functions over a room snapshot.

Nothing here touches storage. Every function returns a new snapshot and
leaves its argument untouched, so the same transition can be replayed
against a different base during remote reconciliation.
"""

from __future__ import annotations

import copy

from room_state import (
    MAX_ROUND_LIMIT,
    MIN_ROUND_LIMIT,
    PHASE_ANSWER,
    PHASE_FINAL_RESULT,
    PHASE_RESULT,
    PHASE_VOTE,
    is_debug_member_id,
)


def are_all_submitted(snapshot: dict, participant_ids) -> bool:
    submissions = snapshot.get("submissions") or {}
    participant_ids = list(participant_ids)
    return bool(participant_ids) and all(
        bool(submissions.get(member_id)) for member_id in participant_ids
    )


def are_all_voted(snapshot: dict, participant_ids) -> bool:
    votes = snapshot.get("votes") or {}
    participant_ids = list(participant_ids)
    return bool(participant_ids) and all(
        bool(votes.get(member_id)) for member_id in participant_ids
    )


def to_vote_state(snapshot: dict) -> dict:
    return {**snapshot, "phase": PHASE_VOTE}


def tally_votes(snapshot: dict) -> dict[str, int]:
    """Count votes per submitter; submitters nobody voted for stay at 0."""
    tally = {submitter_id: 0 for submitter_id in snapshot.get("submissions") or {}}
    for vote in (snapshot.get("votes") or {}).values():
        target_id = (vote or {}).get("target_user_id")
        if target_id not in tally:
            continue
        tally[target_id] += 1
    return tally


def round_losers(snapshot: dict) -> list[str]:
    tally = tally_votes(snapshot)
    if not tally:
        return []
    top = max(tally.values())
    return [submitter_id for submitter_id, count in tally.items() if count == top]


def to_result_state(snapshot: dict) -> dict:
    # Everyone tied for the most "worst answer" votes loses a point.
    losers = round_losers(snapshot)
    if not losers:
        return {**snapshot, "phase": PHASE_RESULT}

    scores = dict(snapshot.get("scores") or {})
    for loser_id in losers:
        scores[loser_id] = int(scores.get(loser_id, 0)) - 1
    return {**snapshot, "phase": PHASE_RESULT, "scores": scores}


def next_round_state(snapshot: dict, prompt: dict, member_ids) -> dict:
    if int(snapshot["round"]) >= int(snapshot["round_limit"]):
        return {**snapshot, "phase": PHASE_FINAL_RESULT}

    return {
        **snapshot,
        "phase": PHASE_ANSWER,
        "round": int(snapshot["round"]) + 1,
        "prompt": dict(prompt),
        "active_member_ids": list(member_ids),
        "submissions": {},
        "votes": {},
    }


def restart_state(snapshot: dict, prompt: dict, member_ids) -> dict:
    members = {
        member_id: copy.deepcopy(member)
        for member_id, member in (snapshot.get("members") or {}).items()
        if not is_debug_member_id(member_id)
    }
    active_ids = [
        member_id
        for member_id in member_ids
        if member_id in members and not is_debug_member_id(member_id)
    ]
    return {
        **snapshot,
        "phase": PHASE_ANSWER,
        "round": 1,
        "round_limit": clamp_round_limit(snapshot.get("round_limit"), 1, finished=False),
        "prompt": dict(prompt),
        "active_member_ids": active_ids,
        "submissions": {},
        "votes": {},
        "scores": {},
        "members": members,
    }


def clamp_round_limit(value, current_round: int | None, *, finished: bool) -> int:
    try:
        requested = int(value)
    except (TypeError, ValueError):
        requested = MIN_ROUND_LIMIT
    if finished:
        floor = MIN_ROUND_LIMIT
    else:
        floor = max(MIN_ROUND_LIMIT, int(current_round or 1))
    return max(floor, min(requested, MAX_ROUND_LIMIT))
