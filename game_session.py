"""Game session controller: player actions expressed as room-state updates.

Each action is validated against the locally known snapshot (raising
``GameSessionError`` for the caller) and then issued as an ``update``
transform. The transform re-checks its own preconditions on whatever base it
receives and returns that base untouched when the action no longer applies,
so it can be replayed safely during remote reconciliation. Random draws and
timestamps are taken once, outside the transform.
"""

from __future__ import annotations

import logging
import random
import time

from prompt_catalog import build_prompt
from room_state import (
    MAX_ANSWER_LENGTH,
    MAX_MEMBERS,
    PHASE_ANSWER,
    PHASE_FINAL_RESULT,
    PHASE_RESULT,
    PHASE_VOTE,
    build_debug_active_member_ids,
    create_initial_snapshot,
    debug_member_name,
    elect_host,
    is_debug_member_id,
    mock_submission_text,
    normalize_snapshot,
    real_member_ids,
    sanitize_display_name,
)
from room_state_adapter import RoomStateAdapter
from round_logic import (
    are_all_submitted,
    are_all_voted,
    clamp_round_limit,
    next_round_state,
    restart_state,
    round_losers,
    tally_votes,
    to_result_state,
    to_vote_state,
)

logger = logging.getLogger(__name__)


class GameSessionError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class GameSessionController:
    MAX_MEMBERS = MAX_MEMBERS

    def __init__(
        self,
        *,
        adapter: RoomStateAdapter,
        catalog: dict,
        user_id: str,
        display_name: str,
        clock=time.time,
        rng=random,
    ):
        if not user_id:
            raise ValueError("user_id is required")
        self.adapter = adapter
        self.catalog = catalog
        self.user_id = str(user_id)
        self.display_name = sanitize_display_name(display_name)
        self.clock = clock
        self.rng = rng

    # ------------------------
    # Roster
    # ------------------------

    def join(self, room_id: str, round_limit: int | None = None) -> dict:
        current = normalize_snapshot(self.adapter.load(room_id))
        if current is not None and self.user_id not in current["members"]:
            if len(real_member_ids(current)) >= self.MAX_MEMBERS:
                raise GameSessionError(
                    f"This room is full ({self.MAX_MEMBERS} players max).", 409
                )

        user_id = self.user_id
        name = self.display_name
        joined_at = self._now()
        prompt = build_prompt(self.catalog, self.rng)

        def _join(prev):
            state = normalize_snapshot(prev)
            if state is None:
                return create_initial_snapshot(
                    host_id=user_id,
                    host_name=name,
                    prompt=prompt,
                    joined_at=joined_at,
                    round_limit=round_limit,
                )

            members = state["members"]
            if user_id in members:
                members[user_id]["name"] = name
                return state
            if len(real_member_ids(state)) >= MAX_MEMBERS:
                return state

            members[user_id] = {"name": name, "joined_at": joined_at}
            # Late joiners spectate until the next round unless nobody has
            # answered yet.
            if state["phase"] == PHASE_ANSWER and not state["submissions"]:
                if user_id not in state["active_member_ids"]:
                    state["active_member_ids"].append(user_id)
            return state

        logger.info("Member %s joining room %s", user_id, room_id)
        return self.adapter.update(room_id, _join)

    def leave(self, room_id: str) -> dict | None:
        logger.info("Member %s leaving room %s", self.user_id, room_id)
        return self.adapter.update(room_id, self._remove_member_transform(self.user_id))

    def kick(self, room_id: str, member_id: str) -> dict | None:
        state = self._require_room(room_id)
        self._require_host(state, "remove players")
        if member_id == self.user_id:
            raise GameSessionError("Use leave to exit the room yourself.", 400)
        if member_id not in state["members"]:
            raise GameSessionError("That player is not in this room.", 404)

        logger.info("Host %s removed %s from room %s", self.user_id, member_id, room_id)
        return self.adapter.update(room_id, self._remove_member_transform(member_id))

    # ------------------------
    # Round actions
    # ------------------------

    def submit_answer(self, room_id: str, text: str) -> dict | None:
        answer = str(text or "").strip()[:MAX_ANSWER_LENGTH]
        if not answer:
            raise GameSessionError("Answer text is required.", 400)

        state = self._require_room(room_id)
        if state["phase"] != PHASE_ANSWER:
            raise GameSessionError("Answers are closed for this round.", 409)
        self._require_participant(state)
        if self.user_id in state["submissions"]:
            raise GameSessionError("You already answered this round.", 409)

        user_id = self.user_id
        submitted_at = self._now()

        def _submit(prev):
            state = normalize_snapshot(prev)
            if state is None or state["phase"] != PHASE_ANSWER:
                return prev
            if user_id not in state["active_member_ids"] or user_id in state["submissions"]:
                return prev
            state["submissions"][user_id] = {"text": answer, "submitted_at": submitted_at}
            return self._advance_if_ready(state)

        return self.adapter.update(room_id, _submit)

    def cast_vote(self, room_id: str, target_id: str) -> dict | None:
        state = self._require_room(room_id)
        if state["phase"] != PHASE_VOTE:
            raise GameSessionError("Voting is not open right now.", 409)
        self._require_participant(state)
        if self.user_id in state["votes"]:
            raise GameSessionError("You already voted this round.", 409)
        if target_id not in state["submissions"]:
            raise GameSessionError("You can only vote for a submitted answer.", 400)

        user_id = self.user_id

        def _vote(prev):
            state = normalize_snapshot(prev)
            if state is None or state["phase"] != PHASE_VOTE:
                return prev
            if user_id not in state["active_member_ids"] or user_id in state["votes"]:
                return prev
            if target_id not in state["submissions"]:
                return prev
            state["votes"][user_id] = {"target_user_id": target_id}
            return self._advance_if_ready(state)

        return self.adapter.update(room_id, _vote)

    def start_vote(self, room_id: str) -> dict | None:
        state = self._require_room(room_id)
        self._require_host(state, "start voting")
        if state["phase"] != PHASE_ANSWER:
            raise GameSessionError("Voting can only start from the answer phase.", 409)
        if not are_all_submitted(state, state["active_member_ids"]):
            raise GameSessionError("Still waiting for answers.", 409)

        def _start_vote(prev):
            state = normalize_snapshot(prev)
            if state is None or state["phase"] != PHASE_ANSWER:
                return prev
            if not are_all_submitted(state, state["active_member_ids"]):
                return prev
            return to_vote_state(state)

        return self.adapter.update(room_id, _start_vote)

    def show_result(self, room_id: str) -> dict | None:
        state = self._require_room(room_id)
        self._require_host(state, "reveal results")
        if state["phase"] != PHASE_VOTE:
            raise GameSessionError("Results can only be shown after voting.", 409)
        if not are_all_voted(state, state["active_member_ids"]):
            raise GameSessionError("Still waiting for votes.", 409)

        def _show_result(prev):
            state = normalize_snapshot(prev)
            if state is None or state["phase"] != PHASE_VOTE:
                return prev
            if not are_all_voted(state, state["active_member_ids"]):
                return prev
            return to_result_state(state)

        return self.adapter.update(room_id, _show_result)

    def next_round(self, room_id: str) -> dict | None:
        state = self._require_room(room_id)
        self._require_host(state, "start the next round")
        if state["phase"] != PHASE_RESULT:
            raise GameSessionError(
                "Next round is only available after the results.", 409
            )

        prompt = build_prompt(self.catalog, self.rng)

        def _next_round(prev):
            state = normalize_snapshot(prev)
            if state is None or state["phase"] != PHASE_RESULT:
                return prev
            return next_round_state(state, prompt, real_member_ids(state))

        return self.adapter.update(room_id, _next_round)

    def restart(self, room_id: str) -> dict | None:
        state = self._require_room(room_id)
        self._require_host(state, "restart the game")
        if state["phase"] != PHASE_FINAL_RESULT:
            raise GameSessionError("The game can only be restarted once it has finished.", 409)

        prompt = build_prompt(self.catalog, self.rng)

        def _restart(prev):
            state = normalize_snapshot(prev)
            if state is None or state["phase"] != PHASE_FINAL_RESULT:
                return prev
            return restart_state(state, prompt, real_member_ids(state))

        logger.info("Host %s restarted room %s", self.user_id, room_id)
        return self.adapter.update(room_id, _restart)

    def set_round_limit(self, room_id: str, round_limit) -> dict | None:
        try:
            requested = int(round_limit)
        except (TypeError, ValueError) as exc:
            raise GameSessionError("Round limit must be a whole number.", 400) from exc

        state = self._require_room(room_id)
        self._require_host(state, "change the round limit")

        def _set_limit(prev):
            state = normalize_snapshot(prev)
            if state is None:
                return prev
            state["round_limit"] = clamp_round_limit(
                requested,
                state["round"],
                finished=state["phase"] == PHASE_FINAL_RESULT,
            )
            return state

        return self.adapter.update(room_id, _set_limit)

    # ------------------------
    # Debug helpers
    # ------------------------

    def debug_fill(self, room_id: str, max_members: int = MAX_MEMBERS) -> dict | None:
        state = self._require_room(room_id)
        self._require_host(state, "add debug players")
        if state["phase"] != PHASE_ANSWER:
            raise GameSessionError("Debug players can only join during answers.", 409)
        target = max(1, min(int(max_members), self.MAX_MEMBERS))

        def _fill(prev):
            state = normalize_snapshot(prev)
            if state is None or state["phase"] != PHASE_ANSWER:
                return prev
            state["active_member_ids"] = build_debug_active_member_ids(
                state["active_member_ids"], target
            )
            return state

        return self.adapter.update(room_id, _fill)

    def debug_autoplay(self, room_id: str) -> dict | None:
        """Let synthetic members answer or vote for the current phase."""
        state = self._require_room(room_id)
        self._require_host(state, "drive debug players")
        debug_ids = [
            member_id
            for member_id in state["active_member_ids"]
            if is_debug_member_id(member_id)
        ]
        if not debug_ids:
            raise GameSessionError("There are no debug players in this round.", 409)

        submitted_at = self._now()
        planned_votes: dict[str, str] = {}
        if state["phase"] == PHASE_VOTE:
            submitters = sorted(state["submissions"])
            if not submitters:
                raise GameSessionError("There is nothing to vote on yet.", 409)
            for member_id in debug_ids:
                choices = [sid for sid in submitters if sid != member_id] or submitters
                planned_votes[member_id] = self.rng.choice(choices)
        elif state["phase"] != PHASE_ANSWER:
            raise GameSessionError("Debug players only act during answers or votes.", 409)

        def _autoplay(prev):
            state = normalize_snapshot(prev)
            if state is None:
                return prev
            if state["phase"] == PHASE_ANSWER:
                for index, member_id in enumerate(state["active_member_ids"]):
                    if not is_debug_member_id(member_id):
                        continue
                    if member_id in state["submissions"]:
                        continue
                    state["submissions"][member_id] = {
                        "text": mock_submission_text(index),
                        "submitted_at": submitted_at,
                    }
            elif state["phase"] == PHASE_VOTE:
                for member_id, target_id in planned_votes.items():
                    if member_id not in state["active_member_ids"]:
                        continue
                    if member_id in state["votes"] or target_id not in state["submissions"]:
                        continue
                    state["votes"][member_id] = {"target_user_id": target_id}
            else:
                return prev
            return self._advance_if_ready(state)

        return self.adapter.update(room_id, _autoplay)

    # ------------------------
    # Views
    # ------------------------

    def retry_sync(self, room_id: str) -> dict | None:
        return self.adapter.load(room_id)

    def get_view(self, room_id: str) -> dict:
        state = self._require_room(room_id)
        active_ids = state["active_member_ids"]
        names = {
            member_id: member.get("name", "")
            for member_id, member in state["members"].items()
        }
        for member_id in active_ids:
            if is_debug_member_id(member_id):
                names[member_id] = debug_member_name(member_id)

        view = {
            "room": state,
            "member_names": names,
            "is_host": state["host_id"] == self.user_id,
            "is_active": self.user_id in active_ids,
            "has_submitted": self.user_id in state["submissions"],
            "has_voted": self.user_id in state["votes"],
            "all_submitted": are_all_submitted(state, active_ids),
            "all_voted": are_all_voted(state, active_ids),
            "is_final_round": state["round"] >= state["round_limit"],
        }
        if state["phase"] in (PHASE_RESULT, PHASE_FINAL_RESULT):
            view["tally"] = tally_votes(state)
            view["losers"] = round_losers(state)
        return view

    # ------------------------
    # Internal helpers
    # ------------------------

    def _remove_member_transform(self, member_id: str):
        def _remove(prev):
            state = normalize_snapshot(prev)
            if state is None or member_id not in state["members"]:
                return prev

            del state["members"][member_id]
            if not state["members"]:
                return None

            state["active_member_ids"] = [
                active_id
                for active_id in state["active_member_ids"]
                if active_id != member_id
            ]
            if state["host_id"] == member_id:
                state["host_id"] = elect_host(state["members"])
            if not state["active_member_ids"] and state["phase"] in (PHASE_ANSWER, PHASE_VOTE):
                # Only spectators are left: restart the round with them.
                state["phase"] = PHASE_ANSWER
                state["active_member_ids"] = real_member_ids(state)
                state["submissions"] = {}
                state["votes"] = {}
            return self._advance_if_ready(state)

        return _remove

    @staticmethod
    def _advance_if_ready(state: dict) -> dict:
        active_ids = state["active_member_ids"]
        if state["phase"] == PHASE_ANSWER and are_all_submitted(state, active_ids):
            return to_vote_state(state)
        if state["phase"] == PHASE_VOTE and are_all_voted(state, active_ids):
            return to_result_state(state)
        return state

    def _require_room(self, room_id: str) -> dict:
        state = normalize_snapshot(self.adapter.load(room_id))
        if state is None:
            raise GameSessionError("Room not found.", 404)
        return state

    def _require_host(self, state: dict, action: str) -> None:
        if state["host_id"] != self.user_id:
            raise GameSessionError(f"Only the host can {action}.", 403)

    def _require_participant(self, state: dict) -> None:
        if self.user_id not in state["active_member_ids"]:
            raise GameSessionError("You are watching this round; wait for the next one.", 403)

    def _now(self) -> int:
        return int(self.clock())
