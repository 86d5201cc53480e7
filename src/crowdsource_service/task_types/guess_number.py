"""Guess-number task type: subscribers guess a secret integer within a range."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from crowdsource_service.core.exceptions import InvalidStateError
from crowdsource_service.models import AssignmentStatus, TaskStatus
from crowdsource_service.schemas import parse_model
from crowdsource_service.task_types.signup import SignupOptions, SignupTaskType, is_signup

if TYPE_CHECKING:
    from crowdsource_service.models import Assignment, Principal, Task
    from crowdsource_service.task_types.base import HookContext, HookRequest


class GuessNumberTaskData(SignupOptions):
    """Task data posted by the publisher."""

    min: int = Field(ge=0, le=100)
    max: int = Field(ge=0, le=100)
    total: int | None = Field(default=None, ge=1)
    max_guess_times: int | None = Field(default=None, ge=0, le=100, alias="maxGuessTimes")

    @model_validator(mode="after")
    def _check_range(self) -> GuessNumberTaskData:
        if self.min >= self.max:
            msg = "min must be less than max"
            raise ValueError(msg)
        return self


class Guess(BaseModel):
    """A subscriber's guess."""

    model_config = ConfigDict(extra="forbid", strict=True)
    guess: int = Field(ge=0, le=100)


class GuessNumberTaskType(SignupTaskType):
    """Each work assignment hides a random number the subscriber has to find."""

    meta = {
        "id": "guess-number",
        "name": "Guess Number",
        "description": "Guess a secret number between min and max.",
    }

    def task_data_to_plain_object(self, task: Task, principal: Principal | None) -> dict[str, Any]:
        data = task.data or {}
        result: dict[str, Any] = {key: data[key] for key in ("min", "max") if key in data}
        if "maxGuessTimes" in data:
            result["maxGuessTimes"] = data["maxGuessTimes"]
        result.update(self.options_to_plain_object(task, principal))
        return result

    def post_task_data(
        self,
        task: Task,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        payload: GuessNumberTaskData = parse_model(
            GuessNumberTaskData, request.body, "Invalid guess-number task data"
        )

        ctx.retire_work_directory((task.data or {}).get("dir"))
        work_directory = ctx.make_work_directory()

        data: dict[str, Any] = {"min": payload.min, "max": payload.max, "dir": work_directory}
        if payload.max_guess_times is not None:
            data["maxGuessTimes"] = payload.max_guess_times
        data.update(payload.to_task_data())

        if payload.total is not None:
            total, remain = payload.total, payload.total
        else:
            total, remain = -1, None

        changed = ctx.store.update_task(
            task.id,
            {"valid": True, "total": total, "remain": remain, "data": data},
            expected_status=TaskStatus.EDITING,
        )
        if changed == 0:
            raise InvalidStateError("Task is no longer being edited")
        task.valid, task.total, task.remain, task.data = True, total, remain, data
        return None

    def assignment_data_to_plain_object(
        self,
        assignment: Assignment,
        principal: Principal | None,
    ) -> dict[str, Any]:
        if assignment.data is None or is_signup(assignment):
            return {"signup": True}
        data = assignment.data
        result: dict[str, Any] = {
            "signup": False,
            "guessTimes": len(data.get("guesses", [])),
            "finished": assignment.valid,
        }
        if assignment.valid:
            result["answer"] = data.get("answer")
        if data.get("compare") is not None:
            result["compare"] = data["compare"]
        return result

    def start_work_assignment(
        self,
        task: Task,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> None:
        data = task.data or {}
        assignment.summary = "Unfinished, 0 guesses"
        assignment.data = {
            "guesses": [],
            "answer": random.randint(data["min"], data["max"]),  # nosec B311
        }

    def post_assignment_data(
        self,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        payload: Guess = parse_model(Guess, request.body, "Invalid guess")
        if assignment.valid:
            raise InvalidStateError("Assignment already finished")
        if assignment.data is None or is_signup(assignment):
            raise InvalidStateError("Signup assignments take no guesses")

        data = dict(assignment.data)
        guesses = [*data.get("guesses", []), payload.guess]
        data["guesses"] = guesses
        answer = data["answer"]

        if payload.guess == answer:
            compare = 0
            assignment.valid = True
            assignment.summary = f"Finished, {len(guesses)} guesses, correct"
        else:
            compare = -1 if payload.guess < answer else 1
            task = ctx.store.get_task(assignment.task)
            if task is None:
                raise InvalidStateError("Task deleted")
            max_guess_times = (task.data or {}).get("maxGuessTimes")
            if max_guess_times is None or len(guesses) < max_guess_times:
                assignment.summary = f"Unfinished, {len(guesses)} guesses"
            else:
                assignment.valid = True
                assignment.summary = f"Finished, {len(guesses)} guesses, wrong"
        data["compare"] = compare
        assignment.data = data

        changed = ctx.store.update_assignment(
            assignment.id,
            {"valid": assignment.valid, "summary": assignment.summary, "data": data},
            expected_status=AssignmentStatus.EDITING,
        )
        if changed == 0:
            raise InvalidStateError("Assignment is no longer being edited")

        if request.query_flag("data"):
            return {
                "data": {
                    "compare": compare,
                    **self.assignment_data_to_plain_object(assignment, request.principal),
                }
            }
        return {"data": {"compare": compare}}
