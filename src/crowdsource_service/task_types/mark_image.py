"""Mark-image task type: subscribers answer a multiple-choice question about an image."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from crowdsource_service.core.exceptions import InvalidStateError, SchemaError
from crowdsource_service.models import AssignmentStatus, TaskStatus
from crowdsource_service.schemas import parse_model
from crowdsource_service.task_types.signup import SignupOptions, SignupTaskType, is_signup

if TYPE_CHECKING:
    from crowdsource_service.models import Assignment, Principal, Task
    from crowdsource_service.task_types.base import HookContext, HookRequest

_SUFFIX_RE = re.compile(r"^\.[a-z0-9]{1,8}$")


class MarkImageTaskData(SignupOptions):
    """Task data posted by the publisher."""

    question: str = Field(min_length=1)
    choices: list[str] = Field(min_length=1)
    choice_amount: int | None = Field(default=None, ge=1, alias="choiceAmount")
    total: int = Field(ge=1, le=100)

    @model_validator(mode="after")
    def _check_choices(self) -> MarkImageTaskData:
        if self.choice_amount is not None and self.choice_amount != len(self.choices):
            msg = "Unmatched choice amount"
            raise ValueError(msg)
        return self


class MarkAnswer(BaseModel):
    """A subscriber's chosen option, numbered from 1."""

    model_config = ConfigDict(extra="forbid", strict=True)
    answer: int = Field(ge=1)


class MarkImageTaskType(SignupTaskType):
    """Each work assignment is one image; the subscriber picks one of the choices."""

    meta = {
        "id": "mark-image",
        "name": "Mark Image",
        "description": "Upload images and ask subscribers a multiple-choice question about each.",
    }

    def task_data_to_plain_object(self, task: Task, principal: Principal | None) -> dict[str, Any]:
        data = task.data or {}
        result: dict[str, Any] = {
            key: data[key]
            for key in ("question", "choiceAmount", "choices", "progress")
            if key in data
        }
        if "images" in data:
            result["imageCount"] = len(data["images"])
        result.update(self.options_to_plain_object(task, principal))
        return result

    def before_post_task_data(self, task: Task, request: HookRequest, ctx: HookContext) -> None:
        """Store uploaded images in a fresh work directory."""
        uploads = request.files_for("images")
        if not uploads:
            return
        for upload in uploads:
            if not upload.content_type.startswith("image/"):
                raise SchemaError.for_field(
                    "Invalid mark-image task data",
                    "images",
                    f"{upload.filename} is not an image",
                    "image",
                )

        work_directory = ctx.make_work_directory()
        names: list[str] = []
        for index, upload in enumerate(uploads, start=1):
            suffix = PurePosixPath(upload.filename).suffix.lower()
            if _SUFFIX_RE.match(suffix) is None:
                suffix = ""
            name = f"{index}{suffix}"
            (ctx.upload_directory / work_directory / name).write_bytes(upload.content)
            names.append(name)
        request.prepared["dir"] = work_directory
        request.prepared["images"] = names

    def post_task_data(
        self,
        task: Task,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        payload: MarkImageTaskData = parse_model(
            MarkImageTaskData, request.body, "Invalid mark-image task data"
        )
        images: list[str] | None = request.prepared.get("images")
        if images is not None and len(images) != payload.total:
            raise SchemaError.for_field(
                "Invalid mark-image task data",
                "total",
                "total must equal the number of images",
            )

        ctx.retire_work_directory((task.data or {}).get("dir"))

        data: dict[str, Any] = {
            "question": payload.question,
            "choices": list(payload.choices),
            "choiceAmount": len(payload.choices),
            "progress": 0,
        }
        if images is not None:
            data["dir"] = request.prepared["dir"]
            data["images"] = images
        data.update(payload.to_task_data())

        changed = ctx.store.update_task(
            task.id,
            {"valid": True, "total": payload.total, "remain": payload.total, "data": data},
            expected_status=TaskStatus.EDITING,
        )
        if changed == 0:
            raise InvalidStateError("Task is no longer being edited")
        task.valid, task.total, task.remain, task.data = True, payload.total, payload.total, data
        return None

    def assignment_data_to_plain_object(
        self,
        assignment: Assignment,
        principal: Principal | None,
    ) -> dict[str, Any]:
        if assignment.data is None or is_signup(assignment):
            return {}
        data = assignment.data
        result: dict[str, Any] = {"sequence": data["sequence"], "finished": assignment.valid}
        if data.get("image") is not None:
            result["image"] = data["image"]
        if data.get("answer") is not None:
            result["answer"] = data["answer"]
        return result

    def start_work_assignment(
        self,
        task: Task,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> None:
        total = task.total if task.total is not None else 0
        sequence = ctx.store.increment_data_counter(task.id, "progress", maximum=total)
        if sequence is None:
            raise InvalidStateError("Assignments all assigned")

        data = task.data or {}
        image: str | None = None
        images = data.get("images")
        if images and data.get("dir"):
            image = f"/uploads/{data['dir']}/{images[sequence - 1]}"

        assignment.summary = "Unfinished"
        assignment.data = {
            "sequence": sequence,
            "choiceAmount": data.get("choiceAmount", 0),
            "image": image,
            "answer": None,
        }

    def post_assignment_data(
        self,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        payload: MarkAnswer = parse_model(MarkAnswer, request.body, "Invalid answer")
        if assignment.data is None or is_signup(assignment):
            raise InvalidStateError("Signup assignments take no answers")
        if assignment.valid:
            raise InvalidStateError("Assignment already finished")
        if payload.answer > assignment.data.get("choiceAmount", 0):
            raise SchemaError.for_field(
                "Invalid answer",
                "answer",
                "answer exceeds the number of choices",
            )

        data = {**assignment.data, "answer": payload.answer}
        assignment.valid = True
        assignment.summary = "Finished"
        assignment.data = data
        changed = ctx.store.update_assignment(
            assignment.id,
            {"valid": True, "summary": assignment.summary, "data": data},
            expected_status=AssignmentStatus.EDITING,
        )
        if changed == 0:
            raise InvalidStateError("Assignment is no longer being edited")
        return None
