"""Mark-image task type."""

from __future__ import annotations

import pytest

from crowdsource_service.core.exceptions import InvalidStateError, SchemaError
from crowdsource_service.models import TaskStatus
from crowdsource_service.task_types.base import HookRequest, UploadedFile
from tests.helpers import PUBLISHER, SUBSCRIBER, png_bytes, publish_task

QUESTION = {"question": "Is there a cat?", "choices": ["yes", "no", "unsure"]}


def _new_task(engine) -> str:
    created = engine.tasks.create_task(
        PUBLISHER, {"name": "t", "description": "d", "excerption": "e", "type": "mark-image"}
    )
    return created["id"]


def _image(filename: str, content_type: str = "image/png") -> UploadedFile:
    return UploadedFile(
        field_name="images",
        filename=filename,
        content_type=content_type,
        content=png_bytes(),
    )


def _post(engine, task_id, body, files=()):
    request = HookRequest(principal=PUBLISHER, body=body, files=list(files))
    return engine.tasks.post_task_data(PUBLISHER, task_id, request)


def _work_directories(engine) -> list[str]:
    return sorted(
        path.name for path in engine.upload_directory.iterdir() if path.name != "thumbnails"
    )


def _answer(engine, assignment_id, answer):
    request = HookRequest(principal=SUBSCRIBER, body={"answer": answer})
    return engine.assignments.post_assignment_data(SUBSCRIBER, assignment_id, request)


# ---------------------------------------------------------------------------
# Task data
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_images_are_stored_in_work_directory(engine) -> None:
    task_id = _new_task(engine)

    _post(engine, task_id, {**QUESTION, "total": 2}, [_image("a.PNG"), _image("b")])

    data = engine.store.get_task(task_id).data
    assert data["images"] == ["1.png", "2"]
    assert data["progress"] == 0
    assert data["choiceAmount"] == 3
    directory = engine.upload_directory / data["dir"]
    assert sorted(path.name for path in directory.iterdir()) == ["1.png", "2"]
    assert (directory / "1.png").read_bytes() == png_bytes()


@pytest.mark.unit
def test_projection_counts_images(engine) -> None:
    task_id = _new_task(engine)
    _post(engine, task_id, {**QUESTION, "total": 1}, [_image("a.png")])

    result = engine.tasks.get_task(PUBLISHER, task_id, include_data=True)

    assert result["data"]["imageCount"] == 1
    assert result["data"]["question"] == "Is there a cat?"
    assert "images" not in result["data"]
    assert "dir" not in result["data"]


@pytest.mark.unit
def test_image_count_must_match_total(engine) -> None:
    """A rejected payload leaves no work directory behind."""
    task_id = _new_task(engine)

    with pytest.raises(SchemaError) as exc_info:
        _post(engine, task_id, {**QUESTION, "total": 3}, [_image("a.png")])

    assert exc_info.value.details["violations"][0]["loc"] == "total"
    assert _work_directories(engine) == []
    assert engine.store.get_task(task_id).valid is False


@pytest.mark.unit
def test_non_image_upload_is_rejected(engine) -> None:
    task_id = _new_task(engine)

    with pytest.raises(SchemaError):
        _post(engine, task_id, {**QUESTION, "total": 1}, [_image("a.txt", "text/plain")])

    assert _work_directories(engine) == []


@pytest.mark.unit
@pytest.mark.parametrize(
    "body",
    [
        {**QUESTION, "total": 1, "choiceAmount": 2},
        {"question": "q", "choices": [], "total": 1},
        {"question": "", "choices": ["a"], "total": 1},
        {**QUESTION, "total": 101},
        {**QUESTION},
    ],
)
def test_invalid_task_data(engine, body) -> None:
    task_id = _new_task(engine)
    with pytest.raises(SchemaError):
        _post(engine, task_id, body)


@pytest.mark.unit
def test_reposting_replaces_images(engine) -> None:
    task_id = _new_task(engine)
    _post(engine, task_id, {**QUESTION, "total": 1}, [_image("a.png")])
    first_dir = engine.store.get_task(task_id).data["dir"]

    _post(engine, task_id, {**QUESTION, "total": 1}, [_image("b.jpg", "image/jpeg")])

    data = engine.store.get_task(task_id).data
    assert _work_directories(engine) == [data["dir"]]
    assert data["dir"] != first_dir
    assert data["images"] == ["1.jpg"]


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_assignments_take_images_in_sequence(engine) -> None:
    task_id = _new_task(engine)
    _post(
        engine,
        task_id,
        {**QUESTION, "total": 2, "noSignup": True, "submitMultipleTimes": True},
        [_image("a.png"), _image("b.png")],
    )
    engine.tasks.patch_task(PUBLISHER, task_id, {"status": "SUBMITTED"})
    engine.store.update_task(
        task_id, {"status": TaskStatus.PUBLISHED}, expected_status=None
    )
    directory = engine.store.get_task(task_id).data["dir"]

    first = engine.assignments.create_assignment(
        SUBSCRIBER, {"task": task_id}, {"data": "true"}
    )
    second = engine.assignments.create_assignment(
        SUBSCRIBER, {"task": task_id}, {"data": "true"}
    )

    assert first["data"] == {
        "sequence": 1,
        "finished": False,
        "image": f"/uploads/{directory}/1.png",
    }
    assert second["data"]["sequence"] == 2
    assert engine.store.get_task(task_id).data["progress"] == 2
    with pytest.raises(InvalidStateError, match="all assigned"):
        engine.assignments.create_assignment(SUBSCRIBER, {"task": task_id}, {})


@pytest.mark.unit
def test_answer_finishes_assignment(engine) -> None:
    task_id = publish_task(engine, "mark-image", {**QUESTION, "total": 1, "noSignup": True})
    assignment_id = engine.assignments.create_assignment(
        SUBSCRIBER, {"task": task_id}, {}
    )["id"]

    with pytest.raises(SchemaError):
        _answer(engine, assignment_id, 4)
    with pytest.raises(SchemaError):
        _answer(engine, assignment_id, 0)

    result = _answer(engine, assignment_id, 2)

    assert result["valid"] is True
    assert result["summary"] == "Finished"
    stored = engine.store.get_assignment(assignment_id)
    assert stored.data["answer"] == 2
    assert stored.data["image"] is None
    with pytest.raises(InvalidStateError, match="already finished"):
        _answer(engine, assignment_id, 1)


@pytest.mark.unit
def test_answered_assignment_can_be_admitted(engine) -> None:
    task_id = publish_task(engine, "mark-image", {**QUESTION, "total": 1, "noSignup": True})
    assignment_id = engine.assignments.create_assignment(
        SUBSCRIBER, {"task": task_id}, {}
    )["id"]
    _answer(engine, assignment_id, 1)
    engine.assignments.patch_assignment(SUBSCRIBER, assignment_id, {"status": "SUBMITTED"}, {})

    result = engine.assignments.patch_assignment(
        PUBLISHER, assignment_id, {"status": "ADMITTED"}, {"data": "true"}
    )

    assert result["status"] == "ADMITTED"
    assert result["data"] == {"sequence": 1, "finished": True, "answer": 1}
    assert engine.store.get_task(task_id).completed is True


@pytest.mark.unit
def test_signup_assignment_projects_nothing(engine) -> None:
    task_id = publish_task(engine, "mark-image", {**QUESTION, "total": 1})

    signup = engine.assignments.create_assignment(
        SUBSCRIBER, {"task": task_id, "data": {"signup": True}}, {"data": "true"}
    )

    assert signup["status"] == "SUBMITTED"
    assert signup["data"] == {}
    with pytest.raises(InvalidStateError):
        _answer(engine, signup["id"], 1)
