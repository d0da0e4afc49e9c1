"""Folder enrolment: one sub-directory per person, one face per image.

Layout expected under the root folder::

    root/
      alice/   a1.jpg a2.png ...
      bob/     b1.jpg ...

Each sub-directory becomes a person in the large person group; every image
in it is added as a face through the batch dispatcher, so conflicts and
rate limits re-queue the image instead of failing the folder.  Images with
more or less than one face are counted and reported once at the end.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from facebatch.client.face_service import FaceServiceClient
from facebatch.core.logging import LogContext, get_logger
from facebatch.execution.cancellation import CancellationToken
from facebatch.execution.dispatcher import BatchDispatcher, DispatchPolicy, DispatchResult
from facebatch.execution.observer import Observer
from facebatch.execution.retry import RetryPolicy, run_with_retry
from facebatch.workflows.training import train_and_wait

logger = get_logger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".gif"})


def find_images(folder: Path) -> list[Path]:
    """All image files under ``folder`` (recursive), sorted by path."""
    return sorted(
        p for p in Path(folder).rglob("*")
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )


@dataclass
class PersonEnrollment:
    """Outcome of enrolling one person folder."""

    name: str
    person_id: str
    folder: Path
    faces: dict[str, str] = field(default_factory=dict)  # image path -> persisted face id
    skipped: int = 0
    result: DispatchResult | None = None

    @property
    def unprocessable(self) -> int:
        return self.result.unprocessable if self.result else 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "person_id": self.person_id,
            "faces": len(self.faces),
            "skipped": self.skipped,
        }
        if self.result is not None:
            data["dispatch"] = self.result.to_dict()
        return data


@dataclass
class GroupEnrollment:
    """Outcome of enrolling a whole root folder into one group."""

    group_id: str
    persons: list[PersonEnrollment] = field(default_factory=list)
    training: dict[str, Any] | None = None

    @property
    def total_faces(self) -> int:
        return sum(len(p.faces) for p in self.persons)

    @property
    def unprocessable(self) -> int:
        return sum(p.unprocessable for p in self.persons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "total_faces": self.total_faces,
            "unprocessable": self.unprocessable,
            "training": self.training,
            "persons": [p.to_dict() for p in self.persons],
        }


async def enroll_person_folder(
    client: FaceServiceClient,
    group_id: str,
    folder: Path,
    *,
    name: str | None = None,
    retry_policy: RetryPolicy | None = None,
    dispatch_policy: DispatchPolicy | None = None,
    suggestion_limit: int | None = None,
    observer: Observer | None = None,
    cancel: CancellationToken | None = None,
    on_face: Callable[[Path, dict[str, Any]], None] | None = None,
) -> PersonEnrollment:
    """Create a person for ``folder`` and add every image in it as a face.

    Args:
        suggestion_limit: Only the first N images are enrolled; the rest are
            counted in ``skipped``
        on_face: Called with (image path, persisted face body) per added face
    """
    folder = Path(folder)
    name = name or folder.name

    logger.info("enrollment.create_person", group_id=group_id, person=name)
    person = await run_with_retry(
        lambda: client.create_person(group_id, name, user_data=str(folder)),
        retry_policy,
        observer=observer,
        cancel=cancel,
    )
    enrollment = PersonEnrollment(name=name, person_id=person["personId"], folder=folder)

    images = find_images(folder)
    if suggestion_limit is not None and len(images) > suggestion_limit:
        enrollment.skipped = len(images) - suggestion_limit
        logger.warning(
            "enrollment.suggestion_limit",
            person=name,
            images=len(images),
            limit=suggestion_limit,
        )
        images = images[:suggestion_limit]

    async def add_face(path: Path) -> dict[str, Any]:
        image = await asyncio.to_thread(path.read_bytes)
        return await client.add_person_face(group_id, enrollment.person_id, image, user_data=str(path))

    def record_face(path: Path, face: dict[str, Any]) -> None:
        enrollment.faces[str(path)] = face["persistedFaceId"]
        if on_face is not None:
            on_face(path, face)

    dispatcher = BatchDispatcher(
        add_face,
        dispatch_policy,
        on_success=record_face,
        observer=observer,
        cancel=cancel,
    )
    async with LogContext(group_id=group_id, person=name):
        enrollment.result = await dispatcher.run(images)

    logger.info(
        "enrollment.person_complete",
        person=name,
        person_id=enrollment.person_id,
        faces=len(enrollment.faces),
    )
    return enrollment


async def enroll_group(
    client: FaceServiceClient,
    group_id: str,
    root: Path,
    *,
    create_group: bool = False,
    train: bool = True,
    retry_policy: RetryPolicy | None = None,
    dispatch_policy: DispatchPolicy | None = None,
    suggestion_limit: int | None = None,
    poll_interval: float = 1.0,
    training_timeout: float | None = None,
    observer: Observer | None = None,
    cancel: CancellationToken | None = None,
) -> GroupEnrollment:
    """Enrol every sub-directory of ``root`` as a person, then train.

    Raises:
        RemoteError: If group or person creation fails fatally
    """
    root = Path(root)
    outcome = GroupEnrollment(group_id=group_id)

    if create_group:
        logger.info("enrollment.create_group", group_id=group_id)
        await client.create_large_person_group(group_id, group_id, user_data=str(root))

    for folder in sorted(p for p in root.iterdir() if p.is_dir()):
        if cancel is not None and cancel.cancelled:
            logger.warning("enrollment.cancelled", group_id=group_id)
            break
        outcome.persons.append(
            await enroll_person_folder(
                client,
                group_id,
                folder,
                retry_policy=retry_policy,
                dispatch_policy=dispatch_policy,
                suggestion_limit=suggestion_limit,
                observer=observer,
                cancel=cancel,
            )
        )

    if outcome.unprocessable:
        logger.warning(
            "enrollment.invalid_images",
            group_id=group_id,
            count=outcome.unprocessable,
            detail="more or less than one face is detected, cannot add to group",
        )
    logger.info("enrollment.faces_added", group_id=group_id, total=outcome.total_faces)

    if train and not (cancel is not None and cancel.cancelled):
        outcome.training = await train_and_wait(
            client,
            group_id,
            retry_policy=retry_policy,
            poll_interval=poll_interval,
            timeout=training_timeout,
            observer=observer,
            cancel=cancel,
        )

    return outcome


__all__ = [
    "IMAGE_EXTENSIONS",
    "find_images",
    "PersonEnrollment",
    "GroupEnrollment",
    "enroll_person_folder",
    "enroll_group",
]
