"""Call sites built on the retry executor and dispatcher."""

from facebatch.workflows.enrollment import (
    GroupEnrollment,
    PersonEnrollment,
    enroll_group,
    enroll_person_folder,
    find_images,
)
from facebatch.workflows.training import TrainingFailed, TrainingStatus, train_and_wait

__all__ = [
    "GroupEnrollment",
    "PersonEnrollment",
    "TrainingFailed",
    "TrainingStatus",
    "enroll_group",
    "enroll_person_folder",
    "find_images",
    "train_and_wait",
]
