from __future__ import annotations

from django.conf import settings
from django.db import models

from apps.common.models import BaseModel

User = settings.AUTH_USER_MODEL


class Course(BaseModel):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        ACTIVE = "ACTIVE", "Active"
        ARCHIVED = "ARCHIVED", "Archived"

    code = models.CharField(max_length=20, unique=True)
    title = models.CharField(max_length=255)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    assigned_teacher = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        related_name="courses_taught",
        null=True,
        blank=True,
    )

    class Meta:
        ordering = ("code",)

    def __str__(self) -> str:
        return f"{self.code} - {self.title}"


class CourseEnrollmentQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status=CourseEnrollment.EnrollmentStatus.ENROLLED)


class CourseEnrollment(BaseModel):
    class EnrollmentStatus(models.TextChoices):
        ENROLLED = "ENROLLED", "Enrolled"
        DROPPED = "DROPPED", "Dropped"
        COMPLETED = "COMPLETED", "Completed"

    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name="enrollments")
    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name="course_enrollments")
    status = models.CharField(
        max_length=20,
        choices=EnrollmentStatus.choices,
        default=EnrollmentStatus.ENROLLED,
    )

    objects = CourseEnrollmentQuerySet.as_manager()

    class Meta:
        unique_together = ("course", "student")
        ordering = ("-created_at",)

    def __str__(self) -> str:
        return f"{self.student} in {self.course}"
