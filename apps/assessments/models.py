from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.common.models import BaseModel
from apps.courses.models import Course

from . import timing

User = settings.AUTH_USER_MODEL


class Assessment(BaseModel):
    class DeliveryMode(models.TextChoices):
        HOMEWORK = timing.HOMEWORK, "Homework"
        SUPERVISED = timing.SUPERVISED, "Supervised"

    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name="assessments")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    delivery_mode = models.CharField(
        max_length=20, choices=DeliveryMode.choices, default=DeliveryMode.HOMEWORK
    )
    # Homework
    due_date = models.DateTimeField(null=True, blank=True)
    # Supervised
    scheduled_at = models.DateTimeField(null=True, blank=True)
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)
    is_published = models.BooleanField(default=False)
    allow_late_submission = models.BooleanField(
        default=False,
        help_text="Keep the assessment open to students after its due date / end time.",
    )
    reminder_sent_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, related_name="assessments_created", null=True, blank=True
    )

    class Meta:
        ordering = ("-created_at",)
        indexes = [
            models.Index(fields=["is_published", "scheduled_at"], name="assess_published_sched_idx"),
            models.Index(fields=["is_published", "reminder_sent_at"], name="assess_published_remind_idx"),
        ]

    def __str__(self) -> str:
        return self.title

    @property
    def is_supervised(self) -> bool:
        return self.delivery_mode == self.DeliveryMode.SUPERVISED

    @property
    def is_homework(self) -> bool:
        return self.delivery_mode == self.DeliveryMode.HOMEWORK

    @property
    def ends_at(self):
        return timing.timing_for(self).ends_at(self)

    def has_ended(self, now=None) -> bool:
        return timing.has_assessment_ended(self, now or timezone.now())

    @property
    def results_available_at(self):
        return timing.results_available_at(self)

    @property
    def requires_manual_review(self) -> bool:
        return self.questions.filter(question_type=Question.QuestionType.TEXT).exists()


class Question(BaseModel):
    class QuestionType(models.TextChoices):
        ONE_CHOICE = "one_choice", "Single choice"
        MULTIPLE = "multiple", "Multiple choice"
        BOOLEAN = "boolean", "True / False"
        TEXT = "text", "Free text"

    assessment = models.ForeignKey(Assessment, on_delete=models.CASCADE, related_name="questions")
    prompt = models.TextField()
    question_type = models.CharField(
        max_length=20, choices=QuestionType.choices, default=QuestionType.ONE_CHOICE
    )
    points = models.DecimalField(max_digits=6, decimal_places=2, default=1)
    options = models.JSONField(default=list, blank=True)
    correct_answer = models.JSONField(null=True, blank=True)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ("assessment", "order")

    def __str__(self) -> str:
        return f"Q{self.order} of {self.assessment}"

    @property
    def requires_manual_grading(self) -> bool:
        return self.question_type == self.QuestionType.TEXT


class AssessmentAssignmentQuerySet(models.QuerySet):
    def submitted(self):
        return self.filter(submitted_at__isnull=False)

    def graded(self):
        return self.filter(graded_at__isnull=False)

    def not_submitted(self):
        # graded without a submission counts as closed too
        return self.filter(submitted_at__isnull=True, graded_at__isnull=True)

    def in_progress(self):
        return self.not_submitted().filter(started_at__isnull=False)


class AssessmentAssignment(BaseModel):
    """
    One student's session for one assessment.

    There is no stored status: `status` is derived from the three lifecycle
    timestamps, which are only ever written by the lifecycle services.
    """

    class Status(models.TextChoices):
        NOT_SUBMITTED = "not_submitted", "Not submitted"
        SUBMITTED = "submitted", "Submitted"
        GRADED = "graded", "Graded"

    TIME_EXPIRED = "time_expired"

    assessment = models.ForeignKey(Assessment, on_delete=models.CASCADE, related_name="assignments")
    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name="assessment_assignments")
    started_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    graded_at = models.DateTimeField(null=True, blank=True)
    score = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)
    forced_submission = models.BooleanField(default=False)
    security_violation = models.CharField(max_length=255, null=True, blank=True)
    teacher_notes = models.TextField(null=True, blank=True)

    objects = AssessmentAssignmentQuerySet.as_manager()

    class Meta:
        ordering = ("-created_at",)
        constraints = [
            models.UniqueConstraint(fields=["assessment", "student"], name="unique_assignment_per_student"),
        ]
        indexes = [
            models.Index(fields=["submitted_at", "started_at"], name="assign_submitted_started_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.student} on {self.assessment}"

    @property
    def status(self) -> str:
        if self.graded_at:
            return self.Status.GRADED
        if self.submitted_at:
            return self.Status.SUBMITTED
        return self.Status.NOT_SUBMITTED

    @property
    def is_in_progress(self) -> bool:
        return self.started_at is not None and self.status == self.Status.NOT_SUBMITTED


class Answer(BaseModel):
    assignment = models.ForeignKey(AssessmentAssignment, on_delete=models.CASCADE, related_name="answers")
    question = models.ForeignKey(Question, on_delete=models.CASCADE, related_name="answers")
    payload = models.JSONField(null=True, blank=True)
    score = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    feedback = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ("question__order",)
        constraints = [
            models.UniqueConstraint(fields=["assignment", "question"], name="unique_answer_per_question"),
        ]

    def __str__(self) -> str:
        return f"Answer to {self.question_id} in {self.assignment_id}"
