from __future__ import annotations

from rest_framework import serializers

from apps.common.clock import system_clock
from apps.users.models import User

from . import timing
from .models import Answer, Assessment, AssessmentAssignment, Question


def _now(context):
    return context.get("clock", system_clock).now()


def _is_student(context) -> bool:
    request = context.get("request")
    user = getattr(request, "user", None)
    if not user or not getattr(user, "is_authenticated", False):
        return False
    return user.role == User.Role.STUDENT


class QuestionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Question
        fields = ("id", "prompt", "question_type", "points", "options", "correct_answer", "order")

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # Answer key is staff-only.
        if _is_student(self.context):
            data.pop("correct_answer", None)
        return data


class AssessmentSerializer(serializers.ModelSerializer):
    course_code = serializers.CharField(source="course.code", read_only=True)
    ends_at = serializers.DateTimeField(read_only=True)
    results_available_at = serializers.DateTimeField(read_only=True)
    availability = serializers.SerializerMethodField()

    class Meta:
        model = Assessment
        fields = (
            "id",
            "course",
            "course_code",
            "title",
            "description",
            "delivery_mode",
            "due_date",
            "scheduled_at",
            "duration_minutes",
            "ends_at",
            "is_published",
            "allow_late_submission",
            "results_available_at",
            "availability",
            "created_at",
        )
        read_only_fields = fields

    def get_availability(self, obj) -> dict:
        result = timing.availability(obj, _now(self.context))
        return {"available": result.available, "reason": result.reason}


class AnswerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Answer
        fields = ("id", "question", "payload", "score", "feedback", "updated_at")
        read_only_fields = fields


class AssessmentAssignmentSerializer(serializers.ModelSerializer):
    status = serializers.CharField(read_only=True)
    student_email = serializers.EmailField(source="student.email", read_only=True)
    remaining_seconds = serializers.SerializerMethodField()
    answers = AnswerSerializer(many=True, read_only=True)

    class Meta:
        model = AssessmentAssignment
        fields = (
            "id",
            "assessment",
            "student",
            "student_email",
            "status",
            "started_at",
            "submitted_at",
            "graded_at",
            "score",
            "forced_submission",
            "security_violation",
            "teacher_notes",
            "remaining_seconds",
            "answers",
        )
        read_only_fields = fields

    def get_remaining_seconds(self, obj) -> int | None:
        if obj.status != AssessmentAssignment.Status.NOT_SUBMITTED:
            return None
        return timing.remaining_seconds(obj, obj.assessment, _now(self.context))

    def to_representation(self, instance):
        """
        Students see their results only once the session is graded and, for
        supervised assessments, the results embargo has lifted.
        """
        data = super().to_representation(instance)
        if not _is_student(self.context):
            return data

        data.pop("teacher_notes", None)
        released = instance.graded_at is not None and timing.is_results_embargo_lifted(
            instance.assessment, _now(self.context)
        )
        if not released:
            data["score"] = None
            for answer in data.get("answers") or []:
                answer["score"] = None
                answer["feedback"] = None
        return data


class SaveAnswerSerializer(serializers.Serializer):
    question = serializers.UUIDField()
    payload = serializers.JSONField(allow_null=True)


class ReportViolationSerializer(serializers.Serializer):
    violation_type = serializers.CharField(max_length=100)
    details = serializers.CharField(max_length=150, required=False, allow_blank=True, allow_null=True)


class GradeEntrySerializer(serializers.Serializer):
    question = serializers.UUIDField()
    score = serializers.DecimalField(max_digits=6, decimal_places=2, required=False, allow_null=True)
    feedback = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class GradeSerializer(serializers.Serializer):
    scores = GradeEntrySerializer(many=True, required=False)
    teacher_notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_scores(self, value):
        seen = set()
        for entry in value:
            if entry["question"] in seen:
                raise serializers.ValidationError("Each question can only be graded once.")
            seen.add(entry["question"])
        return value

    def score_map(self) -> dict[str, dict]:
        """question id -> {"score", "feedback"} with only the keys that were sent."""
        return {
            str(entry["question"]): {k: v for k, v in entry.items() if k != "question"}
            for entry in self.validated_data.get("scores", [])
        }


class ReassignSerializer(serializers.Serializer):
    # Blank is allowed here; the service reports it as `missing_reason`.
    reason = serializers.CharField(required=False, allow_blank=True, default="")
