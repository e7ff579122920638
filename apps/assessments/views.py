from __future__ import annotations

from django.db.models import QuerySet
from django.shortcuts import get_object_or_404
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.courses.models import CourseEnrollment
from apps.notifications.services import NotificationService
from apps.users.models import User
from apps.users.permissions import IsAdminHODOrTeacher, IsStudent

from .exceptions import AlreadySubmittedError
from .models import Assessment, AssessmentAssignment, Question
from .serializers import (
    AnswerSerializer,
    AssessmentAssignmentSerializer,
    AssessmentSerializer,
    GradeSerializer,
    QuestionSerializer,
    ReassignSerializer,
    ReportViolationSerializer,
    SaveAnswerSerializer,
)
from .services import GradingAccessGuard, GradingService, ReassignmentService, SessionLifecycle


class AssessmentViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Assessment.objects.select_related("course", "created_by")
    serializer_class = AssessmentSerializer
    permission_classes = [IsAuthenticated]
    filterset_fields = ("course", "delivery_mode", "is_published")
    search_fields = ("title", "description")
    ordering_fields = ("scheduled_at", "due_date", "created_at")

    def get_queryset(self) -> QuerySet[Assessment]:
        user = self.request.user
        qs = self.queryset
        if user.role in {User.Role.ADMIN, User.Role.HOD}:
            return qs
        if user.role == User.Role.TEACHER:
            return qs.filter(course__assigned_teacher=user)
        if user.role == User.Role.STUDENT:
            return qs.filter(
                is_published=True,
                course__enrollments__student=user,
                course__enrollments__status=CourseEnrollment.EnrollmentStatus.ENROLLED,
            ).distinct()
        return qs.none()

    def get_permissions(self):
        if self.action == "take":
            return [IsAuthenticated(), IsStudent()]
        return [IsAuthenticated()]

    @action(detail=True, methods=["post"], url_path="take")
    def take(self, request, *args, **kwargs):
        """Open (or resume) the current student's session on this assessment."""
        assessment = self.get_object()
        lifecycle = SessionLifecycle()

        session = lifecycle.get_or_create_session(assessment, request.user)
        if lifecycle.submit_if_expired(session, assessment):
            raise AlreadySubmittedError(
                "Time for this assessment has run out.",
                reason=AssessmentAssignment.TIME_EXPIRED,
            )
        lifecycle.start(session, assessment)

        context = {"request": request}
        return Response(
            {
                "assignment": AssessmentAssignmentSerializer(session, context=context).data,
                "questions": QuestionSerializer(assessment.questions.all(), many=True, context=context).data,
            }
        )


class AssessmentAssignmentViewSet(viewsets.ReadOnlyModelViewSet):
    """Sessions, plus the lifecycle actions students and graders perform on them."""

    queryset = AssessmentAssignment.objects.select_related(
        "assessment", "assessment__course", "student"
    ).prefetch_related("answers")
    serializer_class = AssessmentAssignmentSerializer
    permission_classes = [IsAuthenticated]
    filterset_fields = ("assessment", "student")
    ordering_fields = ("started_at", "submitted_at", "graded_at", "created_at")

    def get_queryset(self) -> QuerySet[AssessmentAssignment]:
        user = self.request.user
        qs = self.queryset
        if user.role in {User.Role.ADMIN, User.Role.HOD}:
            return qs
        if user.role == User.Role.TEACHER:
            return qs.filter(assessment__course__assigned_teacher=user)
        if user.role == User.Role.STUDENT:
            return qs.filter(student=user)
        return qs.none()

    def get_permissions(self):
        if self.action in {"save_answer", "submit", "report_violation"}:
            return [IsAuthenticated(), IsStudent()]
        if self.action in {"grading", "grade", "reassign"}:
            return [IsAuthenticated(), IsAdminHODOrTeacher()]
        return [IsAuthenticated()]

    def _session_data(self, session: AssessmentAssignment) -> dict:
        return AssessmentAssignmentSerializer(session, context=self.get_serializer_context()).data

    # =========================================================================
    # Student actions
    # =========================================================================

    @action(detail=True, methods=["post"], url_path="answers")
    def save_answer(self, request, *args, **kwargs):
        session = self.get_object()
        if request.user.pk != session.student_id:
            return Response(status=status.HTTP_403_FORBIDDEN)

        serializer = SaveAnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        question = get_object_or_404(
            Question, pk=serializer.validated_data["question"], assessment_id=session.assessment_id
        )
        answer = SessionLifecycle().save_answer(session, question, serializer.validated_data["payload"])
        return Response(AnswerSerializer(answer).data)

    @action(detail=True, methods=["post"], url_path="submit")
    def submit(self, request, *args, **kwargs):
        """Voluntary submit. Repeating it is harmless and returns the closed session."""
        session = self.get_object()
        if request.user.pk != session.student_id:
            return Response(status=status.HTTP_403_FORBIDDEN)

        assessment = session.assessment
        lifecycle = SessionLifecycle()
        submitted = lifecycle.submit_if_expired(session, assessment) or lifecycle.submit_by_student(
            session, assessment
        )
        if submitted:
            if session.graded_at:
                body = f"Your assessment '{assessment.title}' has been auto-graded. Score: {session.score}"
            else:
                body = f"Your assessment '{assessment.title}' has been submitted and is pending grading."
            NotificationService.send_notification(
                user_id=session.student_id,
                subject="Assessment Submitted",
                body=body,
                metadata={
                    "assignment_id": str(session.id),
                    "assessment_id": str(assessment.id),
                    "type": "assessment_submitted",
                },
            )
        return Response(self._session_data(session))

    @action(detail=True, methods=["post"], url_path="report-violation")
    def report_violation(self, request, *args, **kwargs):
        """Proctoring client reports a violation; supervised sessions are terminated."""
        session = self.get_object()
        if request.user.pk != session.student_id:
            return Response(status=status.HTTP_403_FORBIDDEN)

        serializer = ReportViolationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        assessment = session.assessment
        terminated = SessionLifecycle().submit_for_violation(
            session,
            assessment,
            serializer.validated_data["violation_type"],
            serializer.validated_data.get("details"),
        )
        if terminated and assessment.course.assigned_teacher_id:
            NotificationService.send_notification(
                user_id=assessment.course.assigned_teacher_id,
                subject="Assessment Terminated",
                body=f"{session.student.email}: {session.security_violation} on '{assessment.title}'.",
                metadata={
                    "assignment_id": str(session.id),
                    "assessment_id": str(assessment.id),
                    "violation": session.security_violation,
                    "type": "assessment_terminated",
                },
            )
        return Response({"terminated": terminated, "assignment": self._session_data(session)})

    # =========================================================================
    # Grader actions
    # =========================================================================

    @action(detail=True, methods=["get"], url_path="grading")
    def grading(self, request, *args, **kwargs):
        session = self.get_object()
        assessment = session.assessment
        decision = GradingAccessGuard().ensure_allowed(session, assessment)
        context = self.get_serializer_context()
        return Response(
            {
                "grading": {
                    "allowed": decision.allowed,
                    "reason": decision.reason,
                    "warning": decision.warning,
                },
                "assignment": self._session_data(session),
                "questions": QuestionSerializer(assessment.questions.all(), many=True, context=context).data,
            }
        )

    @action(detail=True, methods=["post"], url_path="grade")
    def grade(self, request, *args, **kwargs):
        session = self.get_object()
        serializer = GradeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        assessment = session.assessment
        GradingService().save_grade(
            session,
            assessment,
            scores=serializer.score_map(),
            teacher_notes=serializer.validated_data.get("teacher_notes"),
        )
        NotificationService.send_notification(
            user_id=session.student_id,
            subject="Assessment Graded",
            body=f"Your submission for '{assessment.title}' has been graded.",
            metadata={
                "assignment_id": str(session.id),
                "assessment_id": str(assessment.id),
                "type": "assessment_graded",
            },
        )
        return Response(self._session_data(session))

    @action(detail=True, methods=["post"], url_path="reassign")
    def reassign(self, request, *args, **kwargs):
        session = self.get_object()
        serializer = ReassignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        assessment = session.assessment
        ReassignmentService.reassign(
            session, assessment, serializer.validated_data["reason"], actor=request.user
        )
        NotificationService.send_notification(
            user_id=session.student_id,
            subject="Assessment Reassigned",
            body=f"You have been given a new attempt at '{assessment.title}'.",
            metadata={
                "assignment_id": str(session.id),
                "assessment_id": str(assessment.id),
                "type": "assessment_reassigned",
            },
        )
        return Response(self._session_data(session))
