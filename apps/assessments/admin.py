from django.contrib import admin

from .models import Answer, Assessment, AssessmentAssignment, Question


class QuestionInline(admin.TabularInline):
    model = Question
    extra = 0
    fields = ("order", "question_type", "prompt", "points")


@admin.register(Assessment)
class AssessmentAdmin(admin.ModelAdmin):
    list_display = ("title", "course", "delivery_mode", "scheduled_at", "due_date", "is_published")
    list_filter = ("delivery_mode", "is_published")
    search_fields = ("title", "course__code")
    readonly_fields = ("reminder_sent_at",)
    inlines = [QuestionInline]


@admin.register(AssessmentAssignment)
class AssessmentAssignmentAdmin(admin.ModelAdmin):
    list_display = ("assessment", "student", "status", "started_at", "submitted_at", "graded_at", "score")
    list_filter = ("forced_submission",)
    search_fields = ("assessment__title", "student__email")
    # Lifecycle timestamps are written by the lifecycle services only.
    readonly_fields = ("started_at", "submitted_at", "graded_at", "forced_submission", "security_violation")


@admin.register(Answer)
class AnswerAdmin(admin.ModelAdmin):
    list_display = ("assignment", "question", "score", "updated_at")
    search_fields = ("assignment__student__email",)
