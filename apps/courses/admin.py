from django.contrib import admin

from .models import Course, CourseEnrollment


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ("code", "title", "status", "assigned_teacher")
    list_filter = ("status",)
    search_fields = ("code", "title")


@admin.register(CourseEnrollment)
class CourseEnrollmentAdmin(admin.ModelAdmin):
    list_display = ("id", "course", "student", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("course__code", "student__email")
