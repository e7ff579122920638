from rest_framework.routers import DefaultRouter

from .views import AssessmentAssignmentViewSet, AssessmentViewSet

router = DefaultRouter()
router.register("assignments", AssessmentAssignmentViewSet, basename="assessment-assignments")
router.register("", AssessmentViewSet, basename="assessments")

urlpatterns = router.urls
