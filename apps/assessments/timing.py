"""
Deadline arithmetic for assessments and their sessions.

Every "when does this end" question in the lifecycle (expiry sweep, grading
guard, reminder window, answer writes) is answered here, by one policy object
per delivery mode. Everything is pure: callers pass in already-loaded rows and
the instant they consider to be "now".
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings

HOMEWORK = "homework"
SUPERVISED = "supervised"


@dataclass(frozen=True)
class Availability:
    available: bool
    reason: str | None = None


class DeliveryTiming:
    """Deadline rules shared by both delivery modes."""

    mode = ""

    def horizon(self, assessment) -> datetime | None:
        """Instant after which the assessment as a whole has ended, if any."""
        raise NotImplementedError

    def ends_at(self, assessment) -> datetime | None:
        return None

    def has_ended(self, assessment, now: datetime) -> bool:
        horizon = self.horizon(assessment)
        return horizon is not None and now > horizon

    def personal_deadline(self, session, assessment) -> datetime | None:
        return None

    def is_personal_time_expired(self, session, assessment, now: datetime, grace_seconds: int = 0) -> bool:
        deadline = self.personal_deadline(session, assessment)
        if deadline is None:
            return False
        return now > deadline + timedelta(seconds=grace_seconds)

    def remaining_seconds(self, session, assessment, now: datetime) -> int | None:
        deadline = self.personal_deadline(session, assessment)
        if deadline is None:
            return None
        return max(0, int((deadline - now).total_seconds()))

    def effective_deadline(self, session, assessment, now: datetime) -> datetime:
        """
        Instant the session's entitlement ended, used to stamp forced submissions.

        Personal deadline first, then the assessment horizon, then `now`. Never
        later than `now`: a session force-submitted because the global window
        closed before its personal deadline is stamped at the sweep instant.
        """
        deadline = self.personal_deadline(session, assessment)
        if deadline is None:
            deadline = self.horizon(assessment)
        if deadline is None:
            return now
        return min(deadline, now)

    def availability(self, assessment, now: datetime) -> Availability:
        raise NotImplementedError

    def results_available_at(self, assessment) -> datetime | None:
        return None


class HomeworkTiming(DeliveryTiming):
    mode = HOMEWORK

    def horizon(self, assessment):
        return assessment.due_date

    def availability(self, assessment, now):
        if not assessment.is_published:
            return Availability(False, "assessment_not_published")
        if self.has_ended(assessment, now) and not assessment.allow_late_submission:
            return Availability(False, "assessment_due_date_passed")
        return Availability(True)


class SupervisedTiming(DeliveryTiming):
    mode = SUPERVISED

    def ends_at(self, assessment):
        # scheduled without a duration is treated as instantaneous
        if assessment.scheduled_at is None:
            return None
        if not assessment.duration_minutes:
            return assessment.scheduled_at
        return assessment.scheduled_at + timedelta(minutes=assessment.duration_minutes)

    def horizon(self, assessment):
        return self.ends_at(assessment)

    def personal_deadline(self, session, assessment):
        if session.started_at is None or not assessment.duration_minutes:
            return None
        return session.started_at + timedelta(minutes=assessment.duration_minutes)

    def availability(self, assessment, now):
        if not assessment.is_published:
            return Availability(False, "assessment_not_published")
        if assessment.scheduled_at is not None and now < assessment.scheduled_at:
            return Availability(False, "assessment_not_started")
        if self.has_ended(assessment, now) and not assessment.allow_late_submission:
            return Availability(False, "assessment_ended")
        return Availability(True)

    def results_available_at(self, assessment):
        ends_at = self.ends_at(assessment)
        if ends_at is None:
            return None
        return ends_at + timedelta(minutes=settings.ASSESSMENT_RESULTS_EMBARGO_MINUTES)


_POLICIES: dict[str, DeliveryTiming] = {
    HOMEWORK: HomeworkTiming(),
    SUPERVISED: SupervisedTiming(),
}


def timing_for(assessment) -> DeliveryTiming:
    try:
        return _POLICIES[assessment.delivery_mode]
    except KeyError:
        raise ValueError(f"Unknown delivery mode: {assessment.delivery_mode!r}") from None


def has_assessment_ended(assessment, now: datetime) -> bool:
    return timing_for(assessment).has_ended(assessment, now)


def is_personal_time_expired(session, assessment, now: datetime, grace_seconds: int = 0) -> bool:
    return timing_for(assessment).is_personal_time_expired(session, assessment, now, grace_seconds)


def effective_deadline(session, assessment, now: datetime) -> datetime:
    return timing_for(assessment).effective_deadline(session, assessment, now)


def remaining_seconds(session, assessment, now: datetime) -> int | None:
    return timing_for(assessment).remaining_seconds(session, assessment, now)


def availability(assessment, now: datetime) -> Availability:
    return timing_for(assessment).availability(assessment, now)


def results_available_at(assessment) -> datetime | None:
    return timing_for(assessment).results_available_at(assessment)


def is_results_embargo_lifted(assessment, now: datetime) -> bool:
    if assessment.delivery_mode == HOMEWORK:
        return True
    available_at = results_available_at(assessment)
    return available_at is not None and now >= available_at


def starts_within(assessment, now: datetime, window: timedelta) -> bool:
    """True when the assessment is scheduled to open in (now, now + window]."""
    scheduled_at = assessment.scheduled_at
    return scheduled_at is not None and now < scheduled_at <= now + window
