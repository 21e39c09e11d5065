from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from entry.core.time import utcnow
from entry.models.enums import PointsSourceEnum, ProofTypeEnum, QuestStatusEnum, SubmissionStatusEnum
from entry.models.reps import Rep, RepEvent, RepQuest, RepQuestSubmission
from entry.reps.notifications import create_notification, send_rep_email
from entry.reps.points import award_points, send_level_up_email


logger = logging.getLogger(__name__)

MAX_PROOF_URL_LENGTH = 2000
MAX_PROOF_TEXT_LENGTH = 5000
MEDIA_PATH_PREFIX = "/api/media/"


class QuestError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def validate_proof(proof_type: Optional[str], proof_url: Optional[str], proof_text: Optional[str]) -> ProofTypeEnum:
    try:
        kind = ProofTypeEnum(proof_type)
    except ValueError:
        raise QuestError("Invalid proof_type. Must be: screenshot, url, or text") from None
    if kind == ProofTypeEnum.SCREENSHOT and not proof_url:
        raise QuestError("proof_url is required for screenshot submissions")
    if kind == ProofTypeEnum.URL and not proof_url:
        raise QuestError("proof_url is required for URL submissions")
    if kind == ProofTypeEnum.TEXT and not proof_text:
        raise QuestError("proof_text is required for text submissions")
    if proof_url and len(proof_url) > MAX_PROOF_URL_LENGTH:
        raise QuestError("proof_url must be under 2000 characters")
    if proof_text and len(proof_text) > MAX_PROOF_TEXT_LENGTH:
        raise QuestError("proof_text must be under 5000 characters")
    if proof_url and kind in (ProofTypeEnum.URL, ProofTypeEnum.SCREENSHOT):
        if not proof_url.startswith(MEDIA_PATH_PREFIX):
            parsed = urlparse(proof_url)
            if not parsed.scheme or not parsed.netloc:
                raise QuestError("proof_url must be a valid URL")
            if parsed.scheme not in ("http", "https"):
                raise QuestError("proof_url must be an HTTP or HTTPS URL")
    return kind


def _active_submission_count(db: Session, quest: RepQuest, rep: Rep) -> int:
    return (
        db.query(RepQuestSubmission)
        .filter(
            RepQuestSubmission.org_id == rep.org_id,
            RepQuestSubmission.quest_id == quest.id,
            RepQuestSubmission.rep_id == rep.id,
            RepQuestSubmission.status.in_((SubmissionStatusEnum.PENDING, SubmissionStatusEnum.APPROVED)),
        )
        .count()
    )


def list_available_quests(db: Session, rep: Rep) -> list[RepQuest]:
    """Active, in-window quests that are global or tied to one of the rep's events."""
    now = utcnow()
    event_ids = {
        event_id
        for (event_id,) in db.query(RepEvent.event_id).filter(
            RepEvent.org_id == rep.org_id, RepEvent.rep_id == rep.id
        )
    }
    quests = (
        db.query(RepQuest)
        .filter(RepQuest.org_id == rep.org_id, RepQuest.status == QuestStatusEnum.ACTIVE)
        .order_by(RepQuest.created_at.desc(), RepQuest.id.desc())
        .all()
    )
    return [
        quest
        for quest in quests
        if (quest.starts_at is None or quest.starts_at <= now)
        and (quest.expires_at is None or quest.expires_at >= now)
        and (quest.event_id is None or quest.event_id in event_ids)
    ]


def submit_quest(
    db: Session,
    rep: Rep,
    quest_id: int,
    *,
    proof_type: Optional[str],
    proof_url: Optional[str] = None,
    proof_text: Optional[str] = None,
) -> RepQuestSubmission:
    kind = validate_proof(proof_type, proof_url, proof_text)
    quest = db.query(RepQuest).filter(RepQuest.org_id == rep.org_id, RepQuest.id == quest_id).first()
    if quest is None:
        raise QuestError("Quest not found", 404)
    now = utcnow()
    if quest.status != QuestStatusEnum.ACTIVE:
        raise QuestError("This quest is no longer active")
    if quest.expires_at and quest.expires_at < now:
        raise QuestError("This quest has expired")
    if quest.starts_at and quest.starts_at > now:
        raise QuestError("This quest has not started yet")
    if quest.max_total is not None and (quest.total_completed or 0) >= quest.max_total:
        raise QuestError("This quest has reached its maximum number of completions")
    if quest.max_completions is not None and _active_submission_count(db, quest, rep) >= quest.max_completions:
        raise QuestError("You have reached the maximum number of submissions for this quest")
    if quest.event_id is not None:
        assigned = (
            db.query(RepEvent.id)
            .filter(
                RepEvent.org_id == rep.org_id,
                RepEvent.rep_id == rep.id,
                RepEvent.event_id == quest.event_id,
            )
            .first()
        )
        if not assigned:
            raise QuestError("You are not assigned to the event for this quest", 403)

    submission = RepQuestSubmission(
        org_id=rep.org_id,
        quest_id=quest.id,
        rep_id=rep.id,
        proof_type=kind,
        proof_url=proof_url or None,
        proof_text=proof_text or None,
        status=SubmissionStatusEnum.PENDING,
        points_awarded=0,
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    return submission


def review_submission(
    db: Session,
    submission: RepQuestSubmission,
    *,
    status: str,
    reviewed_by: str,
    rejection_reason: Optional[str] = None,
) -> RepQuestSubmission:
    try:
        decision = SubmissionStatusEnum(status)
    except ValueError:
        raise QuestError("status must be 'approved' or 'rejected'") from None
    if decision == SubmissionStatusEnum.PENDING:
        raise QuestError("status must be 'approved' or 'rejected'")
    if decision == SubmissionStatusEnum.REJECTED and not (rejection_reason or "").strip():
        raise QuestError("rejection_reason is required when rejecting")
    if submission.status != SubmissionStatusEnum.PENDING:
        raise QuestError(f"Submission is already {SubmissionStatusEnum(submission.status).value}")

    quest = submission.quest
    rep = submission.rep
    submission.status = decision
    submission.reviewed_by = reviewed_by
    submission.reviewed_at = utcnow()
    change = None
    if decision == SubmissionStatusEnum.APPROVED:
        reward = quest.points_reward or 0
        submission.points_awarded = reward
        submission.rejection_reason = None
        if reward > 0:
            change = award_points(
                db,
                rep,
                points=reward,
                source_type=PointsSourceEnum.QUEST,
                source_id=submission.id,
                description=f"Quest completed: {quest.title}",
                created_by=reviewed_by,
            )
        quest.total_completed = (quest.total_completed or 0) + 1
        create_notification(
            db,
            rep=rep,
            type="quest_approved",
            title="Quest approved!",
            body=f"{quest.title}: +{reward} points",
            link="/rep/quests",
            metadata={"quest_id": quest.id, "submission_id": submission.id},
        )
    else:
        submission.points_awarded = 0
        submission.rejection_reason = rejection_reason.strip()
        create_notification(
            db,
            rep=rep,
            type="quest_rejected",
            title="Quest not approved",
            body=f"{quest.title}: {submission.rejection_reason}",
            link="/rep/quests",
            metadata={"quest_id": quest.id, "submission_id": submission.id},
        )
    db.commit()
    db.refresh(submission)

    if decision == SubmissionStatusEnum.APPROVED:
        send_rep_email(db, rep, "quest_approved", {"quest_title": quest.title, "points": submission.points_awarded})
        if change is not None:
            send_level_up_email(db, rep, change)
    else:
        send_rep_email(
            db,
            rep,
            "quest_rejected",
            {"quest_title": quest.title, "rejection_reason": submission.rejection_reason},
        )
    return submission
