from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from app import audit
from app.core.auth import ActorUser
from app.core.errors import AccessDeniedError, ConflictError, NotFoundError, ValidationError
from app.crm.models import Lead
from app.meetings.models import Meeting, MeetingAttendee, utcnow
from app.meetings.schemas import MeetingCreate, MeetingInvite, MeetingRead, MeetingResponse, MeetingUpdate
from app.users.service import user_service


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class MeetingService:
    entity_type = "meeting"

    def list_meetings(self, session: Session, actor_user: ActorUser) -> list[MeetingRead]:
        stmt = select(Meeting).options(selectinload(Meeting.attendees))
        if not actor_user.is_staff_manager:
            invited = select(MeetingAttendee.meeting_id).where(MeetingAttendee.user_id == actor_user.user_id)
            stmt = stmt.where(or_(Meeting.organizer_id == actor_user.user_id, Meeting.id.in_(invited)))
        meetings = session.scalars(stmt.order_by(Meeting.start_time.asc())).all()
        return [MeetingRead.model_validate(meeting) for meeting in meetings]

    def list_invites(self, session: Session, actor_user: ActorUser) -> list[MeetingRead]:
        meetings = session.scalars(
            select(Meeting)
            .join(MeetingAttendee, MeetingAttendee.meeting_id == Meeting.id)
            .where(MeetingAttendee.user_id == actor_user.user_id, MeetingAttendee.status == "PENDING")
            .options(selectinload(Meeting.attendees))
            .order_by(Meeting.start_time.asc())
        ).all()
        return [MeetingRead.model_validate(meeting) for meeting in meetings]

    def create_meeting(self, session: Session, actor_user: ActorUser, dto: MeetingCreate) -> MeetingRead:
        if dto.lead_id is not None and session.get(Lead, dto.lead_id) is None:
            raise NotFoundError("Lead not found", details={"lead_id": str(dto.lead_id)})
        # The organiser is never listed as an attendee.
        attendee_ids = [user_id for user_id in dict.fromkeys(dto.attendee_ids) if user_id != actor_user.user_id]
        self._ensure_users_exist(session, attendee_ids)

        meeting = Meeting(
            title=dto.title.strip(),
            description=dto.description,
            location=dto.location,
            meeting_url=dto.meeting_url,
            start_time=dto.start_time,
            end_time=dto.end_time,
            organizer_id=actor_user.user_id,
            lead_id=dto.lead_id,
        )
        meeting.attendees = [MeetingAttendee(user_id=user_id) for user_id in attendee_ids]
        session.add(meeting)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=meeting.id,
            action="create",
            before=None,
            after={"title": meeting.title, "attendee_count": len(attendee_ids)},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return MeetingRead.model_validate(meeting)

    def update_meeting(
        self,
        session: Session,
        actor_user: ActorUser,
        meeting_id: uuid.UUID,
        dto: MeetingUpdate,
    ) -> MeetingRead:
        meeting = self._get_managed(session, actor_user, meeting_id)
        changes = dto.model_dump(exclude_unset=True)
        start_time = _as_utc(changes.get("start_time") or meeting.start_time)
        end_time = _as_utc(changes.get("end_time") or meeting.end_time)
        if ("start_time" in changes or "end_time" in changes) and end_time <= start_time:
            raise ValidationError("end_time must be after start_time", details={"end_time": "before_start"})

        for field_name in ("description", "location", "meeting_url"):
            if field_name in changes:
                setattr(meeting, field_name, changes[field_name])
        for field_name in ("title", "start_time", "end_time", "status"):
            if changes.get(field_name) is not None:
                setattr(meeting, field_name, changes[field_name])
        session.commit()
        return MeetingRead.model_validate(meeting)

    def invite(self, session: Session, actor_user: ActorUser, meeting_id: uuid.UUID, dto: MeetingInvite) -> MeetingRead:
        meeting = self._get_managed(session, actor_user, meeting_id)
        existing = {attendee.user_id for attendee in meeting.attendees}
        new_ids = [
            user_id
            for user_id in dict.fromkeys(dto.user_ids)
            if user_id not in existing and user_id != meeting.organizer_id
        ]
        if not new_ids:
            raise ConflictError("All users are already invited", details={"meeting_id": str(meeting.id)})
        self._ensure_users_exist(session, new_ids)
        meeting.attendees.extend(MeetingAttendee(user_id=user_id) for user_id in new_ids)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=meeting.id,
            action="invite",
            before=None,
            after={"user_ids": [str(user_id) for user_id in new_ids]},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return MeetingRead.model_validate(meeting)

    def respond(
        self,
        session: Session,
        actor_user: ActorUser,
        meeting_id: uuid.UUID,
        dto: MeetingResponse,
    ) -> MeetingRead:
        meeting = self._load(session, meeting_id)
        attendee = next((item for item in meeting.attendees if item.user_id == actor_user.user_id), None)
        if attendee is None:
            raise AccessDeniedError("You are not invited to this meeting", details={"meeting_id": str(meeting_id)})
        attendee.status = dto.status
        attendee.responded_at = utcnow()
        session.commit()
        return MeetingRead.model_validate(meeting)

    def delete_meeting(self, session: Session, actor_user: ActorUser, meeting_id: uuid.UUID) -> None:
        meeting = self._get_managed(session, actor_user, meeting_id)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=meeting.id,
            action="delete",
            before={"title": meeting.title},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(meeting)
        session.commit()

    def _get_managed(self, session: Session, actor_user: ActorUser, meeting_id: uuid.UUID) -> Meeting:
        meeting = self._load(session, meeting_id)
        if not actor_user.is_staff_manager and meeting.organizer_id != actor_user.user_id:
            raise AccessDeniedError("Access denied", details={"meeting_id": str(meeting_id)})
        return meeting

    def _ensure_users_exist(self, session: Session, user_ids: list[uuid.UUID]) -> None:
        missing = user_service.missing_user_ids(session, user_ids)
        if missing:
            raise ValidationError(
                "One or more users not found",
                details={"missing_user_ids": sorted(str(user_id) for user_id in missing)},
            )

    def _load(self, session: Session, meeting_id: uuid.UUID) -> Meeting:
        meeting = session.scalar(
            select(Meeting).where(Meeting.id == meeting_id).options(selectinload(Meeting.attendees))
        )
        if meeting is None:
            raise NotFoundError("Meeting not found", details={"meeting_id": str(meeting_id)})
        return meeting


meeting_service = MeetingService()
