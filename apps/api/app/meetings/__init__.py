from app.meetings.api import router
from app.meetings.models import Meeting, MeetingAttendee
from app.meetings.service import MeetingService, meeting_service

__all__ = [
    "router",
    "Meeting",
    "MeetingAttendee",
    "MeetingService",
    "meeting_service",
]
