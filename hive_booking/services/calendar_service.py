from datetime import UTC, datetime
from zoneinfo import ZoneInfo


def _format_ics_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def _escape_ics_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", r"\;")
        .replace(",", r"\,")
        .replace("\r\n", r"\n")
        .replace("\n", r"\n")
    )


def _to_ics_status(status: str) -> str:
    if status == "cancelled":
        return "CANCELLED"
    if status == "pending":
        return "TENTATIVE"
    return "CONFIRMED"


def build_appointment_calendar_ics(
    appointment_id: int,
    local_start: datetime,
    local_end: datetime,
    therapist_timezone: str,
    therapist_display_name: str,
    client_email: str,
    appointment_status: str,
) -> str:
    """Render a single-event iCalendar file; local times are wall-clock in the therapist's zone."""
    tz = ZoneInfo(therapist_timezone)
    summary = _escape_ics_text(f"Therapy session with {therapist_display_name}")
    description = _escape_ics_text(
        f"Appointment #{appointment_id}\nTherapist: {therapist_display_name}\nClient: {client_email}"
    )

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Hive Wellness//Booking//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:appointment-{appointment_id}@hive-wellness.local",
        f"DTSTAMP:{_format_ics_datetime(datetime.now(UTC))}",
        f"DTSTART:{_format_ics_datetime(local_start.replace(tzinfo=tz))}",
        f"DTEND:{_format_ics_datetime(local_end.replace(tzinfo=tz))}",
        f"SUMMARY:{summary}",
        f"DESCRIPTION:{description}",
        f"STATUS:{_to_ics_status(appointment_status)}",
        "END:VEVENT",
        "END:VCALENDAR",
        "",
    ]
    return "\r\n".join(lines)
