from hive_booking.db.session import SessionLocal
from hive_booking.services.booking_service import send_upcoming_reminders
from hive_booking.tasks.celery_app import celery_app


@celery_app.task(name="appointments.remind_upcoming")
def remind_upcoming_appointments_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        reminded_count = send_upcoming_reminders(db=db)
        return {"reminded": reminded_count}
    finally:
        db.close()
