from hive_booking.db.session import SessionLocal
from hive_booking.services.booking_service import complete_finished_appointments, release_unpaid_appointments
from hive_booking.tasks.celery_app import celery_app


@celery_app.task(name="appointments.complete_finished")
def complete_finished_appointments_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        completed_count = complete_finished_appointments(db=db)
        return {"completed": completed_count}
    finally:
        db.close()


@celery_app.task(name="appointments.release_unpaid")
def release_unpaid_appointments_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        released_count = release_unpaid_appointments(db=db)
        return {"released": released_count}
    finally:
        db.close()
