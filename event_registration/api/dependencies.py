import time
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from event_registration.infrastructure.config import Settings, get_settings
from event_registration.infrastructure.db.session import SessionLocal
from event_registration.infrastructure.payments.razorpay_gateway import RazorpayGateway


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)):
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_gateway(settings: Settings = Depends(get_settings)) -> RazorpayGateway:
    return RazorpayGateway(settings)


def get_sleep() -> Callable[[float], None]:
    return time.sleep
