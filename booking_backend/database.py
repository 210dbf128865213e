import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

NO_OVERLAP_CONSTRAINT = "appointments_no_overlap_per_therapist"


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False


def ensure_booking_schema(bind: Engine | None = None) -> None:
    global _booking_schema_checked

    if _booking_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        if _booking_schema_checked and bind is None:
            return

        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            if bind is None:
                _booking_schema_checked = True
            return

        with target.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_therapist_range '
                    'ON appointments(therapist_id, start_time, end_time)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_client_start ON appointments(client_id, start_time)')
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_rules_therapist '
                    'ON availability_rules(therapist_id, specific_date, day_of_week)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_time_blocks_therapist_range '
                    'ON time_blocks(therapist_id, start_time, end_time)'
                )
            )

            if target.dialect.name == 'postgresql':
                existing = connection.execute(
                    text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
                    {'name': NO_OVERLAP_CONSTRAINT},
                ).first()
                if existing is None:
                    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
                    connection.execute(
                        text(
                            f"""
                            ALTER TABLE appointments
                              ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT}
                              EXCLUDE USING gist (
                                therapist_id WITH =,
                                tsrange(start_time, end_time, '[)') WITH &&
                              )
                              WHERE (status <> 'cancelled')
                            """
                        )
                    )

        if bind is None:
            _booking_schema_checked = True
