"""Pytest configuration and fixtures."""
import pytest
from sqlalchemy.orm import sessionmaker
from datetime import date, datetime, time
from shuttlebook.backend.db.models import Base, Hotel, Location, LocationType, Shuttle, BookingOrigin
from shuttlebook.backend.db.session import get_db, create_db_engine
from shuttlebook.backend.main import app
from shuttlebook.backend.schemas.booking import BookingCreate
from shuttlebook.backend.schemas.trip import TripCreate, LegCreate, ScheduleWindow
from shuttlebook.backend.services.booking import BookingService
from shuttlebook.backend.services.notify import Notifier
from shuttlebook.backend.services.trip import TripService
from fastapi.testclient import TestClient
import tempfile
import os


SERVICE_DAY = date(2030, 5, 14)
NOW = datetime(2030, 5, 13, 8, 0)


class RecordingNotifier(Notifier):
    """Keeps notifications in memory so tests can assert on them."""

    def __init__(self):
        self.events = []

    def notify(self, event, booking, message):
        self.events.append((event, booking.id, message))


@pytest.fixture(scope="function")
def session_factory():
    """Session factory over a temporary SQLite database, for multi-threaded tests."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    engine = create_db_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_path)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def service_day():
    return SERVICE_DAY


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def hotel(db_session):
    """A hotel with no shuttles yet."""
    hotel = Hotel(name="Harbor View Inn", slug="harbor-view", time_zone="UTC")
    db_session.add(hotel)
    db_session.commit()
    return hotel


@pytest.fixture
def stops(db_session, hotel):
    """Six locations, in the order a loop trip visits them."""
    names = [
        ("Harbor View Lobby", LocationType.HOTEL),
        ("SFO Terminal 2", LocationType.AIRPORT),
        ("Union Square", LocationType.OTHER),
        ("Convention Center", LocationType.OTHER),
        ("Pier 39", LocationType.OTHER),
        ("Ferry Building", LocationType.OTHER),
    ]
    locations = [
        Location(name=name, location_type=location_type, hotel_id=hotel.id)
        for name, location_type in names
    ]
    db_session.add_all(locations)
    db_session.commit()
    return locations


@pytest.fixture
def make_shuttle(db_session, hotel):
    """Factory adding an active shuttle to the hotel."""
    counter = {"n": 0}

    def _make(total_seats=4, vehicle_number=None, driver_id=None, hotel_id=None):
        counter["n"] += 1
        shuttle = Shuttle(
            hotel_id=hotel_id or hotel.id,
            vehicle_number=vehicle_number or f"SH-{counter['n']:02d}",
            total_seats=total_seats,
            is_active=True,
            current_driver_id=driver_id,
        )
        db_session.add(shuttle)
        db_session.commit()
        return shuttle

    return _make


@pytest.fixture
def make_trip(db_session, hotel, stops):
    """Factory creating a trip of ``legs`` chained legs over the stops."""
    def _make(legs=1, windows=((time(9, 0), time(10, 0)),), charges=None, name="Hotel <-> Airport"):
        charges = charges or [15.0] * legs
        data = TripCreate(
            name=name,
            hotel_id=hotel.id,
            legs=[
                LegCreate(
                    start_location_id=stops[i].id,
                    end_location_id=stops[i + 1].id,
                    charges=charges[i],
                )
                for i in range(legs)
            ],
            schedules=[ScheduleWindow(start_time=start, end_time=end) for start, end in windows],
        )
        return TripService().create_trip(db_session, data)

    return _make


@pytest.fixture
def book(db_session, hotel, notifier):
    """Factory placing a booking through the booking service."""
    service = BookingService()

    def _book(
        trip,
        seats=1,
        desired=time(9, 0),
        guest_id="guest-1",
        origin=BookingOrigin.GUEST,
        scheduled_date=SERVICE_DAY,
        at=NOW,
        **kwargs
    ):
        data = BookingCreate(
            guest_id=guest_id,
            trip_id=trip.id,
            hotel_id=hotel.id,
            scheduled_date=scheduled_date,
            desired_time=desired,
            seats=seats,
            origin=origin,
            **kwargs
        )
        user = "frontdesk-1" if origin == BookingOrigin.FRONTDESK else guest_id
        return service.create_booking(db_session, data, at, user=user, notifier=notifier)

    return _book
