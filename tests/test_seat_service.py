from datetime import date

import pytest

from moviebook.core.errors import CategoryNotFound, SeatUnavailable, ShowtimeNotFound
from moviebook.database.models import (
    Booking,
    BookingStatus,
    HoldStatus,
    SeatCategory,
    SeatHold,
    Showtime,
)
from moviebook.services import seat_service

SATURDAY = date(2026, 10, 24)
WEDNESDAY = date(2026, 10, 21)

DYNAMIC_GOLD = {
    "category": SeatCategory.Gold,
    "price": 200,
    "dynamic_enabled": True,
    "weekend_multiplier": 1.15,
    "peak_enabled": True,
    "peak_multiplier": 1.2,
}


def _booking(db, showtime, user):
    booking = Booking(
        booking_code=f"BKTEST{db.query(Booking).count()}",
        user_id=user.id,
        movie_id=showtime.movie_id,
        showtime_id=showtime.id,
        theatre_id=showtime.theatre_id,
        show_date=showtime.show_date,
        show_time=showtime.start_time,
        total_amount=0,
        status=BookingStatus.pending,
    )
    db.add(booking)
    db.commit()
    return booking


def _assert_counter_invariant(db, showtime):
    db.refresh(showtime)
    live_holds = (
        db.query(SeatHold)
        .filter(SeatHold.showtime_id == showtime.id, SeatHold.status != HoldStatus.available)
        .count()
    )
    assert showtime.seats_available + live_holds == showtime.seats_total


class TestPricing:
    def test_base_price_without_dynamic_pricing(self, make_showtime):
        showtime = make_showtime(show_date=SATURDAY, start_time="19:00")
        assert seat_service.calculate_price(showtime, "Gold") == 200

    def test_weekend_and_peak_multipliers_compose(self, make_showtime):
        assert SATURDAY.weekday() == 5
        showtime = make_showtime(show_date=SATURDAY, start_time="19:00", pricing=[DYNAMIC_GOLD])
        # round(200 * 1.15 * 1.2) = 276
        assert seat_service.calculate_price(showtime, SeatCategory.Gold) == 276

    def test_weekend_only(self, make_showtime):
        showtime = make_showtime(show_date=SATURDAY, start_time="10:00", pricing=[DYNAMIC_GOLD])
        assert seat_service.calculate_price(showtime, "Gold") == 230

    @pytest.mark.parametrize("start_time,expected", [("17:59", 200), ("18:00", 240), ("23:30", 240)])
    def test_peak_hour_window_on_weekday(self, make_showtime, start_time, expected):
        assert WEDNESDAY.weekday() == 2
        showtime = make_showtime(show_date=WEDNESDAY, start_time=start_time, pricing=[DYNAMIC_GOLD])
        assert seat_service.calculate_price(showtime, "Gold") == expected

    def test_peak_multiplier_ignored_when_peak_disabled(self, make_showtime):
        pricing = dict(DYNAMIC_GOLD, peak_enabled=False)
        showtime = make_showtime(show_date=WEDNESDAY, start_time="20:00", pricing=[pricing])
        assert seat_service.calculate_price(showtime, "Gold") == 200

    def test_unknown_category_raises(self, make_showtime):
        showtime = make_showtime()
        with pytest.raises(CategoryNotFound):
            seat_service.calculate_price(showtime, "Platinum")
        with pytest.raises(CategoryNotFound):
            seat_service.calculate_price(showtime, "Balcony")


class TestHolds:
    def test_place_confirm_release_keeps_counter_in_step(self, db, make_showtime, users):
        showtime = make_showtime(total=10)
        booking = _booking(db, showtime, users[0])

        seat_service.place_hold(db, showtime, "A1", booking.id)
        seat_service.place_hold(db, showtime, "A2", booking.id)
        db.commit()
        assert showtime.seats_available == 8
        assert not seat_service.is_seat_available(db, showtime.id, "A1")
        assert seat_service.is_seat_available(db, showtime.id, "A3")
        _assert_counter_invariant(db, showtime)

        assert seat_service.confirm_hold(db, showtime.id, "A1", booking.id) is True
        db.commit()
        hold = db.query(SeatHold).filter_by(showtime_id=showtime.id, seat_id="A1").one()
        assert hold.status == HoldStatus.booked
        _assert_counter_invariant(db, showtime)

        assert seat_service.release_hold(db, showtime.id, "A1", booking.id) is True
        db.commit()
        assert showtime.seats_available == 9
        assert seat_service.is_seat_available(db, showtime.id, "A1")
        _assert_counter_invariant(db, showtime)

    def test_release_is_idempotent(self, db, make_showtime, users):
        showtime = make_showtime(total=5)
        booking = _booking(db, showtime, users[0])
        seat_service.place_hold(db, showtime, "B4", booking.id)
        db.commit()

        assert seat_service.release_hold(db, showtime.id, "B4", booking.id) is True
        assert seat_service.release_hold(db, showtime.id, "B4", booking.id) is False
        assert seat_service.release_hold(db, showtime.id, "C9", booking.id) is False
        db.commit()
        db.refresh(showtime)
        assert showtime.seats_available == 5

    def test_confirm_hold_reports_missing_hold(self, db, make_showtime, users):
        showtime = make_showtime()
        booking = _booking(db, showtime, users[0])
        assert seat_service.confirm_hold(db, showtime.id, "A1", booking.id) is False

    def test_concurrent_loser_is_rejected(self, session_factory, make_showtime, users):
        showtime = make_showtime(total=10)
        first, second = session_factory(), session_factory()
        try:
            s1 = first.get(Showtime, showtime.id)
            s2 = second.get(Showtime, showtime.id)
            b1 = _booking(first, s1, users[0])
            b2 = _booking(second, s2, users[1])

            # both writers saw the seat as free
            assert seat_service.is_seat_available(first, showtime.id, "A1")
            assert seat_service.is_seat_available(second, showtime.id, "A1")

            seat_service.place_hold(first, s1, "A1", b1.id)
            first.commit()

            with pytest.raises(SeatUnavailable) as exc:
                seat_service.place_hold(second, s2, "A1", b2.id)
            assert exc.value.seat_id == "A1"
            second.rollback()

            holds = first.query(SeatHold).filter_by(showtime_id=showtime.id, seat_id="A1").all()
            assert len(holds) == 1
            assert holds[0].booking_id == b1.id
            first.refresh(s1)
            assert s1.seats_available == 9
        finally:
            first.close()
            second.close()

    def test_relic_available_entry_counts_as_free_and_is_compacted(self, db, make_showtime, users):
        showtime = make_showtime(total=3)
        old = _booking(db, showtime, users[0])
        db.add(SeatHold(showtime_id=showtime.id, seat_id="A1", booking_id=old.id, status=HoldStatus.available))
        db.commit()
        assert seat_service.is_seat_available(db, showtime.id, "A1")

        new = _booking(db, showtime, users[1])
        seat_service.place_hold(db, showtime, "A1", new.id)
        db.commit()
        holds = db.query(SeatHold).filter_by(showtime_id=showtime.id, seat_id="A1").all()
        assert [(h.booking_id, h.status) for h in holds] == [(new.id, HoldStatus.blocked)]

    def test_sold_out_showtime_rejects_hold(self, db, make_showtime, users):
        showtime = make_showtime(total=1)
        booking = _booking(db, showtime, users[0])
        seat_service.place_hold(db, showtime, "A1", booking.id)
        db.commit()
        with pytest.raises(SeatUnavailable):
            seat_service.place_hold(db, showtime, "A2", booking.id)
        db.rollback()


class TestAvailability:
    def test_reports_counts_and_held_seats(self, db, make_showtime, users):
        showtime = make_showtime(total=10)
        booking = _booking(db, showtime, users[0])
        seat_service.place_hold(db, showtime, "C3", booking.id)
        seat_service.place_hold(db, showtime, "C4", booking.id)
        db.commit()

        result = seat_service.check_availability(db, showtime.id)
        assert result == {
            "showtime_id": showtime.id,
            "total": 10,
            "available": 8,
            "booked_seat_ids": ["C3", "C4"],
        }

    def test_unknown_showtime(self, db):
        with pytest.raises(ShowtimeNotFound):
            seat_service.check_availability(db, 999)
