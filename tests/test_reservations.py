"""
Unit tests for visitor and host reservation endpoints.
"""
from datetime import date, timedelta

from officespace import models
from officespace.booking import lock_name
from officespace.config import Settings, get_settings
from officespace.main import app


def days_from_now(days: int) -> str:
    """ISO date ``days`` days from today."""
    return (date.today() + timedelta(days=days)).isoformat()


class TestUserReservationListing:
    """Tests for listing the caller's reservations."""

    def test_lists_reservations_that_belong_to_the_user(
        self, client, db_session, make_reservation, visitor, login
    ):
        """Test only the caller's reservations come back, with the office's featured image."""
        reservation = make_reservation(user=visitor)
        image = models.Image(office_id=reservation.office_id, path="featured_image.jpg")
        db_session.add(image)
        db_session.commit()
        reservation.office.featured_image_id = image.id
        db_session.commit()

        make_reservation(user=visitor)
        make_reservation(user=visitor)
        for _ in range(3):
            make_reservation()

        response = client.get("/reservations/", headers=login(visitor))
        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"data", "meta", "links"}
        assert len(body["data"]) == 3
        assert body["data"][0]["office"]["featured_image"]["id"] == image.id

    def test_filters_by_date_range(self, client, make_reservation, visitor, login):
        """Test reservations touching the range are returned, others are not."""
        expected = [
            make_reservation(user=visitor, start_date=date(2023, 3, 1), end_date=date(2023, 3, 15)),
            make_reservation(user=visitor, start_date=date(2023, 3, 25), end_date=date(2023, 4, 15)),
            make_reservation(user=visitor, start_date=date(2023, 3, 25), end_date=date(2023, 3, 29)),
            make_reservation(user=visitor, start_date=date(2023, 3, 1), end_date=date(2023, 4, 15)),
        ]
        # in range, someone else's
        make_reservation(start_date=date(2023, 3, 25), end_date=date(2023, 3, 29))
        # outside the range
        make_reservation(user=visitor, start_date=date(2023, 2, 25), end_date=date(2023, 3, 1))
        make_reservation(user=visitor, start_date=date(2023, 5, 1), end_date=date(2023, 5, 1))

        response = client.get(
            "/reservations/",
            headers=login(visitor),
            params={"from_date": "2023-03-03", "to_date": "2023-04-04"},
        )
        assert response.status_code == 200
        assert [r["id"] for r in response.json()["data"]] == [r.id for r in expected]

    def test_filters_by_status(self, client, make_reservation, visitor, login):
        """Test the status filter."""
        active = make_reservation(user=visitor, status=models.Reservation.STATUS_ACTIVE)
        make_reservation(user=visitor, status=models.Reservation.STATUS_CANCEL)

        response = client.get(
            "/reservations/",
            headers=login(visitor),
            params={"status": models.Reservation.STATUS_ACTIVE},
        )
        data = response.json()["data"]
        assert len(data) == 1
        assert data[0]["id"] == active.id

    def test_filters_by_office(self, client, make_office, make_reservation, visitor, login):
        """Test the office filter."""
        office = make_office()
        reservation = make_reservation(office=office, user=visitor)
        make_reservation(user=visitor)

        response = client.get(
            "/reservations/", headers=login(visitor), params={"office_id": office.id}
        )
        data = response.json()["data"]
        assert len(data) == 1
        assert data[0]["id"] == reservation.id

    def test_rejects_invalid_filters(self, client, visitor, login):
        """Test filter validation errors are field-keyed."""
        headers = login(visitor)

        response = client.get("/reservations/", headers=headers, params={"status": 7})
        assert response.status_code == 422
        assert "status" in response.json()["errors"]

        response = client.get("/reservations/", headers=headers, params={"from_date": "2023-03-03"})
        assert response.status_code == 422
        assert "to_date" in response.json()["errors"]

        response = client.get(
            "/reservations/",
            headers=headers,
            params={"from_date": "2023-03-03", "to_date": "2023-03-01"},
        )
        assert response.status_code == 422
        assert response.json()["errors"]["to_date"] == ["The to date must be a date after from date."]

    def test_requires_auth(self, client):
        """Test listing reservations requires authentication."""
        assert client.get("/reservations/").status_code == 401


class TestReservationCreation:
    """Tests for the booking endpoint."""

    def test_makes_reservations(self, client, make_office, visitor, login):
        """Test 40 days at 1000/day with a 10% monthly discount costs 36000."""
        office = make_office(price_per_day=1_000, monthly_discount=10)

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={
                "office_id": office.id,
                "start_date": days_from_now(1),
                "end_date": days_from_now(40),
            },
        )
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["price"] == 36_000
        assert data["user_id"] == visitor.id
        assert data["office_id"] == office.id
        assert data["status"] == models.Reservation.STATUS_ACTIVE
        assert data["office"]["id"] == office.id

    def test_short_reservation_has_no_discount(self, client, make_office, visitor, login):
        """Test the discount does not apply under 28 days."""
        office = make_office(price_per_day=1_000, monthly_discount=10)

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": office.id, "start_date": days_from_now(1), "end_date": days_from_now(2)},
        )
        assert response.status_code == 201
        assert response.json()["data"]["price"] == 2_000

    def test_cannot_book_non_existing_office(self, client, visitor, login):
        """Test unknown offices are a validation error on office_id."""
        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": 1019, "start_date": days_from_now(1), "end_date": days_from_now(41)},
        )
        assert response.status_code == 422
        assert response.json()["errors"] == {"office_id": ["Invalid Office ID"]}

    def test_cannot_book_own_office(self, client, make_office, host, login):
        """Test hosts cannot book their own office."""
        office = make_office(user=host)

        response = client.post(
            "/reservations/",
            headers=login(host),
            json={"office_id": office.id, "start_date": days_from_now(1), "end_date": days_from_now(41)},
        )
        assert response.status_code == 422
        assert response.json()["errors"] == {
            "office_id": ["You cannot make a reservation in your own office!"]
        }

    def test_cannot_book_pending_or_hidden_office(self, client, make_office, visitor, login):
        """Test pending and hidden offices cannot be booked."""
        pending = make_office(approval_status=models.Office.APPROVAL_PENDING)
        hidden = make_office(hidden=True)
        headers = login(visitor)

        for office in (pending, hidden):
            response = client.post(
                "/reservations/",
                headers=headers,
                json={"office_id": office.id, "start_date": days_from_now(1), "end_date": days_from_now(41)},
            )
            assert response.status_code == 422
            assert response.json()["errors"] == {
                "office_id": ["You cannot make a reservation on a hidden office!"]
            }

    def test_cannot_book_on_the_same_day(self, client, make_office, visitor, login):
        """Test the start date must be after today."""
        office = make_office()

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": office.id, "start_date": days_from_now(0), "end_date": days_from_now(3)},
        )
        assert response.status_code == 422
        assert response.json()["errors"] == {
            "start_date": ["The start date must be a date after today."]
        }

    def test_cannot_book_a_single_day(self, client, make_office, visitor, login):
        """Test the end date must be after the start date."""
        office = make_office()

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": office.id, "start_date": days_from_now(1), "end_date": days_from_now(1)},
        )
        assert response.status_code == 422
        assert response.json()["errors"] == {
            "end_date": ["The end date must be a date after start date."]
        }

    def test_sends_notifications_on_new_reservations(
        self, client, db_session, make_office, host, visitor, login
    ):
        """Test both the visitor and the host are notified."""
        office = make_office(user=host)

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": office.id, "start_date": days_from_now(3), "end_date": days_from_now(6)},
        )
        assert response.status_code == 201

        def types_for(user):
            return [
                n.type
                for n in db_session.query(models.Notification).filter_by(user_id=user.id)
            ]

        assert types_for(visitor) == ["new_reservation"]
        assert types_for(host) == ["new_host_reservation"]

    def test_notification_failure_keeps_the_reservation(
        self, client, db_session, make_office, visitor, login, notifier, monkeypatch
    ):
        """Test a broken notification channel does not undo the booking."""
        def broken_store(user_ids, notification):
            raise RuntimeError("mail server down")

        monkeypatch.setattr(notifier, "_store", broken_store)
        office = make_office()

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": office.id, "start_date": days_from_now(3), "end_date": days_from_now(6)},
        )
        assert response.status_code == 201
        assert db_session.query(models.Reservation).filter_by(office_id=office.id).count() == 1

    def test_cannot_make_conflicting_reservation(
        self, client, make_office, make_reservation, visitor, login
    ):
        """Test overlapping an active reservation is rejected."""
        office = make_office()
        make_reservation(
            office=office,
            start_date=date.today() + timedelta(days=3),
            end_date=date.today() + timedelta(days=15),
        )

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": office.id, "start_date": days_from_now(2), "end_date": days_from_now(15)},
        )
        assert response.status_code == 422
        assert response.json()["errors"] == {
            "office_id": ["You cannot make a reservation during this time!"]
        }

    def test_touching_the_last_day_conflicts(
        self, client, make_office, make_reservation, visitor, login
    ):
        """Test end dates are inclusive: starting on another booking's last day conflicts."""
        office = make_office()
        make_reservation(
            office=office,
            start_date=date.today() + timedelta(days=2),
            end_date=date.today() + timedelta(days=4),
        )
        headers = login(visitor)

        response = client.post(
            "/reservations/",
            headers=headers,
            json={"office_id": office.id, "start_date": days_from_now(4), "end_date": days_from_now(6)},
        )
        assert response.status_code == 422

        response = client.post(
            "/reservations/",
            headers=headers,
            json={"office_id": office.id, "start_date": days_from_now(5), "end_date": days_from_now(6)},
        )
        assert response.status_code == 201

    def test_cancelled_reservations_do_not_block(
        self, client, make_office, make_reservation, visitor, login
    ):
        """Test only active reservations count as conflicts."""
        office = make_office()
        make_reservation(
            office=office,
            start_date=date.today() + timedelta(days=2),
            end_date=date.today() + timedelta(days=10),
            status=models.Reservation.STATUS_CANCEL,
        )

        response = client.post(
            "/reservations/",
            headers=login(visitor),
            json={"office_id": office.id, "start_date": days_from_now(3), "end_date": days_from_now(5)},
        )
        assert response.status_code == 201

    def test_busy_office_lock_returns_retryable_error(
        self, client, db_session, make_office, visitor, login, lock_provider
    ):
        """Test a held office lock makes the booking fail with 503 after the wait."""
        office = make_office()
        headers = login(visitor)
        app.dependency_overrides[get_settings] = lambda: Settings(reservation_lock_wait=0.2)

        with lock_provider.lock(lock_name(office.id), ttl=10, wait=1):
            response = client.post(
                "/reservations/",
                headers=headers,
                json={"office_id": office.id, "start_date": days_from_now(3), "end_date": days_from_now(6)},
            )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert db_session.query(models.Reservation).count() == 0

        # lock released: the same request now goes through
        response = client.post(
            "/reservations/",
            headers=headers,
            json={"office_id": office.id, "start_date": days_from_now(3), "end_date": days_from_now(6)},
        )
        assert response.status_code == 201

    def test_requires_auth(self, client, make_office):
        """Test booking requires authentication."""
        office = make_office()
        response = client.post(
            "/reservations/",
            json={"office_id": office.id, "start_date": days_from_now(1), "end_date": days_from_now(2)},
        )
        assert response.status_code == 401


class TestReservationCancellation:
    """Tests for cancelling reservations."""

    def test_cancels_own_reservation(self, client, make_reservation, visitor, login):
        """Test a future reservation can be cancelled by its owner."""
        reservation = make_reservation(user=visitor)

        response = client.delete(f"/reservations/{reservation.id}", headers=login(visitor))
        assert response.status_code == 200
        assert response.json()["data"]["status"] == models.Reservation.STATUS_CANCEL

    def test_cannot_cancel_someone_elses_reservation(self, client, make_reservation, visitor, login):
        """Test other users get 403."""
        reservation = make_reservation()
        response = client.delete(f"/reservations/{reservation.id}", headers=login(visitor))
        assert response.status_code == 403

    def test_cannot_cancel_started_or_cancelled_reservation(
        self, client, make_reservation, visitor, login
    ):
        """Test started and already cancelled reservations stay as they are."""
        headers = login(visitor)
        started = make_reservation(user=visitor, start_date=date.today(), end_date=date.today() + timedelta(days=2))
        cancelled = make_reservation(user=visitor, status=models.Reservation.STATUS_CANCEL)

        for reservation in (started, cancelled):
            response = client.delete(f"/reservations/{reservation.id}", headers=headers)
            assert response.status_code == 422
            assert "reservation" in response.json()["errors"]

    def test_missing_reservation_returns_404(self, client, visitor, login):
        """Test unknown ids return 404."""
        response = client.delete("/reservations/99999", headers=login(visitor))
        assert response.status_code == 404


class TestHostReservations:
    """Tests for the host reservation listing."""

    def test_lists_reservations_on_own_offices(
        self, client, make_office, make_reservation, host, login
    ):
        """Test hosts see reservations made on their offices only."""
        office = make_office(user=host)
        other_office = make_office(user=host)
        own = [make_reservation(office=office), make_reservation(office=other_office)]
        make_reservation()

        response = client.get("/host/reservations/", headers=login(host))
        assert response.status_code == 200
        assert [r["id"] for r in response.json()["data"]] == [r.id for r in own]

    def test_filters_by_visitor_and_office(
        self, client, make_office, make_reservation, make_user, host, login
    ):
        """Test the user_id and office_id filters."""
        office = make_office(user=host)
        other_office = make_office(user=host)
        guest = make_user()
        expected = make_reservation(office=office, user=guest)
        make_reservation(office=other_office, user=guest)
        make_reservation(office=office)

        response = client.get(
            "/host/reservations/",
            headers=login(host),
            params={"user_id": guest.id, "office_id": office.id},
        )
        assert [r["id"] for r in response.json()["data"]] == [expected.id]
