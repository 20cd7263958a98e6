from __future__ import annotations

import pytest

from guestpass import crud
from guestpass.auth import verify_password
from guestpass.crud import (
    DuplicateAdminError,
    DuplicateEventError,
    LastAdminError,
    PreferencesAlreadySubmittedError,
    SelfDeleteError,
)
from guestpass.utils import EVENT_SLUGS, expand_event_access


def _guest(session, name="Asha", preset="all-events", **kwargs):
    guest = crud.create_guest(
        session, name=name, event_access=expand_event_access(preset), **kwargs
    )
    session.commit()
    return guest


def test_create_admin_normalizes_and_rejects_duplicates(session):
    admin = crud.create_admin(session, email=" Admin@Example.com ", password="secret1")
    session.commit()
    assert admin.email == "admin@example.com"
    assert verify_password("secret1", admin.password_hash)
    with pytest.raises(DuplicateAdminError):
        crud.create_admin(session, email="admin@example.com", password="secret2")


def test_last_admin_cannot_be_deleted(session):
    only = crud.create_admin(session, email="only@example.com", password="secret1")
    session.commit()
    with pytest.raises(LastAdminError):
        crud.delete_admin(session, only)
    assert crud.count_admins(session) == 1


def test_admin_cannot_delete_self(session):
    first = crud.create_admin(session, email="first@example.com", password="secret1")
    crud.create_admin(session, email="second@example.com", password="secret1")
    session.commit()
    with pytest.raises(SelfDeleteError):
        crud.delete_admin(session, first, acting_admin_id=first.id)


def test_delete_admin_when_others_remain(session):
    first = crud.create_admin(session, email="first@example.com", password="secret1")
    second = crud.create_admin(session, email="second@example.com", password="secret1")
    session.commit()
    crud.delete_admin(session, second, acting_admin_id=first.id)
    session.commit()
    assert [a.email for a in crud.list_admins(session)] == ["first@example.com"]


def test_update_admin_email_conflict(session):
    first = crud.create_admin(session, email="first@example.com", password="secret1")
    crud.create_admin(session, email="second@example.com", password="secret1")
    session.commit()
    with pytest.raises(DuplicateAdminError):
        crud.update_admin_email(session, first, email="second@example.com")
    crud.update_admin_email(session, first, email="renamed@example.com")
    assert crud.get_admin_by_email(session, "RENAMED@example.com").id == first.id


def test_ensure_default_admin_is_idempotent(session):
    admin, created = crud.ensure_default_admin(session, email="admin", password="admin123")
    session.commit()
    again, created_again = crud.ensure_default_admin(
        session, email="admin", password="other-password"
    )
    assert created and not created_again
    assert again.id == admin.id
    assert verify_password("admin123", again.password_hash)


def test_default_events_created_once_in_fixed_order(session):
    assert crud.ensure_default_events(session) == list(EVENT_SLUGS)
    session.commit()
    assert crud.ensure_default_events(session) == []
    events = crud.list_events(session)
    assert [e.slug for e in events] == list(EVENT_SLUGS)
    assert [e.title for e in events] == ["Mehendi", "Hindu Wedding", "Reception"]


def test_create_event_validates_slug(session):
    crud.create_event(session, slug="wedding", title="Wedding")
    with pytest.raises(DuplicateEventError):
        crud.create_event(session, slug="wedding", title="Again")
    with pytest.raises(ValueError):
        crud.create_event(session, slug="sangeet", title="Sangeet")


def test_update_event_rejects_unknown_fields(session):
    event = crud.create_event(session, slug="reception", title="Reception")
    crud.update_event(session, event, venue="Grand Hall", dress_code="Formal")
    assert event.venue == "Grand Hall"
    with pytest.raises(ValueError):
        crud.update_event(session, event, slug="mehndi")


def test_create_guest_normalizes_contact_and_clamps_devices(session):
    guest = _guest(
        session,
        phone="+1 (555) 123-4567",
        email=" Guest@Example.com ",
        max_devices_allowed=50,
    )
    assert guest.phone == "15551234567"
    assert guest.email == "guest@example.com"
    assert guest.max_devices_allowed == crud.MAX_DEVICES
    assert guest.allowed_devices == []
    assert guest.event_access == ["mehndi", "wedding", "reception"]
    assert len(guest.token) == 12


def test_create_guest_requires_name(session):
    with pytest.raises(ValueError):
        crud.create_guest(session, name="  ", event_access=["reception"])


def test_regenerate_token_resets_devices_and_first_use(session):
    guest = _guest(session)
    guest.allowed_devices = ["device-a"]
    guest.token_used_first_time = crud.utcnow()
    session.commit()
    old_token = guest.token

    crud.regenerate_guest_token(session, guest)
    session.commit()

    assert guest.token != old_token
    assert guest.allowed_devices == []
    assert guest.token_used_first_time is None
    assert crud.get_guest_by_token(session, old_token) is None


def test_remove_and_clear_devices(session):
    guest = _guest(session, max_devices_allowed=3)
    guest.allowed_devices = ["a", "b", "c"]
    session.commit()
    crud.remove_guest_device(session, guest, "b")
    assert guest.allowed_devices == ["a", "c"]
    crud.clear_guest_devices(session, guest)
    assert guest.allowed_devices == []


def test_lowering_device_cap_trims_registered_devices(session):
    guest = _guest(session, max_devices_allowed=3)
    guest.allowed_devices = ["a", "b", "c"]
    session.commit()
    crud.update_guest(
        session,
        guest,
        name=guest.name,
        phone=None,
        email=None,
        event_access=list(guest.event_access),
        max_devices_allowed=1,
        token_expires_after_first_use=False,
    )
    assert guest.max_devices_allowed == 1
    assert guest.allowed_devices == ["a"]


def test_update_guest_accepts_explicit_slug_subset(session):
    guest = _guest(session)
    crud.update_guest(
        session,
        guest,
        name="Asha R",
        phone=None,
        email="asha@example.com",
        event_access=["reception", "wedding"],
        max_devices_allowed=2,
        token_expires_after_first_use=True,
    )
    assert guest.event_access == ["wedding", "reception"]
    assert guest.token_expires_after_first_use is True
    with pytest.raises(ValueError):
        crud.update_guest(
            session,
            guest,
            name="Asha",
            phone=None,
            email=None,
            event_access=["sangeet"],
            max_devices_allowed=1,
            token_expires_after_first_use=False,
        )


def test_submit_preferences_validates_answers(session):
    guest = _guest(session)
    with pytest.raises(ValueError, match="missing"):
        crud.submit_preferences(
            session,
            guest,
            rsvp_status={"mehndi": "yes"},
            attendees_per_event={"mehndi": 2},
            menu_preference="veg",
        )
    with pytest.raises(ValueError, match="Number of guests"):
        crud.submit_preferences(
            session,
            guest,
            rsvp_status={"mehndi": "yes", "wedding": "no", "reception": "no"},
            attendees_per_event={},
            menu_preference="veg",
        )
    with pytest.raises(ValueError, match="menu"):
        crud.submit_preferences(
            session,
            guest,
            rsvp_status={"mehndi": "no", "wedding": "no", "reception": "no"},
            attendees_per_event=None,
            menu_preference="vegan",
        )


def test_submit_preferences_once(session):
    guest = _guest(session)
    crud.submit_preferences(
        session,
        guest,
        rsvp_status={"mehndi": "yes", "wedding": "yes", "reception": "no"},
        attendees_per_event={"mehndi": 2, "wedding": 3},
        menu_preference="non-veg",
        dietary_restrictions="  no nuts ",
    )
    session.commit()
    assert guest.rsvp_submitted and guest.preferences_submitted
    assert guest.number_of_attendees == 3
    assert guest.number_of_attendees_per_event == {"mehndi": 2, "wedding": 3}
    assert guest.dietary_restrictions == "no nuts"
    assert guest.rsvp_submitted_at is not None
    with pytest.raises(PreferencesAlreadySubmittedError):
        crud.submit_preferences(
            session,
            guest,
            rsvp_status={"mehndi": "no", "wedding": "no", "reception": "no"},
            attendees_per_event=None,
            menu_preference="veg",
        )


def test_reset_rsvps_clears_answers(session):
    guest = _guest(session)
    other = _guest(session, name="Ravi")
    for target in (guest, other):
        crud.submit_preferences(
            session,
            target,
            rsvp_status={"mehndi": "yes", "wedding": "yes", "reception": "yes"},
            attendees_per_event={"mehndi": 2, "wedding": 2, "reception": 4},
            menu_preference="veg",
        )
    session.commit()

    assert crud.reset_guest_rsvps(session, [guest.id]) == 1
    session.commit()
    session.expire_all()

    refreshed = crud.get_guest_by_token(session, guest.token)
    assert not refreshed.rsvp_submitted
    assert not refreshed.preferences_submitted
    assert refreshed.rsvp_status is None
    assert refreshed.number_of_attendees == 1
    assert crud.get_guest_by_token(session, other.token).rsvp_submitted


def test_delete_all_guests_returns_count(session):
    _guest(session)
    _guest(session, name="Ravi")
    assert crud.delete_all_guests(session) == 2
    session.commit()
    assert crud.list_guests(session) == []


def test_compute_stats_counts_invites_and_rsvps(session):
    family = _guest(session, name="Family", number_of_attendees=4)
    friend = _guest(session, name="Friend", preset="reception-only", number_of_attendees=2)
    _guest(session, name="Silent", preset="reception-only")
    crud.submit_preferences(
        session,
        family,
        rsvp_status={"mehndi": "yes", "wedding": "no", "reception": "yes"},
        attendees_per_event={"mehndi": 3, "reception": 4},
        menu_preference="both",
    )
    crud.submit_preferences(
        session,
        friend,
        rsvp_status={"reception": "yes"},
        attendees_per_event={"reception": 2},
        menu_preference="veg",
    )
    session.commit()

    stats = crud.compute_stats(session)

    assert stats["total_invite_links"] == 3
    assert stats["rsvp_submitted"] == 2
    assert stats["invite_based"]["reception"] == 4 + 2 + 1
    assert stats["rsvp_based"]["mehndi"] == {"total_attendees": 3, "veg": 3, "non_veg": 3}
    assert stats["rsvp_based"]["wedding"]["total_attendees"] == 0
    assert stats["rsvp_based"]["reception"] == {
        "total_attendees": 6,
        "veg": 6,
        "non_veg": 4,
    }
