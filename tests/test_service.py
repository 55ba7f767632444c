# tests/test_service.py
import threading
from datetime import datetime, timedelta, timezone

import pytest

from link_shortener import models
from link_shortener.database import create_db_engine, create_session_factory, init_db
from link_shortener.errors import (
    AlreadyTaken,
    Conflict,
    DisallowedScheme,
    Forbidden,
    GenerationExhausted,
    InvalidFormat,
    InvalidRedirect,
    NotFound,
    SelfReferential,
    Unauthorized,
    ValidationError,
)
from link_shortener.keys import KeyStore
from link_shortener.service import CLEAR_EXPIRY, LinkService


@pytest.fixture
def admin(db, root):
    return KeyStore(db).authenticate(root.key)


@pytest.fixture
def alice(db, root):
    key = KeyStore(db).create("alice")
    return KeyStore(db).authenticate(key.key)


@pytest.fixture
def bob(db, root):
    key = KeyStore(db).create("bob")
    return KeyStore(db).authenticate(key.key)


def test_shorten_and_resolve(service, alice):
    token = service.shorten(alice, "example.com/page")
    assert 3 <= len(token) <= 6

    link = service.retrieve(token)
    assert link.redirect_to == "https://example.com/page"
    assert link.created_by == alice.key_id
    assert link.owner.name == "alice"
    assert link.is_active
    assert link.visits == 0

    assert service.resolve_redirect(token, user_agent="pytest", ip_address="10.0.0.1") == link.redirect_to


def test_shorten_with_custom_token(service, db, alice):
    assert service.shorten(alice, "https://example.com", custom_url="promo") == "promo"

    with pytest.raises(AlreadyTaken):
        service.shorten(alice, "https://example.org", custom_url="promo")
    with pytest.raises(AlreadyTaken):
        service.shorten(alice, "https://example.org", custom_url="docs")
    assert db.query(models.Link).count() == 1


def test_custom_token_taken_on_insert(service, db, alice):
    # Both callers pass the availability check; the unique index decides
    service.generator.shortened_exists = lambda token: False
    assert service.shorten(alice, "https://example.com", custom_url="dup") == "dup"

    with pytest.raises(AlreadyTaken):
        service.shorten(alice, "https://example.org", custom_url="dup")

    assert db.query(models.Link).count() == 1
    assert service.retrieve("dup").redirect_to == "https://example.com"


def test_generated_token_retried_after_insert_collision(service, db, alice):
    service.shorten(alice, "https://example.com", custom_url="taken")
    tokens = iter(["taken", "taken", "fresh"])
    service.generator.generate_unique = lambda: next(tokens)

    assert service.shorten(alice, "https://example.org") == "fresh"
    assert service.retrieve("fresh").redirect_to == "https://example.org"
    assert db.query(models.Link).count() == 2


def test_generated_token_gives_up_after_max_attempts(db, alice):
    service = LinkService(db, max_token_attempts=3)
    service.shorten(alice, "https://example.com", custom_url="taken")
    attempts = []

    def always_taken():
        attempts.append(1)
        return "taken"

    service.generator.generate_unique = always_taken

    with pytest.raises(GenerationExhausted):
        service.shorten(alice, "https://example.org")
    assert len(attempts) == 3
    assert db.query(models.Link).count() == 1


def test_shorten_rejects_bad_input_without_creating_rows(service, db, alice):
    with pytest.raises(InvalidFormat):
        service.shorten(alice, "https://example.com", custom_url="bad token!")
    with pytest.raises(InvalidFormat):
        service.shorten(alice, "https://example.com", custom_url="abc\n")
    with pytest.raises(DisallowedScheme):
        service.shorten(alice, "ftp://example.com")
    with pytest.raises(SelfReferential):
        service.shorten(alice, "https://sho.rt/abc")
    with pytest.raises(ValidationError):
        service.shorten(alice, "")
    assert db.query(models.Link).count() == 0


def test_shorten_stores_expiry_as_utc(service, alice):
    expires = datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    token = service.shorten(alice, "https://example.com", expires_at=expires)
    assert service.retrieve(token).expires_at == datetime(2030, 1, 1, 10, 0)


def test_retrieve_unknown(service):
    with pytest.raises(NotFound):
        service.retrieve("missing")


def test_resolve_records_each_visit(service, db, alice):
    token = service.shorten(alice, "https://example.com", custom_url="counted")
    for _ in range(3):
        service.resolve_redirect(token, referrer="https://ref.example")

    db.expire_all()
    link = service.retrieve(token)
    assert link.visits == 3
    assert link.last_visited_at is not None
    visits = db.query(models.LinkVisit).filter_by(link_id=link.id).all()
    assert len(visits) == 3
    assert visits[0].referrer == "https://ref.example"


def test_inactive_link_does_not_resolve(service, alice):
    token = service.shorten(alice, "https://example.com", custom_url="paused")
    service.update(alice, token, is_active=False)
    with pytest.raises(NotFound):
        service.resolve_redirect(token)


def test_empty_stored_redirect(service, db, alice):
    token = service.shorten(alice, "https://example.com", custom_url="broken")
    link = service.retrieve(token)
    link.redirect_to = ""
    db.commit()
    with pytest.raises(InvalidRedirect):
        service.resolve_redirect(token)


def test_delete_requires_owner_or_admin(service, alice, bob, admin):
    first = service.shorten(alice, "https://example.com")
    second = service.shorten(alice, "https://example.org")

    with pytest.raises(Unauthorized):
        service.delete(bob, first)

    service.delete(alice, first)
    service.delete(admin, second)
    with pytest.raises(NotFound):
        service.retrieve(first)
    with pytest.raises(NotFound):
        service.delete(alice, second)


def test_update_fields(service, alice):
    token = service.shorten(alice, "https://example.com", custom_url="old")

    link = service.update(alice, token, redirect_to="example.org", new_shortened="new")
    assert link.shortened == "new"
    assert link.redirect_to == "https://example.org"
    with pytest.raises(NotFound):
        service.retrieve("old")

    link = service.update(alice, "new", expires_at=datetime(2031, 5, 1))
    assert link.expires_at == datetime(2031, 5, 1)

    link = service.update(alice, "new", expires_at=CLEAR_EXPIRY)
    assert link.expires_at is None

    link = service.update(alice, "new", expires_at=datetime(1970, 1, 1, tzinfo=timezone.utc))
    assert link.expires_at is None


def test_update_rejects_bad_new_token(service, alice):
    service.shorten(alice, "https://example.com", custom_url="one")
    service.shorten(alice, "https://example.com", custom_url="two")

    with pytest.raises(InvalidFormat):
        service.update(alice, "one", new_shortened="no way")
    with pytest.raises(InvalidFormat):
        service.update(alice, "one", new_shortened="two\n")
    with pytest.raises(Conflict):
        service.update(alice, "one", new_shortened="two")
    with pytest.raises(Conflict):
        service.update(alice, "one", new_shortened="api")

    link = service.retrieve("one")
    assert link.redirect_to == "https://example.com"


def test_update_requires_owner(service, alice, bob):
    token = service.shorten(alice, "https://example.com")
    with pytest.raises(Unauthorized):
        service.update(bob, token, is_active=False)
    assert service.retrieve(token).is_active


def test_retrieve_all(service, alice, bob, admin):
    service.shorten(alice, "https://example.com")
    service.shorten(bob, "https://example.org")

    assert len(service.retrieve_all(admin)) == 2
    with pytest.raises(Forbidden):
        service.retrieve_all(alice)


def test_retrieve_all_by_key(service, alice, bob, admin):
    service.shorten(alice, "https://example.com")
    service.shorten(alice, "https://example.net")
    service.shorten(bob, "https://example.org")

    assert len(service.retrieve_all_by_key(alice, alice.secret_key)) == 2
    assert len(service.retrieve_all_by_key(admin, bob.secret_key)) == 1
    with pytest.raises(Unauthorized):
        service.retrieve_all_by_key(alice, bob.secret_key)
    with pytest.raises(NotFound):
        service.retrieve_all_by_key(admin, "missing")


def test_concurrent_visits_are_all_counted(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'visits.db'}")
    init_db(engine)
    session_factory = create_session_factory(engine)

    with session_factory() as db:
        store = KeyStore(db)
        store.ensure_root_key("root")
        auth = store.authenticate("root")
        LinkService(db).shorten(auth, "https://example.com", custom_url="busy")

    errors = []

    def visit():
        with session_factory() as db:
            try:
                LinkService(db).resolve_redirect("busy")
            except Exception as e:
                errors.append(e)

    threads = [threading.Thread(target=visit) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with session_factory() as db:
        link = db.query(models.Link).filter_by(shortened="busy").one()
        assert link.visits == 20
        assert db.query(models.LinkVisit).count() == 20
    engine.dispose()
