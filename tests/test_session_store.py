from types import SimpleNamespace

import pytest

from planner.errors import AuthError
from planner.services.session import ANONYMOUS, APPROVED, UNAPPROVED, SessionStore


def _user(uid=1, **flags):
    fields = {"id": uid, "is_active": True, "is_superuser": False, "is_approved": False}
    fields.update(flags)
    return SimpleNamespace(**fields)


def test_flags_follow_identity():
    store = SessionStore()
    assert store.state == ANONYMOUS

    store.set_identity(_user())
    assert (store.state, store.is_admin, store.is_approved) == (UNAPPROVED, False, False)

    store.set_identity(_user(2, is_superuser=True, is_approved=True))
    assert (store.state, store.is_admin, store.is_approved) == (APPROVED, True, True)


async def test_sign_out_discards_cached_engine(registry, seeded, make_user):
    user = await make_user("leaky@example.com")
    engine = registry.get(user.id)
    await engine.load("practice-overview")
    engine.set_answer(engine.current_question.id, "private answer")

    store = SessionStore(registry)
    store.set_identity(user)
    store.sign_out()

    assert store.identity is None
    assert store.state == ANONYMOUS
    assert user.id not in registry
    assert engine.answers == {}
    # the next user on the same device gets a clean engine
    assert registry.get(user.id).answers == {}


async def test_wait_for_approval_polls_until_approved():
    approved_after = 3
    calls = []

    async def loader(uid):
        calls.append(uid)
        return _user(uid, is_approved=len(calls) >= approved_after)

    store = SessionStore()
    store.set_identity(_user(5))

    assert await store.wait_for_approval(loader, interval=0.01) is True
    assert len(calls) == approved_after
    assert store.state == APPROVED


async def test_wait_for_approval_times_out():
    async def loader(uid):
        return _user(uid)

    store = SessionStore()
    store.set_identity(_user(5))
    assert await store.wait_for_approval(loader, interval=0.01, timeout=0.05) is False
    assert store.state == UNAPPROVED


async def test_refresh_of_deleted_account_signs_out():
    async def loader(uid):
        return None

    store = SessionStore()
    store.set_identity(_user(5, is_approved=True))
    with pytest.raises(AuthError):
        await store.refresh(loader)
    assert store.state == ANONYMOUS
