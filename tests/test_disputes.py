import pytest

from mediaguard.core.errors import (
    AlreadyResolved, EmptyReason, InvalidIdentity, NotFound, Unauthorized
)
from mediaguard.core.events import EventBus
from mediaguard.core.registry import Registry


@pytest.fixture
def registered(registry, make_fp):
    fp = make_fp("video1", perceptual="abcd", audio="tone")
    registry.register("alice", fp, "QmVideo1")
    return fp


def test_raise_dispute_flags_record(registry, registered):
    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")

    assert dispute_id == 0
    assert registry.get_record(registered.exact).disputed is True
    assert registry.stats().total_disputes == 1

    dispute = registry.get_dispute(dispute_id)
    assert dispute.accuser == "carol"
    assert dispute.target_exact_hash == registered.exact
    assert dispute.reason == "stolen content"
    assert dispute.resolved is False
    assert dispute.resolver is None


def test_dispute_ids_are_sequential(registry, registered):
    assert registry.raise_dispute("carol", registered.exact, "Reason 1") == 0
    assert registry.raise_dispute("dave", registered.exact, "Reason 2") == 1
    assert registry.stats().total_disputes == 2


def test_raise_dispute_requires_reason(registry, registered):
    for reason in ("", "   "):
        with pytest.raises(EmptyReason):
            registry.raise_dispute("carol", registered.exact, reason)
    assert registry.get_record(registered.exact).disputed is False
    assert registry.stats().total_disputes == 0


def test_raise_dispute_on_missing_record(registry, make_fp):
    with pytest.raises(NotFound):
        registry.raise_dispute("carol", make_fp("missing").exact, "Test")
    assert registry.stats().total_disputes == 0


def test_rejected_dispute_clears_flag(registry, registered):
    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")
    dispute = registry.resolve_dispute(dispute_id, upheld=False, actor="admin")

    assert dispute.resolved is True
    assert dispute.upheld is False
    assert dispute.resolver == "admin"
    assert dispute.resolved_at is not None
    assert registry.get_record(registered.exact).disputed is False


def test_upheld_dispute_keeps_flag(registry, registered):
    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")
    registry.resolve_dispute(dispute_id, upheld=True, actor="admin")

    assert registry.get_dispute(dispute_id).upheld is True
    assert registry.get_record(registered.exact).disputed is True


def test_resolve_twice_fails(registry, registered):
    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")
    registry.resolve_dispute(dispute_id, upheld=True, actor="admin")

    with pytest.raises(AlreadyResolved):
        registry.resolve_dispute(dispute_id, upheld=False, actor="admin")
    assert registry.get_dispute(dispute_id).upheld is True
    assert registry.get_record(registered.exact).disputed is True


def test_resolve_unknown_dispute(registry):
    with pytest.raises(NotFound):
        registry.resolve_dispute(999, upheld=True, actor="admin")
    with pytest.raises(NotFound):
        registry.get_dispute(999)


def test_non_arbitrator_cannot_resolve(registry, registered):
    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")

    with pytest.raises(Unauthorized):
        registry.resolve_dispute(dispute_id, upheld=False, actor="carol")
    assert registry.get_dispute(dispute_id).resolved is False


def test_authorization_checked_before_existence(registry):
    with pytest.raises(Unauthorized):
        registry.resolve_dispute(999, upheld=True, actor="mallory")


def test_added_arbitrator_can_resolve(registry, registered):
    registry.add_arbitrator("judge", actor="admin")
    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")

    dispute = registry.resolve_dispute(dispute_id, upheld=True, actor="judge")
    assert dispute.resolver == "judge"


def test_removed_arbitrator_cannot_resolve(registry, registered):
    registry.add_arbitrator("judge", actor="admin")
    registry.remove_arbitrator("judge", actor="admin")
    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")

    with pytest.raises(Unauthorized):
        registry.resolve_dispute(dispute_id, upheld=True, actor="judge")


def test_multiple_open_disputes_per_record(registry, registered):
    first = registry.raise_dispute("carol", registered.exact, "stolen content")
    second = registry.raise_dispute("dave", registered.exact, "also mine")

    registry.resolve_dispute(first, upheld=False, actor="admin")
    assert registry.get_dispute(second).resolved is False
    assert registry.get_record(registered.exact).disputed is False


def test_arbitrator_management_is_idempotent(registry):
    registry.add_arbitrator("judge", actor="admin")
    registry.add_arbitrator("judge", actor="admin")
    assert registry.arbitrators() == {"judge"}

    registry.remove_arbitrator("judge", actor="admin")
    registry.remove_arbitrator("judge", actor="admin")
    assert registry.arbitrators() == set()


def test_admin_is_implicit_arbitrator(registry):
    assert registry.is_arbitrator("admin")
    assert "admin" not in registry.arbitrators()
    assert not registry.is_arbitrator("carol")
    assert not registry.is_arbitrator(None)


def test_only_admin_manages_roles(registry):
    with pytest.raises(Unauthorized):
        registry.add_arbitrator("judge", actor="alice")
    with pytest.raises(Unauthorized):
        registry.remove_arbitrator("judge", actor="alice")
    with pytest.raises(Unauthorized):
        registry.transfer_admin("alice", actor="alice")
    assert registry.admin == "admin"


def test_role_changes_reject_blank_identity(registry):
    with pytest.raises(InvalidIdentity):
        registry.add_arbitrator("", actor="admin")
    with pytest.raises(InvalidIdentity):
        registry.transfer_admin("", actor="admin")
    assert registry.admin == "admin"


def test_transfer_admin(registry, registered):
    registry.transfer_admin("newadmin", actor="admin")
    assert registry.admin == "newadmin"

    dispute_id = registry.raise_dispute("carol", registered.exact, "stolen content")
    with pytest.raises(Unauthorized):
        registry.resolve_dispute(dispute_id, upheld=True, actor="admin")
    with pytest.raises(Unauthorized):
        registry.add_arbitrator("judge", actor="admin")

    registry.resolve_dispute(dispute_id, upheld=True, actor="newadmin")
    registry.add_arbitrator("judge", actor="newadmin")
    assert registry.arbitrators() == {"judge"}


def test_dispute_events(make_fp):
    events = EventBus()
    seen = []
    events.subscribe(seen.append)
    registry = Registry(admin="admin", events=events)
    fp = make_fp("video1")
    registry.register("alice", fp, "QmVideo1")

    dispute_id = registry.raise_dispute("carol", fp.exact, "stolen content")
    registry.add_arbitrator("judge", actor="admin")
    registry.resolve_dispute(dispute_id, upheld=False, actor="judge")

    names = [e.name for e in seen]
    assert names == ["Registered", "DisputeRaised", "ArbitratorAdded", "DisputeResolved"]
    raised = seen[1]
    assert raised.actor == "carol"
    assert raised.exact_hash == fp.exact
    assert raised.details == {"dispute_id": 0, "reason": "stolen content"}
    assert seen[3].details == {"dispute_id": 0, "upheld": False}
