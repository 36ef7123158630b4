import itertools

import pytest

from discoblocks.controllers.events import (
    TRANSITIONS,
    ClaimEventFilter,
    ClaimState,
    claim_state,
    is_managed,
)

from conftest import pvc_obj

f = ClaimEventFilter()


def test_transition_table_is_complete():
    assert set(TRANSITIONS) == set(itertools.product(ClaimState, ClaimState))


def test_states():
    assert claim_state(pvc_obj("a")) is ClaimState.UNMANAGED
    assert claim_state(pvc_obj("a", config="data", finalizer=False)) is ClaimState.UNMANAGED
    assert claim_state(pvc_obj("a", config="data")) is ClaimState.MANAGED_ACTIVE
    assert claim_state(pvc_obj("a", config="data", deleting=True)) is ClaimState.MANAGED_DELETING


def test_finalizer_must_match_label():
    pvc = pvc_obj("a", config="data")
    pvc["metadata"]["finalizers"] = ["discoblocks.ondat.io/other"]
    assert not is_managed(pvc)


def test_create_admits_managed_only():
    assert f.create(pvc_obj("a", config="data"))
    assert not f.create(pvc_obj("a"))


def test_update_phase_change():
    old = pvc_obj("a", config="data", phase="Pending")
    assert f.update(old, pvc_obj("a", config="data", phase="Bound"))
    assert not f.update(old, pvc_obj("a", config="data", phase="Pending"))


def test_update_deletion_and_unmanaged():
    active = pvc_obj("a", config="data")
    assert f.update(active, pvc_obj("a", config="data", deleting=True))
    assert not f.update(active, pvc_obj("a"))
    assert not f.update(pvc_obj("a"), pvc_obj("a"))


def test_finalizer_added_is_admitted():
    assert f.update(pvc_obj("a", config="data", finalizer=False), pvc_obj("a", config="data"))


@pytest.mark.parametrize("obj", [pvc_obj("a", config="data"), pvc_obj("a")])
def test_delete_and_generic_rejected(obj):
    assert not f.delete(obj)
    assert not f.generic(obj)
