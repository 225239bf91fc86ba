from __future__ import annotations

import pytest
from pydantic import ValidationError

from tachobridge.cards import apply_plan, reconcile
from tachobridge.models.card import LocalCard, RemoteCard

CARD_A = "NB00000000000001"
CARD_B = "NB00000000000002"
CARD_C = "NB00000000000003"


def _local(number: str, name: str, **kwargs: str) -> LocalCard:
    return LocalCard(card_number=number, display_name=name, **kwargs)


def _remote(number: str, name: str, **kwargs: str) -> RemoteCard:
    return RemoteCard(card_number=number, display_name=name, **kwargs)


def test_reconcile_imports_missing_and_updates_changed_cards() -> None:
    local = {CARD_A: _local(CARD_A, "x")}
    remote = {CARD_A: _remote(CARD_A, "y"), CARD_B: _remote(CARD_B, "z")}

    plan = reconcile(local, remote)

    assert plan.updated_local_cards == {CARD_A: _local(CARD_A, "y")}
    assert plan.missing_local_cards == {CARD_B: _local(CARD_B, "z")}
    assert local == {CARD_A: _local(CARD_A, "x")}


def test_reconcile_is_idempotent_after_applying_plan() -> None:
    local = {CARD_A: _local(CARD_A, "x")}
    remote = {CARD_A: _remote(CARD_A, "y"), CARD_B: _remote(CARD_B, "z")}

    merged = apply_plan(local, reconcile(local, remote))
    second = reconcile(merged, remote)

    assert second.missing_local_cards == {}
    assert second.updated_local_cards == {}
    assert second.is_empty


def test_reconcile_leaves_local_only_cards_untouched() -> None:
    local = {CARD_C: _local(CARD_C, "only here")}

    plan = reconcile(local, {})

    assert plan.is_empty


def test_observed_iccid_survives_when_remote_has_none() -> None:
    local = {CARD_A: _local(CARD_A, "x", iccid="8931000000000000001")}
    remote = {CARD_A: _remote(CARD_A, "x", remote_id="17")}

    plan = reconcile(local, remote)

    updated = plan.updated_local_cards[CARD_A]
    assert updated.iccid == "8931000000000000001"
    assert updated.remote_id == "17"


def test_remote_iccid_wins_when_both_sides_have_one() -> None:
    local = {CARD_A: _local(CARD_A, "x", iccid="local-iccid")}
    remote = {CARD_A: _remote(CARD_A, "x", iccid="remote-iccid")}

    plan = reconcile(local, remote)

    assert plan.updated_local_cards[CARD_A].iccid == "remote-iccid"


def test_identical_cards_produce_no_update() -> None:
    local = {CARD_A: _local(CARD_A, "x", iccid="i-1", remote_id="17")}
    remote = {CARD_A: RemoteCard.model_validate({"card_number": CARD_A, "name": "x", "iccid": "i-1", "id": 17})}

    assert reconcile(local, remote).is_empty


def test_local_card_number_is_normalized_and_validated() -> None:
    assert LocalCard(card_number=" nb00000000000001 ").card_number == CARD_A
    with pytest.raises(ValidationError):
        LocalCard(card_number="too-short")
