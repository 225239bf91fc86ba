from __future__ import annotations

import asyncio

import pytest

from tachobridge.cards import CardSynchronizer, InMemoryCardRegistry
from tachobridge.config import BridgeConfig
from tachobridge.credentials import CredentialStore
from tachobridge.exceptions import MalformedResponseError
from tachobridge.models.card import LocalCard
from tachobridge.registrar import BridgeClientRegistrar
from tachobridge.token_chain import TokenChainManager

from .conftest import FakeTransport

CLIENTS = "/v1/companies/42/tachograph-company-card-clients"
CARDS = f"{CLIENTS}/dev-1/cards"
CARD_A = "NB00000000000001"
CARD_B = "NB00000000000002"


def _synchronizer(
    config: BridgeConfig,
    transport: FakeTransport,
    store: CredentialStore,
    registry: InMemoryCardRegistry | None = None,
) -> CardSynchronizer:
    chain = TokenChainManager(config, transport, store)
    registrar = BridgeClientRegistrar(config, transport, chain)
    return CardSynchronizer(config, transport, chain, registrar, registry or InMemoryCardRegistry())


@pytest.fixture
def registered_store(fleet_store: CredentialStore) -> CredentialStore:
    fleet_store.save(bridge_device_id="dev-1")
    return fleet_store


@pytest.mark.asyncio
async def test_sync_imports_and_updates_cards(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    registry = InMemoryCardRegistry({CARD_A: LocalCard(card_number=CARD_A, display_name="x", iccid="i-1")})
    transport.reply(
        "GET",
        CARDS,
        200,
        {
            "data": [
                {"id": 1, "card_number": CARD_A, "name": "y"},
                {"id": 2, "card_number": CARD_B, "name": "z"},
            ]
        },
    )

    plan = await _synchronizer(config, transport, registered_store, registry).sync()

    assert set(plan.missing_local_cards) == {CARD_B}
    assert set(plan.updated_local_cards) == {CARD_A}
    snapshot = registry.snapshot()
    assert snapshot[CARD_A].display_name == "y"
    assert snapshot[CARD_A].iccid == "i-1"
    assert snapshot[CARD_A].remote_id == "1"
    assert snapshot[CARD_B].remote_id == "2"
    assert transport.count("POST", CARDS) == 0
    assert transport.count("PUT", f"{CARDS}/1") == 0


@pytest.mark.asyncio
async def test_concurrent_syncs_share_one_pass(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    transport.reply("GET", CARDS, 200, [{"id": 1, "card_number": CARD_A, "name": "y"}])
    synchronizer = _synchronizer(config, transport, registered_store)

    first, second = await asyncio.gather(synchronizer.sync(), synchronizer.sync())

    assert first is second
    assert transport.count("GET", CARDS) == 1
    assert not synchronizer.is_syncing

    again = await synchronizer.sync()
    assert again.is_empty
    assert transport.count("GET", CARDS) == 2


@pytest.mark.asyncio
async def test_sync_registers_bridge_client_when_needed(
    config: BridgeConfig, transport: FakeTransport, fleet_store: CredentialStore
) -> None:
    transport.reply("POST", CLIENTS, 201, {"device_id": "dev-1"})
    transport.reply("GET", f"{CLIENTS}/dev-1", 200, {"device_id": "dev-1"})
    transport.reply("GET", CARDS, 200, [])

    plan = await _synchronizer(config, transport, fleet_store).sync()

    assert plan.is_empty
    assert fleet_store.current.bridge_device_id == "dev-1"


@pytest.mark.asyncio
async def test_malformed_entries_are_skipped_but_non_list_fails(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    transport.reply("GET", CARDS, 200, [{"name": "no number"}, "junk", {"card_number": CARD_A, "name": "a"}])
    transport.reply("GET", CARDS, 200, {"message": "nope"})
    synchronizer = _synchronizer(config, transport, registered_store)

    remote = await synchronizer.fetch_remote_cards()
    assert list(remote) == [CARD_A]

    with pytest.raises(MalformedResponseError):
        await synchronizer.fetch_remote_cards()


@pytest.mark.asyncio
async def test_create_card_posts_then_stores_locally(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    transport.reply("POST", CARDS, 201, {"data": {"id": 5, "card_number": CARD_A, "name": "Truck 1"}})
    synchronizer = _synchronizer(config, transport, registered_store)

    card = await synchronizer.create_card(CARD_A.lower(), "Truck 1", iccid="i-1")

    assert card.remote_id == "5"
    assert card.iccid == "i-1"
    assert synchronizer.registry.snapshot()[CARD_A] == card
    assert transport.last("POST", CARDS).json_body == {"card_number": CARD_A, "name": "Truck 1", "iccid": "i-1"}


@pytest.mark.asyncio
async def test_update_card_puts_known_remote_card(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    registry = InMemoryCardRegistry({CARD_A: LocalCard(card_number=CARD_A, display_name="old", remote_id="5")})
    transport.reply("PUT", f"{CARDS}/5", 200, {"id": 5, "card_number": CARD_A, "name": "new"})

    card = await _synchronizer(config, transport, registered_store, registry).update_card(CARD_A, display_name="new")

    assert card.display_name == "new"
    assert registry.snapshot()[CARD_A].display_name == "new"
    assert transport.last("PUT", f"{CARDS}/5").json_body == {"card_number": CARD_A, "name": "new"}


@pytest.mark.asyncio
async def test_update_card_without_remote_id_creates_it(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    registry = InMemoryCardRegistry({CARD_A: LocalCard(card_number=CARD_A, display_name="old")})
    transport.reply("POST", CARDS, 201, {"id": 8, "card_number": CARD_A, "name": "new"})

    card = await _synchronizer(config, transport, registered_store, registry).update_card(CARD_A, display_name="new")

    assert card.remote_id == "8"
    assert transport.count("POST", CARDS) == 1


@pytest.mark.asyncio
async def test_update_unknown_card_raises_key_error(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    with pytest.raises(KeyError):
        await _synchronizer(config, transport, registered_store).update_card(CARD_A, display_name="new")


@pytest.mark.asyncio
async def test_delete_card_tolerates_remote_404(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    registry = InMemoryCardRegistry({CARD_A: LocalCard(card_number=CARD_A, display_name="x", remote_id="5")})
    transport.reply("DELETE", f"{CARDS}/5", 404)

    await _synchronizer(config, transport, registered_store, registry).delete_card(CARD_A)

    assert registry.snapshot() == {}


def test_observe_card_updates_iccid_locally(
    config: BridgeConfig, transport: FakeTransport, registered_store: CredentialStore
) -> None:
    registry = InMemoryCardRegistry({CARD_A: LocalCard(card_number=CARD_A, display_name="x")})
    synchronizer = _synchronizer(config, transport, registered_store, registry)

    observed = synchronizer.observe_card(CARD_A, "i-9")

    assert observed is not None and observed.iccid == "i-9"
    assert synchronizer.observe_card(CARD_B, "i-1") is None
    assert transport.calls == []
