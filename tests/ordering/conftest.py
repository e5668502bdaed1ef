import pytest
from protean.integrations.pytest import DomainFixture

from ordering.bus import reset_event_bus, set_event_bus
from ordering.bus.local_adapter import LocalEventBus
from ordering.cache import reset_read_cache, set_read_cache
from ordering.cache.memory_adapter import InMemoryReadCache
from ordering.carrier import reset_carrier, set_carrier
from ordering.carrier.fake_adapter import FakeCarrier
from ordering.gateway import reset_gateway, set_gateway
from ordering.gateway.fake_adapter import FakeGateway
from ordering.policy import reset_policy
from ordering.shipment.inflight import stage_registry
from ordering.storage import reset_storage, set_storage
from ordering.storage.fake_adapter import FakeStorage


@pytest.fixture(scope="session")
def ordering_bed():
    from ordering.domain import ordering

    bed = DomainFixture(ordering)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(ordering_bed):
    with ordering_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def carrier():
    fake = FakeCarrier()
    set_carrier(fake)
    yield fake
    reset_carrier()


@pytest.fixture(autouse=True)
def gateway():
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture(autouse=True)
def storage():
    fake = FakeStorage()
    set_storage(fake)
    yield fake
    reset_storage()


@pytest.fixture(autouse=True)
def event_bus():
    bus = LocalEventBus()
    set_event_bus(bus)
    yield bus
    reset_event_bus()


@pytest.fixture(autouse=True)
def read_cache():
    cache = InMemoryReadCache()
    set_read_cache(cache)
    yield cache
    reset_read_cache()


@pytest.fixture(autouse=True)
def _reset_policy_and_stages():
    yield
    reset_policy()
    stage_registry.clear()
