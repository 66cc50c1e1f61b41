from omamori.events import Event, EventBus, EventType


def test_event_type_wire_names_survive_the_bus():
    bus = EventBus()
    bus.publish(Event(EventType.START_DNS_SERVER))
    bus.publish(Event(EventType.UPDATE_SITE_LIST, {"operation": "add"}))
    events = bus.drain()
    assert [event.type.value for event in events] == [
        "START_DNS_SERVER",
        "UPDATE_SITE_LIST",
    ]


def test_publish_and_drain_in_order():
    bus = EventBus()
    first = Event(EventType.START_DNS_SERVER)
    second = Event(EventType.STOP_DNS_SERVER)
    bus.publish(first)
    bus.publish(second)
    assert bus.drain() == [first, second]


def test_drain_empties_bus():
    bus = EventBus()
    bus.publish(Event(EventType.START_DOH_SERVER))
    bus.drain()
    assert bus.drain() == []


def test_log_and_error_helpers():
    bus = EventBus(maxsize=4)
    bus.log("server started")
    failure = ValueError("bad")
    bus.error(failure)
    events = bus.drain()
    assert events[0] == Event(EventType.LOG, "server started")
    assert events[1].type is EventType.ERROR
    assert events[1].payload is failure


def test_default_payload_is_none():
    bus = EventBus()
    bus.publish(Event(EventType.STOP_DOH_SERVER))
    (event,) = bus.drain()
    assert event.payload is None