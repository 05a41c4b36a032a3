from events import TIME_UPDATED, TimeUpdateNotifier


def test_publish_reaches_every_subscriber():
    notifier = TimeUpdateNotifier()
    first, second = [], []
    notifier.subscribe(first.append)
    notifier.subscribe(second.append)

    assert notifier.publish("sim-1") == 2
    assert first == second == [{"event": TIME_UPDATED, "simulation_id": "sim-1"}]


def test_unsubscribe_stops_delivery():
    notifier = TimeUpdateNotifier()
    received = []
    unsubscribe = notifier.subscribe(received.append)
    unsubscribe()
    unsubscribe()

    assert notifier.subscriber_count == 0
    assert notifier.publish("sim-1") == 0
    assert received == []


def test_failing_subscriber_does_not_block_others(caplog):
    notifier = TimeUpdateNotifier()
    received = []

    def broken(event):
        raise RuntimeError("socket closed")

    notifier.subscribe(broken)
    notifier.subscribe(received.append)

    assert notifier.publish("sim-2") == 1
    assert received == [{"event": TIME_UPDATED, "simulation_id": "sim-2"}]
    assert "Subscriber failed" in caplog.text
