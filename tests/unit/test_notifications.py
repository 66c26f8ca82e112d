"""Tests for notification dispatch."""

from concurrent.futures import ThreadPoolExecutor

from app.services.notifications import (
    NEW_DEVICE,
    LoggingNotifier,
    NotificationData,
    NotificationDispatcher,
    Notifier,
)


class BrokenNotifier(Notifier):
    def notify_new_device(self, data):
        raise ConnectionError("telegram is down")


def test_inline_dispatch(notifier):
    dispatcher = NotificationDispatcher(notifier)

    dispatcher.dispatch(NEW_DEVICE, NotificationData(ip="8.8.8.8", account_id=1))

    assert [data.ip for data in notifier.of(NEW_DEVICE)] == ["8.8.8.8"]


def test_failing_notifier_is_contained(caplog):
    dispatcher = NotificationDispatcher(BrokenNotifier())

    dispatcher.dispatch(NEW_DEVICE, NotificationData(ip="8.8.8.8"))

    assert "Notifier failed on new_device" in caplog.text


def test_executor_dispatch(notifier):
    dispatcher = NotificationDispatcher(notifier, ThreadPoolExecutor(max_workers=1))

    dispatcher.dispatch(NEW_DEVICE, NotificationData(ip="8.8.8.8"))
    dispatcher.shutdown()

    assert len(notifier.of(NEW_DEVICE)) == 1


def test_dispatch_after_shutdown_is_dropped(notifier):
    dispatcher = NotificationDispatcher(notifier, ThreadPoolExecutor(max_workers=1))
    dispatcher.shutdown()

    dispatcher.dispatch(NEW_DEVICE, NotificationData(ip="8.8.8.8"))

    assert notifier.events == []


def test_unknown_event_and_missing_notifier(notifier):
    NotificationDispatcher(notifier).dispatch("no_such_event", NotificationData(ip="8.8.8.8"))
    NotificationDispatcher().dispatch(NEW_DEVICE, NotificationData(ip="8.8.8.8"))

    assert notifier.events == []


def test_logging_notifier(caplog):
    caplog.set_level("INFO")

    LoggingNotifier().notify_new_device(NotificationData(ip="8.8.8.8", account_id=3, country="United States"))

    assert "new_device: account=3 ip=8.8.8.8" in caplog.text
