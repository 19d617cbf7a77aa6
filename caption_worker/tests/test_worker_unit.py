import time
from unittest.mock import Mock

from caption_worker.app.config import Settings
from caption_worker.app.context import Worker, WorkerContext
from caption_worker.app.dispatcher import MessageDispatcher
from caption_worker.app.services.broker import Broker


def _pubsub(*payloads):
    messages = [{"type": "subscribe", "channel": b"queue", "data": 1}]
    messages += [{"type": "message", "channel": b"queue", "data": p} for p in payloads]

    def get_message(timeout=None):
        if messages:
            return messages.pop(0)
        time.sleep(0.01)
        return None

    pubsub = Mock()
    pubsub.get_message.side_effect = get_message
    return pubsub


def _worker(pubsub, enricher):
    client = Mock()
    client.pubsub.return_value = pubsub
    context = WorkerContext(settings=Settings(_env_file=None, LOG_DIR=""), redis=client)
    dispatcher = MessageDispatcher(enricher, context.telemetry, pool_size=2)
    return Worker(context=context, broker=Broker(client, context.telemetry), dispatcher=dispatcher)


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while not predicate() and time.time() < deadline:
        time.sleep(0.01)
    return predicate()


class TestWorkerLifecycle:
    def test_close_stops_subscriber_before_pool(self):
        enricher = Mock()
        worker = _worker(_pubsub(b'{"photo_id":"p1","photo_url":"https://img.example/1.jpg"}'), enricher)

        subscriber = worker.start()
        assert _wait_for(lambda: enricher.enrich.call_count == 1)
        worker.close()

        assert not subscriber.is_alive()
        assert worker.dispatcher._workers == []
        assert worker.dispatcher.in_flight == 0
        assert worker.broker.subscribed is False

    def test_close_while_idle(self):
        pubsub = _pubsub()
        worker = _worker(pubsub, Mock())

        subscriber = worker.start()
        assert _wait_for(lambda: worker.broker.subscribed)
        worker.close(timeout=5)

        assert not subscriber.is_alive()
        pubsub.close.assert_called_once()

    def test_close_without_start(self):
        worker = _worker(_pubsub(), Mock())
        worker.close()
        assert worker.subscriber is None
