"""RTDN pull delivery from Google Cloud Pub/Sub.

Responsibilities:
- Subscribe to the configured pull subscription
- Route message data through the same handler as the push endpoint
- Ack or nack each message from the handler's decision
- Manage the subscriber client lifecycle
"""

from concurrent.futures import TimeoutError as FutureTimeoutError
from threading import RLock
from typing import Optional

from google.cloud import pubsub_v1

from renewal_sync.logging_config import get_logger
from renewal_sync.services.notification_handler import NotificationHandler

logger = get_logger(__name__)


class PubSubListener:
    """Streaming-pull consumer for Real-Time Developer Notifications.

    Malformed messages are acked (logged) since redelivering them can never
    succeed; transient failures are nacked.

    Args:
        handler: notification handler shared with the push endpoint
        project_id: GCP project ID
        subscription: pull subscription name (without project path)
        max_messages: flow control limit for outstanding messages
        subscriber: optional pre-built SubscriberClient
    """

    def __init__(
        self,
        handler: NotificationHandler,
        project_id: str,
        subscription: str,
        max_messages: int = 10,
        subscriber: Optional[pubsub_v1.SubscriberClient] = None,
    ):
        self._lock = RLock()
        self._handler = handler
        self._subscriber = subscriber or pubsub_v1.SubscriberClient()
        self._subscription_path = self._subscriber.subscription_path(project_id, subscription)
        self._flow_control = pubsub_v1.types.FlowControl(max_messages=max_messages)
        self._future = None

        logger.info(
            "pubsub_listener_initialized",
            project_id=project_id,
            subscription=subscription,
            subscription_path=self._subscription_path,
            max_messages=max_messages,
        )

    @property
    def subscription_path(self) -> str:
        return self._subscription_path

    def is_running(self) -> bool:
        with self._lock:
            return self._future is not None and not self._future.done()

    def _callback(self, message) -> None:
        """Handle one pulled message."""
        try:
            decision = self._handler.handle_message(message.data, message_id=message.message_id)
        except Exception as e:
            logger.error(
                "pubsub_message_handling_failed",
                message_id=message.message_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            message.nack()
            return

        if decision.acknowledged or decision.status_code == 400:
            message.ack()
            logger.debug("pubsub_message_acked", message_id=message.message_id, status_code=decision.status_code)
        else:
            message.nack()
            logger.info("pubsub_message_nacked", message_id=message.message_id, status_code=decision.status_code)

    def start(self):
        """Open the streaming pull.

        Returns:
            StreamingPullFuture
        """
        with self._lock:
            if self.is_running():
                return self._future
            self._future = self._subscriber.subscribe(
                self._subscription_path,
                callback=self._callback,
                flow_control=self._flow_control,
            )
            logger.info("pubsub_listener_started", subscription_path=self._subscription_path)
            return self._future

    def run(self, timeout: Optional[float] = None) -> None:
        """Start and block until the stream ends, ``timeout`` elapses or interrupt."""
        future = self.start()
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.info("pubsub_listener_timeout", timeout=timeout)
        except KeyboardInterrupt:
            logger.info("pubsub_listener_interrupted")
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Cancel the streaming pull and close the subscriber."""
        with self._lock:
            if self._future is not None:
                logger.info("pubsub_listener_shutting_down")
                self._future.cancel()
                try:
                    self._future.result(timeout=5.0)
                except Exception as e:
                    logger.debug("pubsub_listener_stream_closed", error_type=type(e).__name__)
                self._future = None
            self._subscriber.close()
            logger.info("pubsub_listener_shutdown_complete")
