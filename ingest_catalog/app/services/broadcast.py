from __future__ import annotations

import json
import threading
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from ingest_catalog.app.config import Settings
from ingest_catalog.app.services.aws import aws_client, raise_if_transient


class Broadcaster:
    def publish(self, topic_arn: str, record: dict[str, Any]) -> None:
        raise NotImplementedError


class InMemoryBroadcaster(Broadcaster):
    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def publish(self, topic_arn: str, record: dict[str, Any]) -> None:
        with self._lock:
            self.messages.append((topic_arn, record))


class SnsBroadcaster(Broadcaster):
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._client = client or aws_client(settings, "sns")

    def publish(self, topic_arn: str, record: dict[str, Any]) -> None:
        try:
            self._client.publish(TopicArn=topic_arn, Message=json.dumps(record, default=str))
        except (BotoCoreError, ClientError) as exc:
            raise_if_transient(exc, "broadcast topic")
            raise
