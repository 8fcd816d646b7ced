from __future__ import annotations

import json
import threading
from typing import Any

from ingest_catalog.app.config import Settings
from ingest_catalog.app.services.aws import aws_client


class WorkflowInvoker:
    """Starts a workflow by handing its start message to a queue."""

    def start_workflow(self, message: dict[str, Any], queue_url: str | None = None) -> None:
        raise NotImplementedError


class RecordingWorkflowInvoker(WorkflowInvoker):
    def __init__(self) -> None:
        self.started: list[tuple[str | None, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def start_workflow(self, message: dict[str, Any], queue_url: str | None = None) -> None:
        with self._lock:
            self.started.append((queue_url, message))


class SqsWorkflowInvoker(WorkflowInvoker):
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._client = client or aws_client(settings, "sqs")
        self._default_queue_url = settings.default_queue_url

    def start_workflow(self, message: dict[str, Any], queue_url: str | None = None) -> None:
        target = queue_url or self._default_queue_url
        if not target:
            raise ValueError("No queue URL configured for starting workflows")
        self._client.send_message(QueueUrl=target, MessageBody=json.dumps(message, default=str))
