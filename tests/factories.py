"""Test doubles and record builders shared by the unit and integration tests."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from ingest_catalog.app.services.broadcast import InMemoryBroadcaster
from ingest_catalog.app.services.legacy_store import InMemoryLegacyStore
from ingest_catalog.app.services.search_index import InMemorySearchIndex

ACCOUNT = "000000000000"
EXECUTION_TOPIC = f"arn:aws:sns:us-east-1:{ACCOUNT}:executions"
GRANULE_TOPIC = f"arn:aws:sns:us-east-1:{ACCOUNT}:granules"
MESSAGE_CONSUMER = f"arn:aws:lambda:us-east-1:{ACCOUNT}:function:messageConsumer"
INBOUND_LOGGER = f"arn:aws:lambda:us-east-1:{ACCOUNT}:function:KinesisInboundEventLogger"
SCHEDULE_TARGET = f"arn:aws:lambda:us-east-1:{ACCOUNT}:function:ScheduledRuleInvoke"
DEFAULT_QUEUE = f"https://sqs.us-east-1.amazonaws.com/{ACCOUNT}/startSF"

COLLECTION_ID = "MOD09GQ___006"


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _Failing:
    def _setup_failures(self) -> None:
        self.fail_on: set[str] = set()
        self.calls: list[str] = []

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise RuntimeError(f"{type(self).__name__}.{operation} failed")


class FlakyLegacyStore(InMemoryLegacyStore, _Failing):
    def __init__(self) -> None:
        super().__init__()
        self._setup_failures()

    def get(self, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        self._call("get")
        return super().get(table, key)

    def put(self, table: str, key: dict[str, Any], item: dict[str, Any]) -> None:
        self._call("put")
        super().put(table, key, item)

    def delete(self, table: str, key: dict[str, Any]) -> None:
        self._call("delete")
        super().delete(table, key)


class FlakySearchIndex(InMemorySearchIndex, _Failing):
    def __init__(self) -> None:
        super().__init__()
        self._setup_failures()

    def get(self, doc_type: str, doc_id: str) -> dict[str, Any] | None:
        self._call("get")
        return super().get(doc_type, doc_id)

    def index(self, doc_type: str, doc_id: str, document: dict[str, Any]) -> None:
        self._call("index")
        super().index(doc_type, doc_id, document)

    def delete(self, doc_type: str, doc_id: str) -> None:
        self._call("delete")
        super().delete(doc_type, doc_id)


class FlakyBroadcaster(InMemoryBroadcaster, _Failing):
    def __init__(self) -> None:
        super().__init__()
        self._setup_failures()

    def publish(self, topic_arn: str, record: dict[str, Any]) -> None:
        self._call("publish")
        super().publish(topic_arn, record)


class FakeLambdaClient:
    def __init__(self) -> None:
        self.mappings: dict[str, dict[str, Any]] = {}
        self.permissions: dict[str, dict[str, Any]] = {}

    def list_event_source_mappings(self, EventSourceArn: str, FunctionName: str) -> dict[str, Any]:
        matches = [
            dict(mapping)
            for mapping in self.mappings.values()
            if mapping["EventSourceArn"] == EventSourceArn and mapping["FunctionArn"] == FunctionName
        ]
        return {"EventSourceMappings": matches}

    def create_event_source_mapping(self, EventSourceArn: str, FunctionName: str, **kwargs: Any) -> dict[str, Any]:
        uuid = f"mapping-{len(self.mappings) + 1}"
        self.mappings[uuid] = {
            "UUID": uuid,
            "EventSourceArn": EventSourceArn,
            "FunctionArn": FunctionName,
            "State": "Enabled" if kwargs.get("Enabled", True) else "Disabled",
        }
        return dict(self.mappings[uuid])

    def update_event_source_mapping(self, UUID: str, Enabled: bool) -> dict[str, Any]:
        self.mappings[UUID]["State"] = "Enabled" if Enabled else "Disabled"
        return dict(self.mappings[UUID])

    def delete_event_source_mapping(self, UUID: str) -> dict[str, Any]:
        if UUID not in self.mappings:
            raise client_error("ResourceNotFoundException", "DeleteEventSourceMapping")
        return self.mappings.pop(UUID)

    def add_permission(self, **kwargs: Any) -> dict[str, Any]:
        self.permissions[kwargs["StatementId"]] = kwargs
        return {}

    def remove_permission(self, FunctionName: str, StatementId: str) -> dict[str, Any]:
        if StatementId not in self.permissions:
            raise client_error("ResourceNotFoundException", "RemovePermission")
        del self.permissions[StatementId]
        return {}


class FakeSnsClient:
    def __init__(self, page_size: int = 1) -> None:
        self.subscriptions: dict[str, list[dict[str, str]]] = {}
        self.page_size = page_size
        self.unsubscribed: list[str] = []

    def list_subscriptions_by_topic(self, TopicArn: str, NextToken: str | None = None) -> dict[str, Any]:
        subscriptions = self.subscriptions.get(TopicArn, [])
        start = int(NextToken or 0)
        page = subscriptions[start : start + self.page_size]
        response: dict[str, Any] = {"Subscriptions": page}
        if start + self.page_size < len(subscriptions):
            response["NextToken"] = str(start + self.page_size)
        return response

    def subscribe(self, TopicArn: str, Protocol: str, Endpoint: str, ReturnSubscriptionArn: bool) -> dict[str, str]:
        subscriptions = self.subscriptions.setdefault(TopicArn, [])
        arn = f"{TopicArn}:subscription-{len(subscriptions) + 1}"
        subscriptions.append({"SubscriptionArn": arn, "Endpoint": Endpoint, "Protocol": Protocol})
        return {"SubscriptionArn": arn}

    def unsubscribe(self, SubscriptionArn: str) -> dict[str, Any]:
        self.unsubscribed.append(SubscriptionArn)
        for topic, subscriptions in self.subscriptions.items():
            self.subscriptions[topic] = [s for s in subscriptions if s["SubscriptionArn"] != SubscriptionArn]
        return {}


class FakeSqsClient:
    def __init__(self) -> None:
        self.queues: dict[str, dict[str, str]] = {}

    def get_queue_attributes(self, QueueUrl: str, AttributeNames: list[str]) -> dict[str, Any]:
        if QueueUrl not in self.queues:
            raise client_error("AWS.SimpleQueueService.NonExistentQueue", "GetQueueAttributes")
        return {"Attributes": dict(self.queues[QueueUrl])}


class FakeEventsClient:
    def __init__(self) -> None:
        self.rules: dict[str, dict[str, Any]] = {}
        self.targets: dict[str, list[dict[str, Any]]] = {}

    def put_rule(self, Name: str, ScheduleExpression: str, State: str) -> dict[str, Any]:
        self.rules[Name] = {"ScheduleExpression": ScheduleExpression, "State": State}
        return {"RuleArn": f"arn:aws:events:us-east-1:{ACCOUNT}:rule/{Name}"}

    def put_targets(self, Rule: str, Targets: list[dict[str, Any]]) -> dict[str, Any]:
        self.targets[Rule] = Targets
        return {"FailedEntryCount": 0}

    def remove_targets(self, Rule: str, Ids: list[str]) -> dict[str, Any]:
        if Rule not in self.targets:
            raise client_error("ResourceNotFoundException", "RemoveTargets")
        del self.targets[Rule]
        return {}

    def delete_rule(self, Name: str) -> dict[str, Any]:
        self.rules.pop(Name, None)
        return {}


def execution_record(
    arn: str,
    status: str = "running",
    workflow_name: str = "IngestGranule",
    timestamp: int | None = None,
    **extra: Any,
) -> dict[str, Any]:
    record = {
        "arn": arn,
        "name": arn.rsplit(":", 1)[-1],
        "status": status,
        "type": workflow_name,
        "execution": f"https://console.aws.amazon.com/states/home#/executions/details/{arn}",
        "originalPayload": {"granules": []},
    }
    if timestamp is not None:
        record["timestamp"] = timestamp
    record.update(extra)
    return record


def granule_record(
    granule_id: str,
    status: str,
    collection_id: str = COLLECTION_ID,
    **extra: Any,
) -> dict[str, Any]:
    record = {
        "granuleId": granule_id,
        "collectionId": collection_id,
        "status": status,
        "provider": "s3_provider",
    }
    record.update(extra)
    return record
