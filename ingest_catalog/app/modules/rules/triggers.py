"""External event sources backing workflow trigger rules.

A rule's trigger is one of five variants. Kinesis stream mappings and SNS
subscriptions can be shared by several rules pointing at the same stream or
topic; a binding is only torn down when no other enabled rule uses it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, Literal

import structlog
from botocore.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from ingest_catalog.app.config import Settings
from ingest_catalog.app.db.models import Rule
from ingest_catalog.app.errors import ValidationError
from ingest_catalog.app.services.aws import error_code
from ingest_catalog.app.services.workflow_invoker import WorkflowInvoker


logger = structlog.get_logger(__name__)

DEFAULT_SQS_RETRIES = 3


class _TriggerModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ScheduledTrigger(_TriggerModel):
    type: Literal["scheduled"] = "scheduled"
    value: str


class KinesisTrigger(_TriggerModel):
    type: Literal["kinesis"] = "kinesis"
    value: str
    arn: str | None = None
    log_event_arn: str | None = None


class SnsTrigger(_TriggerModel):
    type: Literal["sns"] = "sns"
    value: str
    arn: str | None = None


class SqsTrigger(_TriggerModel):
    type: Literal["sqs"] = "sqs"
    value: str


class OnetimeTrigger(_TriggerModel):
    type: Literal["onetime"] = "onetime"


RuleTrigger = Annotated[
    ScheduledTrigger | KinesisTrigger | SnsTrigger | SqsTrigger | OnetimeTrigger,
    Field(discriminator="type"),
]


class CollectionRef(_TriggerModel):
    name: str
    version: str


class RuleRecord(_TriggerModel):
    name: str
    workflow: str
    rule: RuleTrigger
    state: Literal["ENABLED", "DISABLED"] = "ENABLED"
    collection: CollectionRef | None = None
    provider: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)
    queue_url: str | None = None
    execution_name_prefix: str | None = None
    created_at: int | None = None
    updated_at: int | None = None

    @property
    def enabled(self) -> bool:
        return self.state == "ENABLED"


@dataclass(frozen=True)
class TriggerTargets:
    stack_name: str
    message_consumer_arn: str
    kinesis_inbound_logger_arn: str
    invoke_target_arn: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "TriggerTargets":
        return cls(
            stack_name=settings.stack_name,
            message_consumer_arn=settings.message_consumer_arn,
            kinesis_inbound_logger_arn=settings.kinesis_inbound_logger_arn,
            invoke_target_arn=settings.invoke_target_arn,
        )


def build_rule_message(rule: RuleRecord) -> dict[str, Any]:
    message: dict[str, Any] = {
        "workflow": rule.workflow,
        "meta": {**rule.meta, "rule": {"name": rule.name, "type": rule.rule.type}},
        "payload": rule.payload,
    }
    if rule.collection is not None:
        message["collection"] = rule.collection.model_dump()
    if rule.provider:
        message["provider"] = rule.provider
    if rule.queue_url:
        message["queueUrl"] = rule.queue_url
    if rule.execution_name_prefix:
        message["executionNamePrefix"] = rule.execution_name_prefix
    return message


def _ignore_missing(exc: ClientError) -> None:
    if error_code(exc) not in {"ResourceNotFoundException", "NotFound", "NotFoundException"}:
        raise exc


class RuleTriggerManager:
    def __init__(
        self,
        targets: TriggerTargets,
        lambda_client: Any,
        sns_client: Any,
        sqs_client: Any,
        events_client: Any,
        invoker: WorkflowInvoker,
    ) -> None:
        self.targets = targets
        self.lambda_client = lambda_client
        self.sns_client = sns_client
        self.sqs_client = sqs_client
        self.events_client = events_client
        self.invoker = invoker

    def is_binding_shared(self, db: Session, rule: RuleRecord) -> bool:
        """True if another enabled rule uses the same source type and identifier."""
        value = getattr(rule.rule, "value", None)
        if value is None:
            return False
        stmt = select(Rule.name).where(
            and_(
                Rule.name != rule.name,
                Rule.type == rule.rule.type,
                Rule.value == value,
                Rule.enabled.is_(True),
            )
        ).limit(1)
        return db.execute(stmt).first() is not None

    def add(self, rule: RuleRecord) -> RuleRecord:
        """Create the bindings for ``rule`` and return it with their identifiers."""
        match rule.rule:
            case ScheduledTrigger() as trigger:
                self._put_schedule(rule, trigger)
                return rule
            case KinesisTrigger() as trigger:
                if not rule.enabled:
                    return rule
                consumer = self._ensure_kinesis_mapping(trigger.value, self.targets.message_consumer_arn)
                inbound_logger = self._ensure_kinesis_mapping(trigger.value, self.targets.kinesis_inbound_logger_arn)
                return rule.model_copy(
                    update={"rule": trigger.model_copy(update={"arn": consumer, "log_event_arn": inbound_logger})}
                )
            case SnsTrigger() as trigger:
                if not rule.enabled:
                    return rule
                subscription_arn = self._ensure_sns_subscription(rule.name, trigger.value)
                return rule.model_copy(update={"rule": trigger.model_copy(update={"arn": subscription_arn})})
            case SqsTrigger() as trigger:
                return rule.model_copy(update={"meta": self._validate_queue(trigger.value, rule.meta)})
            case OnetimeTrigger():
                if rule.enabled:
                    self.invoker.start_workflow(build_rule_message(rule), rule.queue_url)
                return rule
            case _:
                raise ValidationError(f"Rule type {rule.rule.type} is not supported", {"rule": rule.name})

    def remove(self, db: Session, rule: RuleRecord) -> None:
        match rule.rule:
            case ScheduledTrigger():
                self._delete_schedule(rule)
            case KinesisTrigger() as trigger:
                if self.is_binding_shared(db, rule):
                    logger.info("rule_binding_shared", rule=rule.name, source=trigger.value)
                    return
                for uuid in (trigger.arn, trigger.log_event_arn):
                    if uuid:
                        self._delete_kinesis_mapping(uuid)
            case SnsTrigger() as trigger:
                if not rule.enabled or not trigger.arn:
                    return
                if self.is_binding_shared(db, rule):
                    logger.info("rule_binding_shared", rule=rule.name, source=trigger.value)
                    return
                self._delete_sns_subscription(rule.name, trigger.arn)
            case SqsTrigger() | OnetimeTrigger():
                return

    def update(self, db: Session, original: RuleRecord, updated: RuleRecord) -> RuleRecord:
        """Move bindings from ``original`` to ``updated`` and return ``updated``."""
        match updated.rule:
            case KinesisTrigger() as trigger:
                changed = (
                    not isinstance(original.rule, KinesisTrigger)
                    or original.rule.value != trigger.value
                    or original.state != updated.state
                )
                if not changed:
                    return updated
                self.remove(db, original)
                cleared = updated.model_copy(update={"rule": trigger.model_copy(update={"arn": None, "log_event_arn": None})})
                return self.add(cleared)
            case SnsTrigger() as trigger:
                enabling = not original.enabled and updated.enabled
                if enabling and trigger.arn:
                    raise ValidationError(
                        "Including rule.arn is not allowed when enabling a disabled rule",
                        {"rule": updated.name},
                    )
                changed = (
                    not isinstance(original.rule, SnsTrigger)
                    or original.rule.value != trigger.value
                    or original.state != updated.state
                )
                if not changed:
                    return updated
                self.remove(db, original)
                return self.add(updated.model_copy(update={"rule": trigger.model_copy(update={"arn": None})}))
            case _:
                if type(original.rule) is not type(updated.rule):
                    self.remove(db, original)
                return self.add(updated)

    # Scheduled

    def _schedule_name(self, rule: RuleRecord) -> str:
        return f"{self.targets.stack_name}-custom-{rule.name}"

    def _put_schedule(self, rule: RuleRecord, trigger: ScheduledTrigger) -> None:
        name = self._schedule_name(rule)
        self.events_client.put_rule(
            Name=name,
            ScheduleExpression=trigger.value,
            State="ENABLED" if rule.enabled else "DISABLED",
        )
        self.events_client.put_targets(
            Rule=name,
            Targets=[
                {
                    "Id": "lambdaTarget",
                    "Arn": self.targets.invoke_target_arn,
                    "Input": json.dumps(build_rule_message(rule)),
                }
            ],
        )

    def _delete_schedule(self, rule: RuleRecord) -> None:
        name = self._schedule_name(rule)
        try:
            self.events_client.remove_targets(Rule=name, Ids=["lambdaTarget"])
            self.events_client.delete_rule(Name=name)
        except ClientError as exc:
            _ignore_missing(exc)

    # Kinesis

    def _ensure_kinesis_mapping(self, stream_arn: str, function_arn: str) -> str:
        existing = self.lambda_client.list_event_source_mappings(
            EventSourceArn=stream_arn,
            FunctionName=function_arn,
        ).get("EventSourceMappings", [])
        if existing:
            mapping = existing[0]
            if mapping.get("State") in {"Enabled", "Enabling"}:
                return mapping["UUID"]
            updated = self.lambda_client.update_event_source_mapping(UUID=mapping["UUID"], Enabled=True)
            return updated["UUID"]
        created = self.lambda_client.create_event_source_mapping(
            EventSourceArn=stream_arn,
            FunctionName=function_arn,
            StartingPosition="TRIM_HORIZON",
            Enabled=True,
        )
        return created["UUID"]

    def _delete_kinesis_mapping(self, uuid: str) -> None:
        try:
            self.lambda_client.delete_event_source_mapping(UUID=uuid)
        except ClientError as exc:
            _ignore_missing(exc)

    # SNS

    def _ensure_sns_subscription(self, rule_name: str, topic_arn: str) -> str:
        kwargs: dict[str, Any] = {"TopicArn": topic_arn}
        while True:
            page = self.sns_client.list_subscriptions_by_topic(**kwargs)
            for subscription in page.get("Subscriptions", []):
                if subscription.get("Endpoint") == self.targets.message_consumer_arn:
                    return subscription["SubscriptionArn"]
            if not page.get("NextToken"):
                break
            kwargs["NextToken"] = page["NextToken"]

        response = self.sns_client.subscribe(
            TopicArn=topic_arn,
            Protocol="lambda",
            Endpoint=self.targets.message_consumer_arn,
            ReturnSubscriptionArn=True,
        )
        self.lambda_client.add_permission(
            Action="lambda:InvokeFunction",
            FunctionName=self.targets.message_consumer_arn,
            Principal="sns.amazonaws.com",
            SourceArn=topic_arn,
            StatementId=f"{rule_name}Permission",
        )
        return response["SubscriptionArn"]

    def _delete_sns_subscription(self, rule_name: str, subscription_arn: str) -> None:
        try:
            self.lambda_client.remove_permission(
                FunctionName=self.targets.message_consumer_arn,
                StatementId=f"{rule_name}Permission",
            )
        except ClientError as exc:
            _ignore_missing(exc)
        self.sns_client.unsubscribe(SubscriptionArn=subscription_arn)

    # SQS

    def _validate_queue(self, queue_url: str, meta: dict[str, Any]) -> dict[str, Any]:
        try:
            attributes = self.sqs_client.get_queue_attributes(
                QueueUrl=queue_url,
                AttributeNames=["All"],
            ).get("Attributes", {})
        except ClientError as exc:
            if error_code(exc) in {"AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist"}:
                raise ValidationError(
                    f"SQS queue {queue_url} does not exist or your account does not have permissions to access it",
                    {"queueUrl": queue_url},
                ) from exc
            raise
        if "RedrivePolicy" not in attributes:
            raise ValidationError(
                f"SQS queue {queue_url} does not have a dead-letter queue configured",
                {"queueUrl": queue_url},
            )
        updated = dict(meta)
        if updated.get("visibilityTimeout") is None:
            updated["visibilityTimeout"] = int(attributes.get("VisibilityTimeout", 30))
        if updated.get("retries") is None:
            updated["retries"] = DEFAULT_SQS_RETRIES
        return updated
