from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError as SchemaError

from ingest_catalog.app.dependencies import Services
from ingest_catalog.app.errors import ConflictError, NotFoundError, ValidationError
from ingest_catalog.app.modules.rules.service import validate_rule_name
from ingest_catalog.app.modules.rules.triggers import RuleRecord
from tests.factories import DEFAULT_QUEUE, INBOUND_LOGGER, MESSAGE_CONSUMER, SCHEDULE_TARGET

STREAM = "arn:aws:kinesis:us-east-1:000000000000:stream/ingest"
TOPIC = "arn:aws:sns:us-east-1:000000000000:ingest-notifications"
QUEUE = "https://sqs.us-east-1.amazonaws.com/000000000000/ingest"


def rule(name: str, trigger: dict[str, Any], state: str = "ENABLED", **extra: Any) -> RuleRecord:
    return RuleRecord.model_validate(
        {"name": name, "workflow": "IngestGranule", "rule": trigger, "state": state, **extra}
    )


def test_rule_name_must_be_word_characters() -> None:
    validate_rule_name("ingest_rule_1")
    with pytest.raises(ValidationError, match="letters, numbers, and underscores"):
        validate_rule_name("ingest-rule")


def test_trigger_variant_is_picked_from_type() -> None:
    record = rule("stream_rule", {"type": "kinesis", "value": STREAM, "logEventArn": "uuid-2"})

    assert record.rule.type == "kinesis"
    assert record.rule.log_event_arn == "uuid-2"
    with pytest.raises(SchemaError):
        rule("bad_rule", {"type": "ftp", "value": "x"})


def test_kinesis_rule_creates_both_mappings(services: Services, db, trigger_clients) -> None:
    created = services.rules.create(db, rule("stream_rule", {"type": "kinesis", "value": STREAM}))

    mappings = trigger_clients["lambda"].mappings
    assert {m["FunctionArn"] for m in mappings.values()} == {MESSAGE_CONSUMER, INBOUND_LOGGER}
    assert created.rule.arn == "mapping-1"
    assert created.rule.log_event_arn == "mapping-2"


def test_kinesis_mapping_is_reused_and_kept_while_shared(services: Services, db, trigger_clients) -> None:
    services.rules.create(db, rule("first_rule", {"type": "kinesis", "value": STREAM}))
    second = services.rules.create(db, rule("second_rule", {"type": "kinesis", "value": STREAM}))

    lambda_client = trigger_clients["lambda"]
    assert len(lambda_client.mappings) == 2
    assert (second.rule.arn, second.rule.log_event_arn) == ("mapping-1", "mapping-2")

    services.rules.delete(db, "first_rule")
    assert len(lambda_client.mappings) == 2

    services.rules.delete(db, "second_rule")
    assert lambda_client.mappings == {}


def test_disabled_kinesis_mapping_is_re_enabled(services: Services, trigger_clients) -> None:
    lambda_client = trigger_clients["lambda"]
    existing = lambda_client.create_event_source_mapping(
        EventSourceArn=STREAM, FunctionName=MESSAGE_CONSUMER, Enabled=False
    )

    bound = services.rule_triggers.add(rule("stream_rule", {"type": "kinesis", "value": STREAM}))

    assert bound.rule.arn == existing["UUID"]
    assert lambda_client.mappings[existing["UUID"]]["State"] == "Enabled"


def test_disabled_kinesis_rule_creates_no_mapping(services: Services, db, trigger_clients) -> None:
    services.rules.create(db, rule("stream_rule", {"type": "kinesis", "value": STREAM}, state="DISABLED"))

    assert trigger_clients["lambda"].mappings == {}


def test_sns_rule_finds_existing_subscription_across_pages(services: Services, trigger_clients) -> None:
    sns = trigger_clients["sns"]
    sns.subscriptions[TOPIC] = [
        {"SubscriptionArn": f"{TOPIC}:other-1", "Endpoint": "arn:aws:lambda:other-1"},
        {"SubscriptionArn": f"{TOPIC}:other-2", "Endpoint": "arn:aws:lambda:other-2"},
        {"SubscriptionArn": f"{TOPIC}:consumer", "Endpoint": MESSAGE_CONSUMER},
    ]

    bound = services.rule_triggers.add(rule("topic_rule", {"type": "sns", "value": TOPIC}))

    assert bound.rule.arn == f"{TOPIC}:consumer"
    assert len(sns.subscriptions[TOPIC]) == 3
    assert trigger_clients["lambda"].permissions == {}


def test_sns_rule_subscribes_and_grants_permission(services: Services, db, trigger_clients) -> None:
    created = services.rules.create(db, rule("topic_rule", {"type": "sns", "value": TOPIC}))

    assert created.rule.arn == f"{TOPIC}:subscription-1"
    permission = trigger_clients["lambda"].permissions["topic_rulePermission"]
    assert permission["SourceArn"] == TOPIC
    assert permission["Principal"] == "sns.amazonaws.com"

    services.rules.delete(db, "topic_rule")
    assert trigger_clients["sns"].unsubscribed == [f"{TOPIC}:subscription-1"]
    assert trigger_clients["lambda"].permissions == {}


def test_enabling_sns_rule_with_arn_is_rejected(services: Services, db) -> None:
    services.rules.create(db, rule("topic_rule", {"type": "sns", "value": TOPIC}, state="DISABLED"))

    with pytest.raises(ValidationError, match="Including rule.arn is not allowed"):
        services.rules.update(
            db,
            "topic_rule",
            rule("topic_rule", {"type": "sns", "value": TOPIC, "arn": f"{TOPIC}:stale"}),
        )


def test_enabling_disabled_sns_rule_subscribes(services: Services, db) -> None:
    services.rules.create(db, rule("topic_rule", {"type": "sns", "value": TOPIC}, state="DISABLED"))

    updated = services.rules.update(db, "topic_rule", rule("topic_rule", {"type": "sns", "value": TOPIC}))

    assert updated.enabled
    assert updated.rule.arn == f"{TOPIC}:subscription-1"


def test_sqs_rule_requires_existing_queue(services: Services, db) -> None:
    with pytest.raises(ValidationError, match="does not exist or your account does not have permissions"):
        services.rules.create(db, rule("queue_rule", {"type": "sqs", "value": QUEUE}))

    assert services.models.rules.count(db) == 0


def test_sqs_rule_requires_dead_letter_queue(services: Services, db, trigger_clients) -> None:
    trigger_clients["sqs"].queues[QUEUE] = {"VisibilityTimeout": "30"}

    with pytest.raises(ValidationError, match="dead-letter queue"):
        services.rules.create(db, rule("queue_rule", {"type": "sqs", "value": QUEUE}))


def test_sqs_rule_fills_meta_defaults(services: Services, db, trigger_clients) -> None:
    trigger_clients["sqs"].queues[QUEUE] = {"VisibilityTimeout": "45", "RedrivePolicy": "{}"}

    created = services.rules.create(db, rule("queue_rule", {"type": "sqs", "value": QUEUE}))
    kept = services.rules.create(
        db, rule("other_queue_rule", {"type": "sqs", "value": QUEUE}, meta={"retries": 1})
    )

    assert created.meta == {"visibilityTimeout": 45, "retries": 3}
    assert kept.meta == {"retries": 1, "visibilityTimeout": 45}


def test_scheduled_rule_puts_and_removes_schedule(services: Services, db, trigger_clients) -> None:
    services.rules.create(db, rule("nightly_rule", {"type": "scheduled", "value": "rate(1 day)"}))

    events = trigger_clients["events"]
    name = f"{services.settings.stack_name}-custom-nightly_rule"
    assert events.rules[name] == {"ScheduleExpression": "rate(1 day)", "State": "ENABLED"}
    (target,) = events.targets[name]
    assert target["Id"] == "lambdaTarget"
    assert target["Arn"] == SCHEDULE_TARGET

    services.rules.delete(db, "nightly_rule")
    assert events.rules == {}
    assert events.targets == {}


def test_onetime_rule_starts_workflow_when_enabled(services: Services, db) -> None:
    services.rules.create(db, rule("once_rule", {"type": "onetime"}, queueUrl=DEFAULT_QUEUE))
    services.rules.create(db, rule("skipped_rule", {"type": "onetime"}, state="DISABLED"))

    (started,) = services.invoker.started
    queue_url, message = started
    assert queue_url == DEFAULT_QUEUE
    assert message["workflow"] == "IngestGranule"
    assert message["meta"]["rule"] == {"name": "once_rule", "type": "onetime"}


def test_binding_shared_ignores_disabled_rules_and_self(services: Services, db) -> None:
    first = services.rules.create(db, rule("first_rule", {"type": "kinesis", "value": STREAM}))
    services.rules.create(db, rule("idle_rule", {"type": "kinesis", "value": STREAM}, state="DISABLED"))

    assert services.rule_triggers.is_binding_shared(db, first) is False

    services.rules.create(db, rule("second_rule", {"type": "kinesis", "value": STREAM}))
    assert services.rule_triggers.is_binding_shared(db, first) is True


def test_rule_create_conflict_and_lookup(services: Services, db) -> None:
    services.rules.create(db, rule("nightly_rule", {"type": "scheduled", "value": "rate(1 day)"}))

    with pytest.raises(ConflictError):
        services.rules.create(db, rule("nightly_rule", {"type": "scheduled", "value": "rate(2 days)"}))
    with pytest.raises(NotFoundError, match="No record found for missing_rule"):
        services.rules.get(db, "missing_rule")


def test_catalog_failure_removes_created_schedule(services: Services, db, trigger_clients, monkeypatch) -> None:
    def boom(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("catalog unavailable")

    monkeypatch.setattr(services.models.rules, "create", boom)

    with pytest.raises(RuntimeError) as excinfo:
        services.rules.create(db, rule("nightly_rule", {"type": "scheduled", "value": "rate(1 day)"}))

    assert excinfo.value.rolled_back_steps == ("triggers",)
    assert trigger_clients["events"].rules == {}


def test_rule_with_unknown_collection_binds_nothing(services: Services, db, trigger_clients) -> None:
    with pytest.raises(ValidationError, match="does not exist"):
        services.rules.create(
            db,
            rule(
                "nightly_rule",
                {"type": "scheduled", "value": "rate(1 day)"},
                collection={"name": "MISSING", "version": "001"},
            ),
        )

    assert trigger_clients["events"].rules == {}
