"""Inbound issue event gate: accept/reject plus work item extraction."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ci_fanout.github.front_matter import (
    DEFAULT_PARSERS,
    FrontMatterError,
    FrontMatterParser,
    extract_front_matter,
    parse_front_matter,
)
from ci_fanout.models.pipeline_contracts import RunContext

logger = logging.getLogger(__name__)

ACCEPTED_ACTIONS = {"opened", "labeled", "edited", "reopened"}
WORK_ITEMS_KEY = "integrations"
EXPECTED_FORMAT = "---\nintegrations:\n  - integration1\n  - integration2\n---"


class PayloadError(ValueError):
    """The inbound payload is malformed or misses required fields."""


class EventKind(str, Enum):
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TriggerEvent:
    kind: EventKind
    action: str
    issue_number: int | None
    issue_url: str
    repository_full_name: str
    labels: frozenset[str]
    raw_body: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TriggerEvent":
        if "issue" in payload:
            kind = EventKind.ISSUE
        elif "pull_request" in payload:
            kind = EventKind.PULL_REQUEST
        else:
            kind = EventKind.UNKNOWN

        issue = payload.get("issue") if isinstance(payload.get("issue"), dict) else {}
        repository = (
            payload.get("repository") if isinstance(payload.get("repository"), dict) else {}
        )
        raw_labels = issue.get("labels")
        if raw_labels is None:
            raw_labels = []
        elif not isinstance(raw_labels, list):
            raise PayloadError("issue.labels must be a list")
        labels = frozenset(
            str(label.get("name", "")).strip()
            for label in raw_labels
            if isinstance(label, dict) and str(label.get("name", "")).strip()
        )
        number = issue.get("number")
        return cls(
            kind=kind,
            action=str(payload.get("action") or ""),
            issue_number=number if isinstance(number, int) and not isinstance(number, bool) else None,
            issue_url=str(issue.get("html_url") or ""),
            repository_full_name=str(repository.get("full_name") or ""),
            labels=labels,
            raw_body=str(issue.get("body") or ""),
        )


@dataclass(frozen=True)
class GateAccept:
    event: TriggerEvent
    work_items: tuple[str, ...]
    context: RunContext
    dialect: str

    accepted = True


@dataclass(frozen=True)
class GateReject:
    reason: str

    accepted = False


GateDecision = GateAccept | GateReject


def load_payload(raw_payload: str | bytes | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw_payload, dict):
        return raw_payload
    try:
        payload = json.loads(raw_payload)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"trigger payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise PayloadError("trigger payload must be a JSON object")
    return payload


def evaluate(
    raw_payload: str | bytes | dict[str, Any],
    required_label: str,
    parsers: tuple[FrontMatterParser, ...] = DEFAULT_PARSERS,
) -> GateDecision:
    """Decide whether an inbound event should fan out, and over which items."""
    event = TriggerEvent.from_payload(load_payload(raw_payload))

    if event.kind is not EventKind.ISSUE:
        return GateReject(f"Ignoring non-issues event: {event.kind.value}")
    if event.action not in ACCEPTED_ACTIONS:
        return GateReject(f"Ignoring issues.{event.action or '<none>'}")
    if required_label and required_label not in event.labels:
        return GateReject(f"No {required_label} label, exiting.")

    if event.issue_number is None:
        raise PayloadError("issue.number must be an integer")
    if "/" not in event.repository_full_name:
        raise PayloadError("repository.full_name must be in owner/name form")

    block = extract_front_matter(event.raw_body)
    if block is None:
        return GateReject("No YAML front-matter found in issue body; exiting.")

    try:
        document, dialect = parse_front_matter(block, parsers)
    except FrontMatterError as exc:
        return GateReject(f"Front matter could not be parsed ({exc}); expected:\n{EXPECTED_FORMAT}")

    work_items = _work_items(document.get(WORK_ITEMS_KEY))
    if not work_items:
        return GateReject(
            f"Front matter must define a non-empty '{WORK_ITEMS_KEY}' sequence; "
            f"expected:\n{EXPECTED_FORMAT}"
        )

    context = RunContext(
        issue_number=event.issue_number,
        issue_url=event.issue_url,
        repository_full_name=event.repository_full_name,
    )
    logger.debug("Accepted issue #%s with %d work items", event.issue_number, len(work_items))
    return GateAccept(event=event, work_items=work_items, context=context, dialect=dialect)


def synthesize_issue_payload(
    *,
    issue_number: int,
    issue_url: str,
    repository_full_name: str,
    body: str,
    action: str,
    label: str,
) -> dict[str, Any]:
    """Build the webhook-shaped payload for runs triggered outside a webhook."""
    return {
        "action": action,
        "issue": {
            "number": issue_number,
            "html_url": issue_url,
            "body": body,
            "labels": [{"name": label}] if label else [],
        },
        "repository": {"full_name": repository_full_name},
    }


def _work_items(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    items: list[str] = []
    for raw in value:
        if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
            return ()
        item = str(raw).strip()
        if not item:
            return ()
        items.append(item)
    return tuple(items)
