#!/usr/bin/env python3
"""wfaudit - GitHub Actions fleet cost & efficiency auditor.

Collects recent workflow run statistics across many repositories, breaks
them down by trigger, and statically analyzes workflow files for cost
anti-patterns (unthrottled triggers, expensive runners, missing timeouts,
missing caches...). Detection only: nothing is blocked or rewritten.
"""

from __future__ import annotations

import argparse
import base64
import concurrent.futures
import csv
import json
import logging
import os
import re
import sys
import time
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

import requests
import yaml
from dotenv import load_dotenv


__version__ = "1.0.0"

logger = logging.getLogger(__name__)


# ── Errors ────────────────────────────────────────────────────────────

class AuditError(Exception):
    """Base class for wfaudit errors."""


class FetchError(AuditError):
    """The hosting API could not deliver one item (repo, run list, file)."""


class ParseError(AuditError):
    """Workflow text is not well-formed YAML."""


# ── Severity ──────────────────────────────────────────────────────────

class Severity(Enum):
    WARNING = "warning"  # Likely waste on every run
    INFO = "info"        # Suggestion / limited impact


# ── Finding ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Finding:
    rule: str
    severity: Severity
    message: str
    file: str = ""
    repository: str = ""
    job: str = ""
    tag: str = ""
    fix: str = ""

    @property
    def scope(self) -> str:
        """'on all' or 'limited', only meaningful for EXPENSIVE_RUNNER."""
        return "on all" if self.severity is Severity.WARNING else "limited"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["severity"] = self.severity.value
        return d


# ── Document Model ────────────────────────────────────────────────────

_BLOCK_INDICATORS = ("|", ">", "|-", ">-", "|+", ">+")
_KEY_RE = re.compile(r"^(?P<key>[^\s#:\-'\"][^:]*?|\"[^\"]*\"|'[^']*')\s*:(?:\s+(?P<value>.*))?$")


def _parse_yaml_line(line: str) -> tuple[int, str]:
    """Return (indent_level, content) for a YAML line."""
    stripped = line.lstrip()
    indent = len(line) - len(stripped)
    return indent, stripped.rstrip()


def _scalar(text: str) -> Any:
    """Load a single inline value, keeping the raw text when YAML rejects it."""
    try:
        value = yaml.safe_load(text)
        # "echo a: b" is a command, not a nested mapping
        if isinstance(value, dict) and not text.startswith("{"):
            return text
        return value
    except (yaml.YAMLError, RecursionError):
        if " #" in text:
            text = text[:text.index(" #")].rstrip()
        if len(text) > 1 and text[0] in ('"', "'") and text[-1] == text[0]:
            text = text[1:-1]
        return text


@dataclass
class _Frame:
    indent: int
    container: Any
    parent: Any = None
    key: Any = None

    def materialize(self, kind: type) -> Any:
        if self.container is None:
            self.container = kind()
            self.parent[self.key] = self.container
        return self.container


def _parse_outline(text: str) -> dict[str, Any]:
    """Parse workflow text by indentation when a strict YAML load fails.

    Recovers nested mappings, sequences, block scalars and inline values.
    Lines that cannot be placed in the structure are skipped, so a broken
    section costs only that section.
    """
    root: dict[str, Any] = {}
    stack = [_Frame(-1, root)]
    lines = text.split("\n")

    i = 0
    while i < len(lines):
        indent, content = _parse_yaml_line(lines[i])
        i += 1

        if not content or content.startswith("#") or content.startswith(("---", "...")):
            continue

        is_item = content == "-" or content.startswith("- ")
        while len(stack) > 1:
            top = stack[-1]
            if indent > top.indent:
                break
            if is_item and indent == top.indent and not isinstance(top.container, dict):
                break
            stack.pop()

        container = stack[-1].materialize(list if is_item else dict)

        if is_item:
            if not isinstance(container, list):
                logger.debug("outline: skipping misplaced list item on line %d", i)
                continue
            rest = content[1:].strip()
            match = _KEY_RE.match(rest) if rest else None
            if not rest:
                container.append(None)
                stack.append(_Frame(indent, None, container, len(container) - 1))
                continue
            if not match:
                container.append(_scalar(rest))
                continue
            item: dict[str, Any] = {}
            container.append(item)
            stack.append(_Frame(indent, item))
            # Keys of the item dict sit two columns right of the dash
            indent, container, content = indent + 2, item, rest
        elif not isinstance(container, dict):
            logger.debug("outline: skipping misplaced mapping key on line %d", i)
            continue

        match = _KEY_RE.match(content)
        if not match:
            logger.debug("outline: skipping unparseable line %d", i)
            continue

        key = match.group("key").strip().strip("'\"")
        value = (match.group("value") or "").strip()

        if value in _BLOCK_INDICATORS:
            block: list[str] = []
            while i < len(lines):
                bi, bc = _parse_yaml_line(lines[i])
                if bc and bi <= indent:
                    break
                block.append(lines[i])
                i += 1
            margin = min((len(b) - len(b.lstrip()) for b in block if b.strip()), default=0)
            container[key] = "\n".join(b[margin:] for b in block).strip("\n")
        elif value and not value.startswith("#"):
            container[key] = _scalar(value)
        else:
            container[key] = None
            stack.append(_Frame(indent, None, container, key))

    return root


def _load_mapping(text: str) -> dict[str, Any]:
    """Strict YAML load. Raises ParseError on malformed input."""
    try:
        data = yaml.safe_load(text)
    except (yaml.YAMLError, RecursionError) as e:
        raise ParseError(str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError(f"top level is {type(data).__name__}, not a mapping")
    return data


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


def _mapping(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


@dataclass
class TriggerFilters:
    branches: list[str] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    paths_ignore: list[str] = field(default_factory=list)
    event_types: list[str] = field(default_factory=list)


@dataclass
class Trigger:
    """One entry under ``on:``. List fields are None when the key is absent."""
    kind: str
    branches: list[str] | None = None
    branches_ignore: list[str] | None = None
    paths: list[str] | None = None
    paths_ignore: list[str] | None = None
    tags: list[str] | None = None
    types: list[str] | None = None
    crons: list[str] = field(default_factory=list)

    @classmethod
    def from_value(cls, kind: str, value: Any) -> "Trigger":
        trig = cls(kind=kind)
        if kind == "schedule":
            for entry in value if isinstance(value, list) else [value]:
                cron = _mapping(entry).get("cron")
                if cron is not None:
                    trig.crons.append(str(cron))
            return trig

        spec = _mapping(value)
        for attr, key in (("branches", "branches"), ("branches_ignore", "branches-ignore"),
                          ("paths", "paths"), ("paths_ignore", "paths-ignore"),
                          ("tags", "tags"), ("types", "types")):
            if key in spec:
                setattr(trig, attr, _str_list(spec[key]))
        return trig


@dataclass
class Concurrency:
    group: str = ""
    cancel_in_progress: Any = None

    @classmethod
    def from_value(cls, value: Any) -> "Concurrency | None":
        if value is None:
            return None
        if isinstance(value, dict):
            group = value.get("group")
            return cls(group="" if group is None else str(group),
                       cancel_in_progress=value.get("cancel-in-progress"))
        return cls(group=str(value))


@dataclass
class StepSpec:
    """A single step in a job."""
    uses: str = ""
    run: str = ""
    name: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def action_ref(self) -> str:
        return self.uses

    @property
    def action_name(self) -> str:
        """Action reference without the ``@version`` suffix, lowercased."""
        return self.uses.split("@")[0].strip().lower()

    @property
    def action_version(self) -> str:
        return self.uses.split("@", 1)[1].strip() if "@" in self.uses else ""

    @classmethod
    def from_value(cls, value: Any) -> "StepSpec | None":
        if not isinstance(value, dict):
            return None
        return cls(
            uses="" if value.get("uses") is None else str(value.get("uses")),
            run="" if value.get("run") is None else str(value.get("run")),
            name="" if value.get("name") is None else str(value.get("name")),
            params=dict(_mapping(value.get("with"))),
        )


@dataclass
class JobSpec:
    """A single job in a workflow."""
    key: str
    runs_on: Any = None
    timeout: Any = None
    condition: str = ""
    matrix: Any = None
    # bool, an expression string, or None when unset
    fail_fast: bool | str | None = None
    uses: str = ""
    concurrency: Concurrency | None = None
    steps: list[StepSpec] = field(default_factory=list)

    @property
    def has_timeout(self) -> bool:
        return self.timeout is not None

    @property
    def timeout_minutes(self) -> int | None:
        try:
            return int(self.timeout)
        except (TypeError, ValueError):
            return None

    @property
    def has_matrix(self) -> bool:
        return self.matrix is not None

    @property
    def matrix_dimensions(self) -> dict[str, list] | None:
        """Matrix axes (include/exclude are not axes); None without a matrix.

        A matrix given as an expression (``${{ fromJson(...) }}``) has no
        visible axes and yields an empty mapping.
        """
        if self.matrix is None:
            return None
        if not isinstance(self.matrix, dict):
            return {}
        return {k: v if isinstance(v, list) else [v]
                for k, v in self.matrix.items() if k not in ("include", "exclude")}

    def runner_labels(self, resolve_matrix: bool = True) -> list[str]:
        """Runner labels; ``${{ matrix.X }}`` expands to the values of axis X."""
        runs_on = self.runs_on
        if isinstance(runs_on, dict):
            runs_on = [runs_on.get("group"), *_str_list(runs_on.get("labels"))]
        labels = [lbl for lbl in _str_list(runs_on) if lbl]
        if not resolve_matrix or not isinstance(self.matrix, dict):
            return labels

        resolved: list[str] = []
        for label in labels:
            ref = re.search(r"\$\{\{\s*matrix\.([\w-]+)\s*\}\}", label)
            if not ref:
                resolved.append(label)
                continue
            axis = ref.group(1)
            values = _str_list(self.matrix.get(axis))
            for extra in _dict_entries(self.matrix.get("include")):
                if axis in extra:
                    values.append(str(extra[axis]))
            resolved.extend(values or [label])
        return resolved

    @classmethod
    def from_value(cls, key: str, value: Any) -> "JobSpec":
        spec = _mapping(value)
        strategy = _mapping(spec.get("strategy"))
        raw_steps = spec.get("steps")
        steps = [StepSpec.from_value(s) for s in raw_steps] if isinstance(raw_steps, list) else []
        return cls(
            key=str(key),
            runs_on=spec.get("runs-on"),
            timeout=spec.get("timeout-minutes"),
            condition="" if spec.get("if") is None else str(spec.get("if")),
            matrix=strategy.get("matrix"),
            fail_fast=strategy.get("fail-fast"),
            uses="" if spec.get("uses") is None else str(spec.get("uses")),
            concurrency=Concurrency.from_value(spec.get("concurrency")),
            steps=[s for s in steps if s is not None],
        )


def _dict_entries(value: Any) -> list[dict]:
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


@dataclass
class PipelineDocument:
    """Parsed workflow structure."""
    name: str = ""
    triggers: dict[str, Trigger] = field(default_factory=dict)
    concurrency: Concurrency | None = None
    jobs: list[JobSpec] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)
    text: str = ""
    degraded: bool = False

    def has_trigger(self, kind: str) -> bool:
        return kind in self.triggers

    def trigger(self, kind: str) -> Trigger | None:
        return self.triggers.get(kind)

    def trigger_filters(self, kind: str) -> TriggerFilters:
        trig = self.triggers.get(kind)
        if trig is None:
            return TriggerFilters()
        return TriggerFilters(
            branches=list(trig.branches or []),
            paths=list(trig.paths or []),
            paths_ignore=list(trig.paths_ignore or []),
            event_types=list(trig.types or []),
        )

    def has_concurrency_group(self) -> bool:
        """True for a workflow-level group, or when every job declares one."""
        if self.concurrency is not None and self.concurrency.group:
            return True
        return bool(self.jobs) and all(j.concurrency and j.concurrency.group for j in self.jobs)

    def steps(self) -> Iterable[tuple[JobSpec, StepSpec]]:
        for job in self.jobs:
            for step in job.steps:
                yield job, step

    def mentions_key(self, key: str) -> bool:
        """Whether ``key`` appears as a mapping key anywhere in the document."""
        return _contains_key(self.raw, key)


def _contains_key(node: Any, key: str) -> bool:
    if isinstance(node, dict):
        return key in node or any(_contains_key(v, key) for v in node.values())
    if isinstance(node, list):
        return any(_contains_key(v, key) for v in node)
    return False


def _normalize_triggers(on_field: Any) -> dict[str, Trigger]:
    if isinstance(on_field, str):
        return {on_field: Trigger(kind=on_field)}
    if isinstance(on_field, list):
        return {str(t): Trigger(kind=str(t)) for t in on_field if t is not None}
    if isinstance(on_field, dict):
        return {str(k): Trigger.from_value(str(k), v) for k, v in on_field.items()}
    return {}


def build_document(data: dict[str, Any], text: str = "", degraded: bool = False) -> PipelineDocument:
    """Build a PipelineDocument from an already-loaded mapping."""
    # YAML 1.1 loads a bare ``on`` key as boolean True
    on_field = data.get("on", data.get(True))
    jobs = _mapping(data.get("jobs"))
    return PipelineDocument(
        name="" if data.get("name") is None else str(data.get("name")),
        triggers=_normalize_triggers(on_field),
        concurrency=Concurrency.from_value(data.get("concurrency")),
        jobs=[JobSpec.from_value(k, v) for k, v in jobs.items()],
        raw=data,
        text=text,
        degraded=degraded,
    )


def parse_workflow(text: str) -> PipelineDocument:
    """Parse a workflow file. Never raises; malformed input degrades."""
    try:
        return build_document(_load_mapping(text), text)
    except ParseError as e:
        logger.debug("strict YAML load failed (%s); using outline parser", e)
    try:
        return build_document(_parse_outline(text), text, degraded=True)
    except Exception as e:
        logger.warning("Outline parse failed (%s); analyzing an empty document", e)
        return build_document({}, text, degraded=True)


# ── Rule Registry ─────────────────────────────────────────────────────

Check = Callable[[PipelineDocument], list[Finding]]


@dataclass
class Rule:
    id: str
    severity: Severity
    description: str
    check: Check


RULES: dict[str, Rule] = {}


def rule(id: str, severity: Severity, description: str) -> Callable[[Check], Check]:
    """Decorator registering a check function under ``id``."""
    def decorator(fn: Check) -> Check:
        RULES[id] = Rule(id=id, severity=severity, description=description, check=fn)
        return fn
    return decorator


# ── Analysis Engine ───────────────────────────────────────────────────

def evaluate(doc: PipelineDocument, file_name: str, repository: str = "",
             ignore: set[str] | None = None) -> list[Finding]:
    """Run all registered rules on ``doc``, in registration order.

    A rule that raises contributes no findings; the error is logged and the
    remaining rules still run.
    """
    findings: list[Finding] = []
    ignore = ignore or set()

    for rule_id, r in RULES.items():
        if rule_id in ignore:
            continue
        t0 = time.monotonic()
        try:
            produced = r.check(doc)
        except Exception:
            logger.warning("Rule %s failed on %s%s; skipped", rule_id,
                           f"{repository}/" if repository else "", file_name, exc_info=True)
            continue
        logger.debug("Rule %s: %d finding(s) in %.1fms", rule_id, len(produced),
                     (time.monotonic() - t0) * 1000)
        findings.extend(replace(f, file=file_name, repository=repository) for f in produced)

    return findings


# ── Individual Checks ─────────────────────────────────────────────────

MAIN_BRANCHES = ("main", "master")

INSTALL_PATTERNS = [
    (re.compile(r"\bpip3? install\b"), "pip"),
    (re.compile(r"\bpoetry install\b"), "poetry"),
    (re.compile(r"\bnpm (?:install|ci|i)\b"), "npm"),
    (re.compile(r"\byarn(?: install)?\s*(?:$|--)", re.MULTILINE), "yarn"),
    (re.compile(r"\bpnpm install\b"), "pnpm"),
    (re.compile(r"\bbundle install\b"), "bundler"),
    (re.compile(r"\bcomposer install\b"), "composer"),
    (re.compile(r"\bgo mod download\b"), "go"),
    (re.compile(r"\bcargo (?:build|fetch)\b"), "cargo"),
    (re.compile(r"\bmvn\b.*\b(?:install|package|verify)\b"), "maven"),
    (re.compile(r"\bgradlew?\b.*\b(?:build|assemble)\b"), "gradle"),
]

FREQUENT_MINUTE_RE = re.compile(r"^\*(?:/0*[1-9])?$")
OLD_CHECKOUT_RE = re.compile(r"^v?[12](?:\.|$)")
DEFAULT_BRANCH_RE = re.compile(
    r"refs/heads/(?:main|master)\b|\bdefault_branch\b|['\"](?:main|master)['\"]|['\"]schedule['\"]")

RUNNER_FAMILIES = [
    ("MACOS_10X", "macOS", re.compile(r"\bmacos\b|^macos-", re.IGNORECASE)),
    ("WINDOWS_2X", "Windows", re.compile(r"windows", re.IGNORECASE)),
]


def _jobs_list(jobs: list[JobSpec]) -> str:
    return ", ".join(f"'{j.key}'" for j in jobs)


@rule("PUSH_ALL_BRANCHES", Severity.WARNING,
      "push trigger without branch or path filters runs on every push to every branch")
def check_push_all_branches(doc: PipelineDocument) -> list[Finding]:
    trig = doc.trigger("push")
    if trig is None or trig.branches is not None or trig.paths is not None or trig.paths_ignore is not None:
        return []
    return [Finding(
        rule="PUSH_ALL_BRANCHES",
        severity=Severity.WARNING,
        message="'push' trigger has no branches, paths or paths-ignore filter; runs on every push to every branch",
        fix="Restrict with 'branches: [main]' and/or 'paths:' / 'paths-ignore:'",
    )]


@rule("NO_CONCURRENCY", Severity.INFO,
      "push/pull_request workflow without a concurrency group")
def check_no_concurrency(doc: PipelineDocument) -> list[Finding]:
    if not (doc.has_trigger("push") or doc.has_trigger("pull_request")):
        return []
    if doc.has_concurrency_group():
        return []
    return [Finding(
        rule="NO_CONCURRENCY",
        severity=Severity.INFO,
        message="Workflow has push/pull_request triggers but no concurrency group; superseded runs keep billing",
        fix="Add 'concurrency: { group: ${{ github.workflow }}-${{ github.ref }}, cancel-in-progress: true }'",
    )]


@rule("MATRIX_NO_FAILFAST", Severity.INFO,
      "matrix strategy without an explicit fail-fast setting")
def check_matrix_no_failfast(doc: PipelineDocument) -> list[Finding]:
    jobs = [j for j in doc.jobs if j.has_matrix and j.fail_fast is None]
    if not jobs:
        return []
    return [Finding(
        rule="MATRIX_NO_FAILFAST",
        severity=Severity.INFO,
        message=f"Matrix without explicit fail-fast in job(s) {_jobs_list(jobs)}",
        job=jobs[0].key,
        fix="Set 'strategy.fail-fast' explicitly so the cost of a failing combination is a conscious choice",
    )]


@rule("LARGE_MATRIX", Severity.WARNING,
      "matrix with more than two dimensions multiplies runner minutes")
def check_large_matrix(doc: PipelineDocument) -> list[Finding]:
    jobs = [j for j in doc.jobs if len(j.matrix_dimensions or {}) > 2]
    if not jobs:
        return []
    detail = "; ".join(f"'{j.key}': {', '.join(map(str, j.matrix_dimensions))}" for j in jobs)
    return [Finding(
        rule="LARGE_MATRIX",
        severity=Severity.WARNING,
        message=f"Matrix with more than 2 dimensions ({detail})",
        job=jobs[0].key,
        fix="Drop an axis or use 'include:' to run only the combinations that matter",
    )]


@rule("FREQUENT_SCHEDULE", Severity.WARNING,
      "schedule cron fires every minute or every few minutes")
def check_frequent_schedule(doc: PipelineDocument) -> list[Finding]:
    trig = doc.trigger("schedule")
    if trig is None:
        return []
    crons = [c for c in trig.crons if c.split() and FREQUENT_MINUTE_RE.match(c.split()[0])]
    if not crons:
        return []
    return [Finding(
        rule="FREQUENT_SCHEDULE",
        severity=Severity.WARNING,
        message=f"Schedule fires every few minutes: {', '.join(repr(c) for c in crons)}",
        fix="Run scheduled workflows hourly or daily unless they truly need minute-level freshness",
    )]


@rule("NO_TIMEOUT", Severity.INFO,
      "job without timeout-minutes can run (and bill) for up to 6 hours")
def check_no_timeout(doc: PipelineDocument) -> list[Finding]:
    # Jobs calling a reusable workflow cannot declare timeout-minutes
    jobs = [j for j in doc.jobs if not j.has_timeout and not j.uses]
    if not jobs:
        return []
    return [Finding(
        rule="NO_TIMEOUT",
        severity=Severity.INFO,
        message=f"No timeout-minutes on job(s) {_jobs_list(jobs)}",
        job=jobs[0].key,
        fix="Add 'timeout-minutes: 30' (or appropriate value) to prevent runaway jobs",
    )]


@rule("ARTIFACT_NO_RETENTION", Severity.INFO,
      "artifact upload without retention-days keeps artifacts for the repository default")
def check_artifact_no_retention(doc: PipelineDocument) -> list[Finding]:
    uploads = [(j, s) for j, s in doc.steps() if s.action_name.endswith("/upload-artifact")]
    if not uploads or doc.mentions_key("retention-days"):
        return []
    return [Finding(
        rule="ARTIFACT_NO_RETENTION",
        severity=Severity.INFO,
        message="upload-artifact used without retention-days; storage is billed for the default retention period",
        job=uploads[0][0].key,
        fix="Add 'retention-days: 7' (or appropriate value) to upload-artifact steps",
    )]


@rule("OLD_CHECKOUT", Severity.INFO,
      "actions/checkout pinned to v1 or v2")
def check_old_checkout(doc: PipelineDocument) -> list[Finding]:
    old = [(j, s) for j, s in doc.steps()
           if s.action_name == "actions/checkout" and OLD_CHECKOUT_RE.match(s.action_version)]
    if not old:
        return []
    versions = sorted({s.action_version for _, s in old})
    return [Finding(
        rule="OLD_CHECKOUT",
        severity=Severity.INFO,
        message=f"actions/checkout pinned to an old major version ({', '.join(versions)})",
        job=old[0][0].key,
        fix="Upgrade to actions/checkout@v4",
    )]


def _has_cache(doc: PipelineDocument) -> bool:
    for _, step in doc.steps():
        # setup-go caches modules unless told otherwise
        if "cache" in step.action_name or step.action_name == "actions/setup-go":
            return True
        if any(k == "cache" or k.endswith("-cache") for k in step.params):
            return True
    return False


@rule("NO_CACHE", Severity.INFO,
      "dependency install without any caching step or action")
def check_no_cache(doc: PipelineDocument) -> list[Finding]:
    managers: list[str] = []
    first_job = ""
    for job, step in doc.steps():
        text = "\n".join([step.run, *(str(v) for v in step.params.values())])
        for pattern, pkg in INSTALL_PATTERNS:
            if pattern.search(text):
                if pkg not in managers:
                    managers.append(pkg)
                first_job = first_job or job.key
                break
    if not managers or _has_cache(doc):
        return []
    return [Finding(
        rule="NO_CACHE",
        severity=Severity.INFO,
        message=f"Dependencies installed without caching ({', '.join(managers)})",
        job=first_job,
        fix="Use actions/cache or the 'cache:' input of the matching actions/setup-* action",
    )]


@rule("PR_ALL_EVENTS", Severity.INFO,
      "pull_request trigger without an explicit types list")
def check_pr_all_events(doc: PipelineDocument) -> list[Finding]:
    trig = doc.trigger("pull_request")
    if trig is None or trig.types is not None:
        return []
    return [Finding(
        rule="PR_ALL_EVENTS",
        severity=Severity.INFO,
        message="'pull_request' trigger has no 'types' list; runs on opened, synchronize and reopened",
        fix="Declare 'types: [opened, synchronize]' (or the events you need)",
    )]


def _push_restricted(doc: PipelineDocument) -> bool:
    trig = doc.trigger("push")
    return bool(trig and trig.branches and any(b in MAIN_BRANCHES for b in trig.branches))


def _job_restricted(job: JobSpec) -> bool:
    return bool(job.condition and DEFAULT_BRANCH_RE.search(job.condition))


def _runs_on_all(doc: PipelineDocument, job: JobSpec) -> bool:
    if _job_restricted(job):
        return False
    if doc.has_trigger("push") and not _push_restricted(doc):
        return True
    return doc.has_trigger("pull_request")


@rule("EXPENSIVE_RUNNER", Severity.WARNING,
      "macOS (10x) or Windows (2x) runners outside protected branches")
def check_expensive_runner(doc: PipelineDocument) -> list[Finding]:
    findings = []
    # Self-hosted machines are not billed per minute
    hosted = [j for j in doc.jobs if "self-hosted" not in j.runner_labels(resolve_matrix=False)]
    for tag, family, pattern in RUNNER_FAMILIES:
        jobs = [j for j in hosted if any(pattern.search(lbl) for lbl in j.runner_labels())]
        if not jobs:
            continue
        on_all = [j for j in jobs if _runs_on_all(doc, j)]
        if on_all:
            findings.append(Finding(
                rule="EXPENSIVE_RUNNER",
                severity=Severity.WARNING,
                message=f"{tag}: {family} runner on all branches/PRs in job(s) {_jobs_list(on_all)}",
                job=on_all[0].key,
                tag=tag,
                fix="Limit expensive runners to main (push branches filter) or gate the job with an 'if:' on the default branch",
            ))
        else:
            findings.append(Finding(
                rule="EXPENSIVE_RUNNER",
                severity=Severity.INFO,
                message=f"{tag}: {family} runner limited to protected branch in job(s) {_jobs_list(jobs)}",
                job=jobs[0].key,
                tag=tag,
            ))
    return findings


# ── Run Statistics ────────────────────────────────────────────────────

TRIGGER_BUCKETS = ("push", "pull_request", "schedule", "workflow_dispatch")


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 API timestamp (``2024-05-01T12:00:00Z``)."""
    return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


@dataclass(frozen=True)
class RunRecord:
    repository: str
    workflow: str
    created_at: datetime
    status: str
    conclusion: str | None
    event: str

    @classmethod
    def from_api(cls, repository: str, payload: dict) -> "RunRecord":
        return cls(
            repository=repository,
            workflow=str(payload.get("name") or payload.get("path") or "?"),
            created_at=parse_timestamp(payload["created_at"]),
            status=str(payload.get("status") or ""),
            conclusion=payload.get("conclusion"),
            event=str(payload.get("event") or ""),
        )


@dataclass
class WorkflowStats:
    repository: str
    workflow: str
    window_start: datetime
    window_end: datetime
    total: int = 0
    failed: int = 0
    cancelled: int = 0
    trigger_counts: dict[str, int] = field(
        default_factory=lambda: {b: 0 for b in (*TRIGGER_BUCKETS, "other")})

    @property
    def push(self) -> int:
        return self.trigger_counts["push"]

    @property
    def pull_request(self) -> int:
        return self.trigger_counts["pull_request"]

    @property
    def schedule(self) -> int:
        return self.trigger_counts["schedule"]

    @property
    def workflow_dispatch(self) -> int:
        return self.trigger_counts["workflow_dispatch"]

    @property
    def other(self) -> int:
        return self.trigger_counts["other"]

    @property
    def push_fraction(self) -> float:
        return self.push / self.total if self.total else 0.0

    @property
    def failure_fraction(self) -> float:
        return self.failed / self.total if self.total else 0.0

    @property
    def cancellation_fraction(self) -> float:
        return self.cancelled / self.total if self.total else 0.0

    def add(self, record: RunRecord) -> None:
        self.total += 1
        if record.conclusion == "failure":
            self.failed += 1
        elif record.conclusion == "cancelled":
            self.cancelled += 1
        bucket = record.event if record.event in TRIGGER_BUCKETS else "other"
        self.trigger_counts[bucket] += 1

    def to_row(self) -> dict:
        return {"repository": self.repository, "workflow": self.workflow,
                "total": self.total, "failed": self.failed, "cancelled": self.cancelled,
                **self.trigger_counts}


def aggregate(records: Iterable[RunRecord], window_days: int, now: datetime) -> list[WorkflowStats]:
    """Group records inside the trailing window by (repository, workflow)."""
    now = _as_utc(now)
    start = now - timedelta(days=window_days)
    groups: dict[tuple[str, str], WorkflowStats] = {}

    for rec in records:
        if _as_utc(rec.created_at) <= start:
            continue
        key = (rec.repository, rec.workflow)
        stats = groups.get(key)
        if stats is None:
            stats = groups[key] = WorkflowStats(rec.repository, rec.workflow, start, now)
        stats.add(rec)

    return list(groups.values())


# ── Report Sections ───────────────────────────────────────────────────

PUSH_DOMINANT_FRACTION = 0.7
PUSH_DOMINANT_MIN_RUNS = 10
HIGH_FAILURE_FRACTION = 0.3
HIGH_CANCEL_FRACTION = 0.2
RATE_MIN_RUNS = 5
SCHEDULE_THRESHOLD = 20

STATS_COLUMNS = ("repository", "workflow", "total", "failed", "cancelled",
                 *TRIGGER_BUCKETS, "other")
FINDING_COLUMNS = ("repository", "file", "rule", "severity", "message")


def top_by_total(stats: list[WorkflowStats], n: int = 10) -> list[WorkflowStats]:
    return sorted(stats, key=lambda s: s.total, reverse=True)[:n]


def schedule_heavy(stats: list[WorkflowStats], threshold: int = SCHEDULE_THRESHOLD) -> list[WorkflowStats]:
    return sorted((s for s in stats if s.schedule > threshold),
                  key=lambda s: s.schedule, reverse=True)


def push_dominant(stats: list[WorkflowStats], fraction: float = PUSH_DOMINANT_FRACTION,
                  min_runs: int = PUSH_DOMINANT_MIN_RUNS) -> list[WorkflowStats]:
    return sorted((s for s in stats if s.total >= min_runs and s.push_fraction > fraction),
                  key=lambda s: s.push_fraction, reverse=True)


def high_failure(stats: list[WorkflowStats], fraction: float = HIGH_FAILURE_FRACTION,
                 min_runs: int = RATE_MIN_RUNS) -> list[WorkflowStats]:
    return sorted((s for s in stats if s.total >= min_runs and s.failure_fraction > fraction),
                  key=lambda s: s.failure_fraction, reverse=True)


def high_cancellation(stats: list[WorkflowStats], fraction: float = HIGH_CANCEL_FRACTION,
                      min_runs: int = RATE_MIN_RUNS) -> list[WorkflowStats]:
    return sorted((s for s in stats if s.total >= min_runs and s.cancellation_fraction > fraction),
                  key=lambda s: s.cancellation_fraction, reverse=True)


def finding_counts(findings: list[Finding]) -> list[tuple[str, int]]:
    """Per-rule counts, EXPENSIVE_RUNNER split by scope, largest first."""
    counts: dict[str, int] = {}
    for f in findings:
        label = f"{f.rule} ({f.scope})" if f.rule == "EXPENSIVE_RUNNER" else f.rule
        counts[label] = counts.get(label, 0) + 1
    return sorted(counts.items(), key=lambda kv: kv[1], reverse=True)


@dataclass
class AuditReport:
    stats: list[WorkflowStats] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    repositories: int = 0
    skipped_repositories: int = 0
    incomplete_repositories: int = 0
    skipped_files: int = 0
    degraded_files: int = 0
    failed_files: int = 0
    partial: bool = False
    diagnostics: list[str] = field(default_factory=list)


# ── Output Formatting ─────────────────────────────────────────────────

SEVERITY_SYMBOLS = {
    Severity.WARNING: "⚠️ ",
    Severity.INFO: "ℹ️ ",
}

SEVERITY_COLORS = {
    Severity.WARNING: "\033[93m",  # Yellow
    Severity.INFO: "\033[94m",  # Blue
}

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"


def _supports_color() -> bool:
    """Check if terminal supports color."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


def _stats_section(title: str, rows: list[WorkflowStats], metric: Callable[[WorkflowStats], str],
                   color: bool) -> list[str]:
    lines = [f"{BOLD}{title}{RESET}" if color else title]
    if not rows:
        lines.append("  (none)")
    for s in rows:
        lines.append(f"  {s.repository:<30} {s.workflow:<30} {metric(s):>8}  (total {s.total})")
    lines.append("")
    return lines


def format_findings(findings: list[Finding], verbose: bool = False, color: bool = True) -> list[str]:
    """Format findings grouped by file."""
    lines = []
    c = color
    by_file: dict[str, list[Finding]] = {}
    for f in findings:
        location = f"{f.repository}/{f.file}" if f.repository else f.file
        by_file.setdefault(location, []).append(f)

    for location, file_findings in by_file.items():
        lines.append(f"{BOLD}{location}{RESET}" if c else location)
        for f in file_findings:
            sym = SEVERITY_SYMBOLS.get(f.severity, "?")
            sc = SEVERITY_COLORS.get(f.severity, "") if c else ""
            rc = RESET if c else ""
            lines.append(f"  {sym} {sc}{f.rule}{rc}: {f.message}")
            if verbose and f.fix:
                lines.append(f"    → {f.fix}")
        lines.append("")
    return lines


def render_text(report: AuditReport, top: int = 10, schedule_threshold: int = SCHEDULE_THRESHOLD,
                show_findings: bool = False, verbose: bool = False, color: bool = True) -> str:
    """Render the full audit report as human-readable text."""
    c = color
    lines = [f"{BOLD}wfaudit v{__version__}{RESET} — Workflow Fleet Audit" if c
             else f"wfaudit v{__version__} — Workflow Fleet Audit", ""]

    if report.stats:
        lines += _stats_section(f"Top {top} workflows by run count", top_by_total(report.stats, top),
                                lambda s: str(s.total), c)
        lines += _stats_section(f"Schedule-heavy workflows (> {schedule_threshold} scheduled runs)",
                                schedule_heavy(report.stats, schedule_threshold),
                                lambda s: str(s.schedule), c)
        lines += _stats_section("Push-dominant workflows", push_dominant(report.stats),
                                lambda s: _pct(s.push_fraction), c)
        lines += _stats_section("High failure rate", high_failure(report.stats),
                                lambda s: _pct(s.failure_fraction), c)
        lines += _stats_section("High cancellation rate", high_cancellation(report.stats),
                                lambda s: _pct(s.cancellation_fraction), c)

    if (show_findings or verbose) and report.findings:
        lines += format_findings(report.findings, verbose, c)

    lines.append(f"{BOLD}Findings by rule{RESET}" if c else "Findings by rule")
    counts = finding_counts(report.findings)
    if not counts:
        lines.append("  ✅ No anti-patterns found")
    for label, count in counts:
        lines.append(f"  {label:<34} {count:>5}")
    lines.append("")

    warnings = sum(1 for f in report.findings if f.severity is Severity.WARNING)
    infos = sum(1 for f in report.findings if f.severity is Severity.INFO)
    scope = f"{report.repositories} repositories, {len(report.stats)} workflows, " if report.repositories else ""
    lines.append(f"Summary: {scope}{warnings} warnings, {infos} info")

    notes = []
    if report.skipped_repositories:
        notes.append(f"{report.skipped_repositories} repositories skipped due to fetch failure")
    if report.incomplete_repositories:
        notes.append(f"{report.incomplete_repositories} repositories only partially fetched")
    if report.skipped_files:
        notes.append(f"{report.skipped_files} workflow files skipped due to fetch failure")
    if report.degraded_files:
        notes.append(f"{report.degraded_files} workflow files only partially parsed")
    if report.failed_files:
        notes.append(f"{report.failed_files} workflow files could not be analyzed")
    if report.partial:
        notes.append("audit interrupted; report is partial")
    for note in notes:
        lines.append(f"{DIM}{note}{RESET}" if c else note)

    return "\n".join(lines)


def render_json(report: AuditReport, top: int = 10, schedule_threshold: int = SCHEDULE_THRESHOLD) -> str:
    """Format the audit report as JSON."""
    def rows(items: list[WorkflowStats]) -> list[dict]:
        return [s.to_row() for s in items]

    result = {
        "version": __version__,
        "sections": {
            "top_by_total": rows(top_by_total(report.stats, top)),
            "schedule_heavy": rows(schedule_heavy(report.stats, schedule_threshold)),
            "push_dominant": rows(push_dominant(report.stats)),
            "high_failure": rows(high_failure(report.stats)),
            "high_cancellation": rows(high_cancellation(report.stats)),
        },
        "finding_counts": dict(finding_counts(report.findings)),
        "findings": [f.to_dict() for f in report.findings],
        "stats": rows(report.stats),
        "coverage": {
            "repositories": report.repositories,
            "skipped_repositories": report.skipped_repositories,
            "incomplete_repositories": report.incomplete_repositories,
            "skipped_files": report.skipped_files,
            "degraded_files": report.degraded_files,
            "failed_files": report.failed_files,
            "partial": report.partial,
        },
    }
    return json.dumps(result, indent=2)


def write_csv(report: AuditReport, out_dir: str | os.PathLike) -> tuple[Path, Path]:
    """Write the stats and findings datasets as CSV files."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    stats_path = out / "workflow_stats.csv"
    findings_path = out / "findings.csv"

    with open(stats_path, "w", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=STATS_COLUMNS)
        writer.writeheader()
        for s in report.stats:
            writer.writerow(s.to_row())

    with open(findings_path, "w", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=FINDING_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for f in report.findings:
            writer.writerow(f.to_dict())

    return stats_path, findings_path


# ── GitHub API ────────────────────────────────────────────────────────

DEFAULT_API_URL = "https://api.github.com"
WORKFLOW_DIR = ".github/workflows"


class GitHubClient:
    """Minimal GitHub REST client for run history and workflow files.

    Every failure surfaces as FetchError so callers can skip one item and
    keep going.
    """

    def __init__(self, token: str, api_url: str = DEFAULT_API_URL,
                 session: requests.Session | None = None, timeout: float = 30):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": f"wfaudit/{__version__}",
        })

    def _get(self, path: str, params: dict | None = None, allow_missing: bool = False) -> Any:
        url = f"{self.api_url}{path}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            if allow_missing and resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise FetchError(f"GET {path}: {e}") from e

    def list_repositories(self, owner: str, include_archived: bool = False) -> list[str]:
        """Full names of all repositories of an org (or user, as fallback)."""
        repos: list[str] = []
        base = "orgs"
        page = 1
        while True:
            try:
                data = self._get(f"/{base}/{owner}/repos", {"per_page": 100, "page": page, "type": "all"})
            except FetchError:
                if base == "orgs" and page == 1:
                    logger.info("'%s' is not an accessible organization; retrying as a user", owner)
                    base = "users"
                    continue
                raise
            if not data:
                break
            repos.extend(r["full_name"] for r in data
                         if include_archived or not r.get("archived"))
            page += 1
        return repos

    def list_run_records(self, repository: str, limit: int = 100) -> list[RunRecord]:
        records: list[RunRecord] = []
        per_page = min(100, limit)
        page = 1
        while len(records) < limit:
            data = self._get(f"/repos/{repository}/actions/runs", {"per_page": per_page, "page": page})
            runs = (data or {}).get("workflow_runs") or []
            try:
                records.extend(RunRecord.from_api(repository, r) for r in runs)
            except (KeyError, ValueError) as e:
                raise FetchError(f"{repository}: malformed run payload ({e})") from e
            if len(runs) < per_page:
                break
            page += 1
        return records[:limit]

    def list_definition_file_names(self, repository: str) -> list[str]:
        # No workflow directory is a normal, empty answer
        data = self._get(f"/repos/{repository}/contents/{WORKFLOW_DIR}", allow_missing=True)
        if not isinstance(data, list):
            return []
        return [entry["name"] for entry in data if entry.get("type") == "file"]

    def fetch_definition_content(self, repository: str, file_name: str) -> str:
        data = self._get(f"/repos/{repository}/contents/{WORKFLOW_DIR}/{file_name}")
        try:
            return base64.b64decode(data["content"]).decode("utf-8")
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"{repository}/{file_name}: undecodable content ({e})") from e


# ── Audit ─────────────────────────────────────────────────────────────

@dataclass
class RepositoryResult:
    repository: str
    records: list[RunRecord] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    skipped_files: int = 0
    degraded_files: int = 0
    failed_files: int = 0
    error: str = ""


def is_workflow_file(name: str) -> bool:
    return name.endswith((".yml", ".yaml"))


def analyze_text(text: str, file_name: str, repository: str = "",
                 ignore: set[str] | None = None) -> tuple[PipelineDocument, list[Finding]]:
    doc = parse_workflow(text)
    if doc.degraded:
        logger.info("%s%s: malformed YAML, analyzed a partial document",
                    f"{repository}/" if repository else "", file_name)
    return doc, evaluate(doc, file_name, repository, ignore)


def audit_repository(client: Any, repository: str, run_limit: int = 100,
                     ignore: set[str] | None = None) -> RepositoryResult:
    """Fetch runs and workflow files for one repository and analyze them.

    Raises FetchError when neither runs nor the file listing are available;
    a single unreadable file only counts as skipped, and a file that
    cannot be analyzed only counts as failed.
    """
    result = RepositoryResult(repository)
    logger.info("Processing repository: %s", repository)

    records_error = None
    try:
        result.records = list(client.list_run_records(repository, run_limit) or [])
    except FetchError as e:
        records_error = e
        result.error = str(e)
        logger.warning("Failed to list runs for %s: %s", repository, e)

    try:
        names = [n for n in client.list_definition_file_names(repository) or [] if is_workflow_file(n)]
    except FetchError as e:
        if records_error is not None:
            raise FetchError(f"{repository}: {records_error}; {e}") from e
        logger.warning("Failed to list workflow files for %s: %s", repository, e)
        result.error = str(e)
        return result

    for name in names:
        try:
            text = client.fetch_definition_content(repository, name)
        except FetchError as e:
            logger.warning("Failed to fetch %s/%s: %s", repository, name, e)
            result.skipped_files += 1
            continue
        if text is None:
            result.skipped_files += 1
            continue
        try:
            doc, findings = analyze_text(text, name, repository, ignore)
        except Exception as e:
            logger.error("Failed to analyze %s/%s: %s", repository, name, e, exc_info=True)
            result.failed_files += 1
            continue
        result.degraded_files += doc.degraded
        result.findings.extend(findings)

    return result


def run_audit(client: Any, repositories: list[str], window_days: int = 30,
              now: datetime | None = None, run_limit: int = 100, workers: int = 4,
              ignore: set[str] | None = None) -> AuditReport:
    """Audit repositories concurrently and build the report after all finish."""
    now = now or datetime.now(timezone.utc)
    report = AuditReport(repositories=len(repositories))
    results: dict[str, RepositoryResult] = {}

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=max(1, workers))
    future_to_repo = {executor.submit(audit_repository, client, repo, run_limit, ignore): repo
                      for repo in repositories}
    try:
        for future in concurrent.futures.as_completed(future_to_repo):
            repo = future_to_repo[future]
            try:
                results[repo] = future.result()
            except FetchError as e:
                logger.warning("Skipping repository %s: %s", repo, e)
                report.skipped_repositories += 1
                report.diagnostics.append(f"{repo}: {e}")
            except Exception as e:
                logger.error("Error processing repository %s: %s", repo, e, exc_info=True)
                report.skipped_repositories += 1
                report.diagnostics.append(f"{repo}: {e}")
    except KeyboardInterrupt:
        logger.warning("Audit interrupted; rendering partial report")
        report.partial = True
        executor.shutdown(wait=False, cancel_futures=True)
    else:
        executor.shutdown(wait=True)

    # Keep input order regardless of completion order
    records: list[RunRecord] = []
    for repo in repositories:
        res = results.get(repo)
        if res is None:
            continue
        records.extend(res.records)
        report.findings.extend(res.findings)
        report.skipped_files += res.skipped_files
        report.degraded_files += res.degraded_files
        report.failed_files += res.failed_files
        if res.error:
            report.incomplete_repositories += 1
            report.diagnostics.append(f"{repo}: {res.error}")

    report.stats = aggregate(records, window_days, now)
    return report


def lint_paths(paths: list[str], ignore: set[str] | None = None) -> AuditReport:
    """Analyze local workflow files (no run statistics)."""
    report = AuditReport()
    for filepath in find_workflows_in(paths):
        if filepath == "-":
            text, filename = sys.stdin.read(), "<stdin>"
        else:
            try:
                text = Path(filepath).read_text()
                filename = filepath
            except OSError as e:
                logger.warning("Error reading %s: %s", filepath, e)
                report.skipped_files += 1
                continue
        try:
            doc, findings = analyze_text(text, filename, ignore=ignore)
        except Exception as e:
            logger.error("Failed to analyze %s: %s", filename, e, exc_info=True)
            report.failed_files += 1
            continue
        report.degraded_files += doc.degraded
        report.findings.extend(findings)
    return report


# ── File Discovery ────────────────────────────────────────────────────

def find_workflows_in(paths: list[str]) -> list[str]:
    """Expand files and directories into workflow file paths.

    With no paths, looks in ./.github/workflows.
    """
    if not paths:
        paths = [os.path.join(".", ".github", "workflows")]
    files: list[str] = []
    for p in paths:
        if p == "-" or os.path.isfile(p):
            files.append(p)
        elif os.path.isdir(p):
            files.extend(os.path.join(p, entry) for entry in sorted(os.listdir(p)) if is_workflow_file(entry))
        else:
            logger.warning("%s not found", p)
    return files


# ── CLI ───────────────────────────────────────────────────────────────

def setup_logging(verbosity: int = 0) -> None:
    level = logging.WARNING
    if verbosity > 1:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    elif verbosity < 0:
        level = logging.ERROR
    logging.basicConfig(level=level, stream=sys.stderr,
                        format="%(asctime)s - %(levelname)s - %(message)s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wfaudit",
        description="GitHub Actions fleet auditor — run statistics and cost anti-patterns across repositories",
        epilog="Examples:\n"
               "  wfaudit audit --org my-org                 # Audit every repo of an org\n"
               "  wfaudit audit --repo owner/a --repo owner/b --days 14\n"
               "  wfaudit audit --org my-org --csv-dir out/  # Also write CSV datasets\n"
               "  wfaudit lint .github/workflows/            # Analyze local files only\n"
               "  wfaudit --list-rules                       # Show all rules\n",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--list-rules", action="store_true", help="List all rules and exit")
    parser.add_argument("--version", action="version", version=f"wfaudit {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="count", default=0,
                        help="Show individual findings and fix hints; repeat for debug logging")
    common.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    common.add_argument("--json", dest="json_output", action="store_true", help="Output as JSON")
    common.add_argument("--ignore", metavar="RULES",
                        help="Comma-separated rule IDs to ignore (e.g., NO_TIMEOUT,PR_ALL_EVENTS)")
    common.add_argument("--severity", choices=["warning", "info"],
                        help="Only report findings at this severity or above")
    common.add_argument("--csv-dir", metavar="DIR", help="Write workflow_stats.csv and findings.csv to DIR")

    sub = parser.add_subparsers(dest="command")

    audit = sub.add_parser("audit", parents=[common], help="Audit repositories through the GitHub API")
    audit.add_argument("--org", default=os.getenv("GITHUB_ORG"),
                       help="Organization or user whose repositories are audited (env GITHUB_ORG)")
    audit.add_argument("--repo", action="append", default=[], metavar="OWNER/NAME",
                       help="Repository to audit (repeatable; overrides --org)")
    audit.add_argument("--token", help="GitHub token (env GITHUB_TOKEN)")
    audit.add_argument("--api-url", default=os.getenv("GITHUB_API_URL", DEFAULT_API_URL),
                       help="API base URL (env GITHUB_API_URL)")
    audit.add_argument("--days", type=int, default=30, help="Trailing window in days (default: 30)")
    audit.add_argument("--limit", type=int, default=100, help="Recent runs fetched per repository (default: 100)")
    audit.add_argument("--workers", type=int, default=4, help="Concurrent repositories (default: 4)")
    audit.add_argument("--top", type=int, default=10, help="Rows in the top-by-runs section (default: 10)")
    audit.add_argument("--schedule-threshold", type=int, default=SCHEDULE_THRESHOLD,
                       help=f"Scheduled runs above which a workflow is listed (default: {SCHEDULE_THRESHOLD})")
    audit.add_argument("--include-archived", action="store_true", help="Include archived repositories")

    lint = sub.add_parser("lint", parents=[common], help="Analyze local workflow files")
    lint.add_argument("files", nargs="*", default=[],
                      help="Workflow files or directories (default: .github/workflows; '-' for stdin)")

    return parser


def _list_rules() -> None:
    print(f"wfaudit v{__version__} — {len(RULES)} rules\n")
    for r in RULES.values():
        print(f"  {r.id:<22} [{r.severity.value.upper():7s}] {r.description}")


def _filter_findings(report: AuditReport, severity: str | None) -> None:
    if severity == "warning":
        report.findings = [f for f in report.findings if f.severity is Severity.WARNING]


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_rules:
        _list_rules()
        return 0
    if not args.command:
        parser.print_help()
        return 1

    setup_logging(-1 if args.quiet else args.verbose)

    ignore = set()
    if args.ignore:
        ignore = {r.strip().upper() for r in args.ignore.split(",") if r.strip()}

    if args.command == "lint":
        files = find_workflows_in(args.files)
        if not files:
            print("No workflow files found. Specify files or run from a repo root.", file=sys.stderr)
            print("Usage: wfaudit lint .github/workflows/ci.yml", file=sys.stderr)
            return 1
        report = lint_paths(files, ignore)
        top, threshold = 10, SCHEDULE_THRESHOLD
    else:
        token = args.token or os.getenv("GITHUB_TOKEN")
        if not token:
            print("Error: GITHUB_TOKEN is required (environment, .env or --token)", file=sys.stderr)
            return 1
        client = GitHubClient(token, args.api_url)
        repos = list(args.repo)
        if not repos:
            if not args.org:
                print("Error: pass --repo or --org (or set GITHUB_ORG)", file=sys.stderr)
                return 1
            try:
                repos = client.list_repositories(args.org, args.include_archived)
            except FetchError as e:
                print(f"Error: cannot list repositories for {args.org}: {e}", file=sys.stderr)
                return 1
            logger.info("Found %d repositories to audit", len(repos))
        report = run_audit(client, repos, args.days, run_limit=args.limit,
                           workers=args.workers, ignore=ignore)
        top, threshold = args.top, args.schedule_threshold

    _filter_findings(report, args.severity)

    if args.csv_dir:
        stats_path, findings_path = write_csv(report, args.csv_dir)
        logger.info("Wrote %s and %s", stats_path, findings_path)

    if args.json_output:
        print(render_json(report, top, threshold))
    else:
        print(render_text(report, top, threshold, show_findings=args.command == "lint",
                          verbose=args.verbose > 0, color=_supports_color()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
