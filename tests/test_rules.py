import pytest

from wfaudit import (
    Severity,
    check_artifact_no_retention,
    check_expensive_runner,
    check_frequent_schedule,
    check_large_matrix,
    check_matrix_no_failfast,
    check_no_cache,
    check_no_concurrency,
    check_no_timeout,
    check_old_checkout,
    check_pr_all_events,
    check_push_all_branches,
)


def job_yaml(runs_on="ubuntu-latest", extra=""):
    return f"""
jobs:
  build:
    runs-on: {runs_on}
    timeout-minutes: 10
{extra}
    steps:
      - run: make
"""


# ── PUSH_ALL_BRANCHES ────────────────────────────────────────────────

def test_push_without_filters_fires(parse):
    findings = check_push_all_branches(parse("on: push\n" + job_yaml()))
    assert len(findings) == 1
    assert findings[0].rule == "PUSH_ALL_BRANCHES"
    assert findings[0].severity is Severity.WARNING


@pytest.mark.parametrize("filter_line", [
    "branches: [main]",
    "paths: ['src/**']",
    "paths-ignore: ['docs/**']",
])
def test_any_push_filter_suppresses(parse, filter_line):
    doc = parse(f"on:\n  push:\n    {filter_line}\n" + job_yaml())
    assert check_push_all_branches(doc) == []


def test_branches_ignore_alone_does_not_suppress(parse):
    doc = parse("on:\n  push:\n    branches-ignore: [gh-pages]\n" + job_yaml())
    assert len(check_push_all_branches(doc)) == 1


def test_no_push_trigger_never_fires(parse):
    assert check_push_all_branches(parse("on: pull_request\n" + job_yaml())) == []


# ── NO_CONCURRENCY ───────────────────────────────────────────────────

@pytest.mark.parametrize("on", ["push", "pull_request", "[push, pull_request]"])
def test_missing_concurrency_on_push_or_pr(parse, on):
    findings = check_no_concurrency(parse(f"on: {on}\n" + job_yaml()))
    assert [f.severity for f in findings] == [Severity.INFO]


def test_concurrency_group_suppresses(parse):
    doc = parse("on: push\nconcurrency:\n  group: ci\n  cancel-in-progress: true\n" + job_yaml())
    assert check_no_concurrency(doc) == []


def test_schedule_only_workflow_needs_no_concurrency(parse):
    doc = parse("on:\n  schedule:\n    - cron: '0 3 * * *'\n" + job_yaml())
    assert check_no_concurrency(doc) == []


# ── MATRIX_NO_FAILFAST / LARGE_MATRIX ────────────────────────────────

MATRIX_2 = """
    strategy:
      matrix:
        os: [ubuntu-latest, windows-latest]
        python: ["3.11", "3.12"]
"""

MATRIX_3 = MATRIX_2 + """        arch: [x64, arm64]
"""


def test_matrix_without_fail_fast_fires(parse):
    findings = check_matrix_no_failfast(parse("on: push\n" + job_yaml(extra=MATRIX_2)))
    assert len(findings) == 1
    assert findings[0].job == "build"
    assert "'build'" in findings[0].message


def test_explicit_fail_fast_suppresses(parse):
    extra = MATRIX_2.replace("strategy:\n", "strategy:\n      fail-fast: true\n")
    assert check_matrix_no_failfast(parse("on: push\n" + job_yaml(extra=extra))) == []


def test_no_matrix_no_fail_fast_finding(parse):
    assert check_matrix_no_failfast(parse("on: push\n" + job_yaml())) == []


def test_two_dimensions_is_not_large(parse):
    assert check_large_matrix(parse("on: push\n" + job_yaml(extra=MATRIX_2))) == []


def test_three_dimensions_is_large(parse):
    findings = check_large_matrix(parse("on: push\n" + job_yaml(extra=MATRIX_3)))
    assert len(findings) == 1
    assert findings[0].severity is Severity.WARNING
    assert "os, python, arch" in findings[0].message


def test_include_exclude_are_not_dimensions(parse):
    extra = MATRIX_2 + """        include:
          - os: macos-latest
            python: "3.12"
        exclude:
          - os: windows-latest
            python: "3.11"
"""
    assert check_large_matrix(parse("on: push\n" + job_yaml(extra=extra))) == []


# ── FREQUENT_SCHEDULE ────────────────────────────────────────────────

@pytest.mark.parametrize("cron, fires", [
    ("*/5 * * * *", True),
    ("* * * * *", True),
    ("*/1 * * * *", True),
    ("*/9 * * * *", True),
    ("*/10 * * * *", False),
    ("*/15 * * * *", False),
    ("0 9 * * 1", False),
    ("15 */2 * * *", False),
])
def test_frequent_schedule(parse, cron, fires):
    doc = parse(f"on:\n  schedule:\n    - cron: '{cron}'\n" + job_yaml())
    findings = check_frequent_schedule(doc)
    assert bool(findings) is fires
    if fires:
        assert cron in findings[0].message


def test_one_frequent_cron_among_many(parse):
    doc = parse("on:\n  schedule:\n    - cron: '0 0 * * *'\n    - cron: '*/2 * * * *'\n" + job_yaml())
    findings = check_frequent_schedule(doc)
    assert len(findings) == 1
    assert "'*/2 * * * *'" in findings[0].message
    assert "0 0 * * *" not in findings[0].message


# ── NO_TIMEOUT ───────────────────────────────────────────────────────

def test_jobs_without_timeout_are_named(parse):
    doc = parse("""
        on: push
        jobs:
          lint:
            runs-on: ubuntu-latest
          test:
            runs-on: ubuntu-latest
            timeout-minutes: 20
          docs:
            runs-on: ubuntu-latest
    """)
    findings = check_no_timeout(doc)
    assert len(findings) == 1
    assert findings[0].severity is Severity.INFO
    assert "'lint', 'docs'" in findings[0].message


def test_reusable_workflow_jobs_are_exempt(parse):
    doc = parse("""
        on: push
        jobs:
          call:
            uses: ./.github/workflows/build.yml
    """)
    assert check_no_timeout(doc) == []


# ── ARTIFACT_NO_RETENTION ────────────────────────────────────────────

UPLOAD = """
on: push
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/upload-artifact@v4
        with:
          name: dist
          path: dist/
"""


def test_upload_without_retention_fires(parse):
    findings = check_artifact_no_retention(parse(UPLOAD))
    assert [f.rule for f in findings] == ["ARTIFACT_NO_RETENTION"]


def test_retention_anywhere_suppresses(parse):
    doc = parse(UPLOAD + "          retention-days: 3\n")
    assert check_artifact_no_retention(doc) == []


def test_no_upload_no_retention_finding(parse):
    assert check_artifact_no_retention(parse("on: push\n" + job_yaml())) == []


# ── OLD_CHECKOUT ─────────────────────────────────────────────────────

@pytest.mark.parametrize("ref, fires", [
    ("actions/checkout@v1", True),
    ("actions/checkout@v2", True),
    ("actions/checkout@v2.3.4", True),
    ("actions/checkout@v3", False),
    ("actions/checkout@v4", False),
    ("actions/checkout@11bd71901bbe5b1630ceea73d27597364c9af683", False),
    ("someone/checkout@v2", False),
])
def test_old_checkout(parse, ref, fires):
    doc = parse(f"""
        on: push
        jobs:
          build:
            runs-on: ubuntu-latest
            steps:
              - uses: {ref}
    """)
    assert bool(check_old_checkout(doc)) is fires


# ── NO_CACHE ─────────────────────────────────────────────────────────

def steps_yaml(*steps):
    body = "".join(f"      - {s}\n" for s in steps)
    return "on: push\njobs:\n  build:\n    runs-on: ubuntu-latest\n    steps:\n" + body


def test_install_without_cache_fires(parse):
    doc = parse(steps_yaml("uses: actions/checkout@v4", "run: npm ci", "run: pip install -e ."))
    findings = check_no_cache(doc)
    assert len(findings) == 1
    assert "npm, pip" in findings[0].message


def test_setup_action_cache_input_suppresses(parse):
    doc = parse(steps_yaml("uses: actions/setup-node@v4\n        with:\n          cache: npm", "run: npm ci"))
    assert check_no_cache(doc) == []


def test_cache_action_suppresses(parse):
    doc = parse(steps_yaml("uses: actions/cache@v4\n        with:\n          path: ~/.npm\n          key: npm",
                           "run: npm ci"))
    assert check_no_cache(doc) == []


def test_no_install_no_cache_finding(parse):
    assert check_no_cache(parse(steps_yaml("run: npm test", "run: make"))) == []


# ── PR_ALL_EVENTS ────────────────────────────────────────────────────

def test_pull_request_without_types_fires(parse):
    findings = check_pr_all_events(parse("on: pull_request\n" + job_yaml()))
    assert [f.severity for f in findings] == [Severity.INFO]


def test_pull_request_types_suppress(parse):
    doc = parse("on:\n  pull_request:\n    types: [opened, synchronize]\n" + job_yaml())
    assert check_pr_all_events(doc) == []


# ── EXPENSIVE_RUNNER ─────────────────────────────────────────────────

def test_macos_limited_to_main_is_info(parse):
    doc = parse("on:\n  push:\n    branches: [main]\n" + job_yaml("macos-latest"))
    findings = check_expensive_runner(doc)
    assert len(findings) == 1
    assert findings[0].tag == "MACOS_10X"
    assert findings[0].severity is Severity.INFO
    assert findings[0].scope == "limited"


def test_macos_on_all_branches_is_warning(parse):
    doc = parse("on: push\n" + job_yaml("macos-latest"))
    findings = check_expensive_runner(doc)
    assert len(findings) == 1
    assert findings[0].tag == "MACOS_10X"
    assert findings[0].severity is Severity.WARNING
    assert findings[0].scope == "on all"


@pytest.mark.parametrize("label", ["linux-machine-16core", "ubuntu-emacs"])
def test_labels_merely_containing_mac_are_not_macos(parse, label):
    assert check_expensive_runner(parse("on: push\n" + job_yaml(label))) == []


@pytest.mark.parametrize("label", ["macos-14", "macos-13-xlarge", "macOS-latest"])
def test_macos_family_labels_are_expensive(parse, label):
    [finding] = check_expensive_runner(parse("on: push\n" + job_yaml(label)))
    assert finding.tag == "MACOS_10X"


def test_push_to_feature_branches_is_on_all(parse):
    doc = parse("on:\n  push:\n    branches: ['release/**']\n" + job_yaml("windows-latest"))
    assert check_expensive_runner(doc)[0].severity is Severity.WARNING


def test_pull_request_without_conditional_is_on_all(parse):
    doc = parse("on:\n  push:\n    branches: [main]\n  pull_request:\n" + job_yaml("windows-latest"))
    findings = check_expensive_runner(doc)
    assert [(f.tag, f.severity) for f in findings] == [("WINDOWS_2X", Severity.WARNING)]


@pytest.mark.parametrize("condition", [
    "github.ref == 'refs/heads/main'",
    "github.ref_name == 'master'",
    "github.ref == format('refs/heads/{0}', github.event.repository.default_branch)",
    "github.event_name == 'schedule'",
])
def test_pull_request_with_default_branch_conditional_is_limited(parse, condition):
    extra = f'    if: "{condition}"'
    doc = parse("on: [pull_request]\n" + job_yaml("windows-latest", extra=extra))
    findings = check_expensive_runner(doc)
    assert [(f.tag, f.severity) for f in findings] == [("WINDOWS_2X", Severity.INFO)]


def test_one_finding_per_os_family(parse):
    doc = parse("""
        on: push
        jobs:
          mac1:
            runs-on: macos-13
          mac2:
            runs-on: macos-14
          win:
            runs-on: [windows-2022]
          linux:
            runs-on: ubuntu-latest
    """)
    findings = check_expensive_runner(doc)
    assert [f.tag for f in findings] == ["MACOS_10X", "WINDOWS_2X"]
    assert "'mac1', 'mac2'" in findings[0].message


def test_matrix_runner_is_resolved(parse):
    doc = parse("""
        on: push
        jobs:
          test:
            runs-on: ${{ matrix.os }}
            strategy:
              matrix:
                os: [ubuntu-latest, macos-latest]
    """)
    assert [f.tag for f in check_expensive_runner(doc)] == ["MACOS_10X"]


def test_self_hosted_and_linux_runners_are_ignored(parse):
    doc = parse("""
        on: push
        jobs:
          a:
            runs-on: [self-hosted, windows]
          b:
            runs-on: ubuntu-22.04
    """)
    assert check_expensive_runner(doc) == []
