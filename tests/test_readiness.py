import asyncio
import time

import pytest

from job_harvest.cancel import CancelToken
from job_harvest.errors import ExtractionCancelled
from job_harvest.models import PageState, PageStatus
from job_harvest.readiness import PROBE_SCRIPT, ReadinessClassifier, classify_probe

from conftest import READY_PROBE, FakeHost


def probe(**changes):
    snapshot = dict(READY_PROBE)
    snapshot.update(changes)
    return snapshot


@pytest.mark.parametrize("snapshot, expected", [
    (probe(), PageState.LIST_READY),
    (probe(readyState="interactive"), PageState.LOADING),
    (probe(loading=True), PageState.LOADING),
    (probe(url="https://login.zhipin.com/login?ka=header"), PageState.LOGIN_REQUIRED),
    (probe(hasList=False, bodyText="请登录后查看职位"), PageState.LOGIN_REQUIRED),
    (probe(title="Just a moment..."), PageState.BLOCKED),
    (probe(challenge=True), PageState.BLOCKED),
    (probe(hasList=False, bodyText="暂无职位", bodyLength=10), PageState.EMPTY_STATE),
    (probe(hasList=False, bodyText="x" * 200, bodyLength=200), PageState.LIST_READY),
    (probe(hasList=False, bodyText="", bodyLength=0), PageState.LOADING),
])
def test_classify_probe(snapshot, expected):
    state, _ = classify_probe(snapshot)
    assert state == expected


def test_poll_until_ready_waits_through_loading(config):
    host = FakeHost(probes=[probe(readyState="loading"), probe(loading=True), probe()])
    classifier = ReadinessClassifier(config)

    report = asyncio.run(classifier.poll_until_ready(host, 2000, CancelToken()))

    assert report.ready is True
    assert report.state == PageState.LIST_READY
    assert report.polls == 3


def test_login_is_terminal_immediately(config):
    host = FakeHost(probes=[probe(url="https://www.zhipin.com/web/user/login?ka=header")])
    report = asyncio.run(ReadinessClassifier(config).poll_until_ready(host, 2000, CancelToken()))

    assert report.ready is False
    assert report.state == PageState.LOGIN_REQUIRED
    assert report.polls == 1


def test_timeout_returns_not_ready_with_last_state(config):
    host = FakeHost(probes=[probe(readyState="loading")])

    started = time.monotonic()
    report = asyncio.run(ReadinessClassifier(config).poll_until_ready(host, 150, CancelToken()))

    assert report.ready is False
    assert report.state == PageState.LOADING
    assert time.monotonic() - started < 1.0
    assert report.polls >= 2


def test_cancellation_is_observed_while_polling(config):
    host = FakeHost(probes=[probe(readyState="loading")])

    async def scenario():
        cancel = CancelToken()
        asyncio.get_running_loop().call_later(0.05, cancel.cancel)
        await ReadinessClassifier(config).poll_until_ready(host, 10000, cancel)

    started = time.monotonic()
    with pytest.raises(ExtractionCancelled):
        asyncio.run(scenario())
    assert time.monotonic() - started < 1.0


class StubStatusAnalyzer:
    enabled = True

    def __init__(self, status):
        self.status = status
        self.calls = 0

    async def analyze_page_status(self, html, url, cancel):
        self.calls += 1
        return self.status


def test_ai_fallback_classifies_page_after_timeout(make_config):
    config = make_config({"readiness": {"ai_fallback": True}})
    analyzer = StubStatusAnalyzer(PageStatus(loaded=True, need_login=True, page_type="login"))
    host = FakeHost(probes=[probe(readyState="loading")])

    report = asyncio.run(ReadinessClassifier(config, status_analyzer=analyzer).poll_until_ready(host, 100, CancelToken()))

    assert analyzer.calls == 1
    assert report.state == PageState.LOGIN_REQUIRED
    assert report.ready is False
    assert report.detail == "ai:login"


def hangs_on_readiness_script(script):
    return script == PROBE_SCRIPT


def test_cancellation_interrupts_a_script_that_never_returns(config):
    host = FakeHost(hang=hangs_on_readiness_script)

    async def scenario():
        cancel = CancelToken()
        task = asyncio.ensure_future(ReadinessClassifier(config).poll_until_ready(host, 10000, cancel))
        await asyncio.sleep(0.1)
        cancelled_at = time.monotonic()
        cancel.cancel()
        with pytest.raises(ExtractionCancelled):
            await task
        return time.monotonic() - cancelled_at

    assert asyncio.run(scenario()) < 0.5
    assert host.scripts == [PROBE_SCRIPT]


def test_timeout_holds_when_the_page_script_never_returns(config):
    host = FakeHost(hang=hangs_on_readiness_script)

    started = time.monotonic()
    report = asyncio.run(ReadinessClassifier(config).poll_until_ready(host, 200, CancelToken()))

    assert time.monotonic() - started < 0.7
    assert report.ready is False
    assert report.state == PageState.UNKNOWN
    assert report.detail.startswith("probe failed: script timed out")
