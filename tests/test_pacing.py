import asyncio
import random
import time

from job_harvest.cancel import CancelToken
from job_harvest.pacing import COUNT_CANDIDATES_SCRIPT, SCROLL_TO_TOP_SCRIPT, HumanPacer

from conftest import FakeHost


def test_delays_stay_inside_configured_ranges(make_config):
    config = make_config({"pacing": {
        "settle_min_ms": 500, "settle_max_ms": 1500,
        "reading_min_ms": 200, "reading_max_ms": 400,
    }})
    pacer = HumanPacer(config, rng=random.Random(7))

    settles = [pacer.settle_delay() for _ in range(200)]
    readings = [pacer.reading_delay() for _ in range(200)]

    assert all(0.5 <= d <= 1.5 for d in settles)
    assert all(0.2 <= d <= 0.4 for d in readings)
    assert len(set(settles)) > 1


def test_scroll_sequence_shape(config):
    host = FakeHost(candidates=3)
    pacer = HumanPacer(config, rng=random.Random(1))

    report = asyncio.run(pacer.scroll_sequence(host, CancelToken()))

    scrolls = host.scroll_scripts()
    assert report.scrolls == 2
    assert report.candidates_found == 3
    assert report.reloaded is False
    # two random scrolls, then the small nudge after returning to top
    assert len(scrolls) == 3
    assert scrolls[-1] == "window.scrollBy(0, 50)"
    assert all(100 <= int(s.split(",")[1].strip(" )")) <= 200 for s in scrolls[:2])
    assert SCROLL_TO_TOP_SCRIPT in host.scripts
    assert host.navigations == []


def test_reloads_exactly_once_when_nothing_visible(config):
    host = FakeHost(candidates=0)
    pacer = HumanPacer(config, rng=random.Random(2))

    report = asyncio.run(pacer.scroll_sequence(host, CancelToken()))

    assert report.reloaded is True
    assert host.navigations == [host.url]
    assert host.scripts.count(COUNT_CANDIDATES_SCRIPT) == 2
    assert report.scrolls == 4


def test_no_reload_when_disabled(make_config):
    config = make_config({"pacing": {"reload_on_empty": False}})
    host = FakeHost(candidates=0)

    report = asyncio.run(HumanPacer(config).scroll_sequence(host, CancelToken()))

    assert report.reloaded is False
    assert host.navigations == []


def test_stuck_scroll_scripts_time_out_and_the_sequence_finishes(make_config):
    config = make_config({"browser": {"script_timeout": 0.05}})
    host = FakeHost(candidates=2, hang=lambda script: script.startswith("window.scrollBy"))

    started = time.monotonic()
    report = asyncio.run(HumanPacer(config, rng=random.Random(3)).scroll_sequence(host, CancelToken()))

    assert time.monotonic() - started < 1.0
    assert report.scrolls == 2
    assert report.candidates_found == 2
    assert len(host.scroll_scripts()) == 3
