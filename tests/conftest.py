import asyncio
import copy
import json

import pytest
import yaml

from job_harvest.browser_host import BrowserHost, ScriptResult
from job_harvest.config_loader import ConfigLoader
from job_harvest.dom_extractor import EXTRACT_SCRIPT
from job_harvest.pacing import COUNT_CANDIDATES_SCRIPT
from job_harvest.readiness import PROBE_SCRIPT

FAST_SETTINGS = {
    "browser": {"platform": "boss", "job_list_url": ""},
    "pacing": {
        "settle_min_ms": 0,
        "settle_max_ms": 0,
        "reading_min_ms": 0,
        "reading_max_ms": 0,
        "scroll_count": 2,
        "scroll_distance_min": 100,
        "scroll_distance_max": 200,
        "scroll_pause_min_ms": 0,
        "scroll_pause_max_ms": 0,
        "top_pause_ms": 0,
        "nudge_distance": 50,
        "hesitation_chance": 0,
        "reload_on_empty": True,
        "reload_wait_ms": 0,
    },
    "readiness": {"timeout_ms": 300, "poll_interval_ms": 20, "min_body_chars": 100, "ai_fallback": False},
    "interception": {"wait_timeout_ms": 200},
    "ai_text": {"enabled": False, "provider": "zhipu", "api_key_env": "JOB_HARVEST_TEST_KEY", "timeout_seconds": 5},
    "ai_vision": {"enabled": False, "provider": "zhipu", "api_key_env": "JOB_HARVEST_TEST_KEY", "timeout_seconds": 5},
}

READY_PROBE = {
    "readyState": "complete",
    "url": "https://www.zhipin.com/web/chat/job/list",
    "title": "职位管理",
    "loading": False,
    "hasList": True,
    "loginVisible": False,
    "challenge": False,
    "bodyLength": 2000,
    "bodyText": "职位管理 Java开发工程师 开放中",
}


def _merge(base, overrides):
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


@pytest.fixture
def make_config(tmp_path):
    """Build a ConfigLoader from the fast test settings plus overrides."""
    def _make(overrides=None):
        settings = _merge(copy.deepcopy(FAST_SETTINGS), overrides)
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump(settings, allow_unicode=True), encoding="utf-8")
        return ConfigLoader(str(path))
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


class FakeHost(BrowserHost):
    """Scripted BrowserHost: answers the engine's known scripts from attributes."""

    def __init__(self, probes=None, candidates=1, dom_snapshot=None, html="<html></html>",
                 url="https://www.zhipin.com/web/chat/job/list", hang=None, error=None):
        super().__init__()
        # hang(script) -> True makes that script never return; error is raised by every script
        self.hang = hang or (lambda script: False)
        self.error = error
        self.probes = list(probes or [READY_PROBE])
        self.candidates = candidates
        self.dom_snapshot = dom_snapshot or {"group": None, "items": [], "text": ""}
        self.html = html
        self.url = url
        self.scripts = []
        self.navigations = []
        self.screenshots = 0

    @property
    def current_url(self):
        return self.url

    async def navigate(self, url):
        self.ensure_alive()
        self.navigations.append(url)
        self.url = url

    async def evaluate_script(self, script):
        self.ensure_alive()
        self.scripts.append(script)
        if self.error is not None:
            raise self.error
        if self.hang(script):
            await asyncio.sleep(3600)
        if script == PROBE_SCRIPT:
            probe = self.probes.pop(0) if len(self.probes) > 1 else self.probes[0]
            return ScriptResult(success=True, value=json.dumps(probe, ensure_ascii=False))
        if script == COUNT_CANDIDATES_SCRIPT:
            value = self.candidates(self) if callable(self.candidates) else self.candidates
            return ScriptResult(success=True, value=value)
        if script == EXTRACT_SCRIPT:
            return ScriptResult(success=True, value=json.dumps(self.dom_snapshot, ensure_ascii=False))
        if script == "document.documentElement.outerHTML":
            return ScriptResult(success=True, value=self.html)
        return ScriptResult(success=True, value=None)

    async def capture_screenshot(self):
        self.ensure_alive()
        self.screenshots += 1
        return b"\x89PNG fake"

    def scroll_scripts(self):
        return [s for s in self.scripts if s.startswith("window.scrollBy")]


@pytest.fixture
def host():
    return FakeHost()
