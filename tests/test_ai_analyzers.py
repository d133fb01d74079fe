import asyncio
import base64
import json

import httpx
import pytest

from job_harvest.ai_client import EndpointSettings, OpenAICompatClient, message_text
from job_harvest.ai_text import AITextAnalyzer, truncate_html
from job_harvest.ai_vision import AIVisionAnalyzer

KEY_ENV = "JOB_HARVEST_TEST_KEY"


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def ai_config(make_config):
    return make_config({"ai_text": {"enabled": True}, "ai_vision": {"enabled": True}})


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv(KEY_ENV, "sk-test")


def test_endpoint_settings_use_provider_presets(ai_config):
    text = EndpointSettings.from_config(ai_config, "ai_text")
    vision = EndpointSettings.from_config(ai_config, "ai_vision")

    assert text.base_url == "https://open.bigmodel.cn/api/paas/v4"
    assert text.model == "glm-4-flash"
    assert vision.model == "glm-4v-flash"
    assert text.timeout == 5
    assert text.api_key_env == KEY_ENV


def test_message_text_handles_content_parts():
    payload = {"choices": [{"message": {"content": [{"type": "text", "text": "[1"}, {"type": "text", "text": "]"}]}}]}
    assert message_text(payload) == "[1]"
    assert message_text({"choices": []}) == ""


def test_truncate_html_strips_scripts_and_styles():
    html = "<html><script>var x = 1;</script><style>.a{}</style><div>岗位 A</div></html>"
    assert truncate_html(html, 1000) == "<html><div>岗位 A</div></html>"
    assert truncate_html("<p>" + "x" * 50 + "</p>", 10).endswith("...[truncated]")


def test_list_page_analysis_parses_reply(ai_config, api_key):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        reply = 'Here you go:\n```json\n[{"platformJobId": "", "title": "运营主管", "salaryText": "10-15K", "location": "广州", "isOpen": true}]\n```'
        return httpx.Response(200, json=completion(reply))

    analyzer = AITextAnalyzer.from_config(ai_config, transport=httpx.MockTransport(handler))
    records = asyncio.run(analyzer.analyze_list_page("<div>运营主管 10-15K</div>", "zhilian"))

    assert seen["url"] == "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "glm-4-flash"
    assert "智联招聘" in seen["body"]["messages"][1]["content"]
    assert [r.title for r in records] == ["运营主管"]
    assert records[0].source_strategy.value == "ai_text"
    assert analyzer.last_error is None


def test_missing_api_key_degrades_without_calling(ai_config, monkeypatch):
    monkeypatch.delenv(KEY_ENV, raising=False)
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=completion("[]"))

    analyzer = AITextAnalyzer.from_config(ai_config, transport=httpx.MockTransport(handler))
    records = asyncio.run(analyzer.analyze_list_page("<div/>"))

    assert records == []
    assert calls == []
    assert analyzer.last_error == f"missing_api_key:{KEY_ENV}"


@pytest.mark.parametrize("response", [
    httpx.Response(500, text="upstream exploded"),
    httpx.Response(200, json=completion("I could not find any jobs, sorry.")),
    httpx.Response(200, text="<html>gateway</html>"),
])
def test_failures_degrade_to_empty(ai_config, api_key, response):
    analyzer = AITextAnalyzer.from_config(ai_config, transport=httpx.MockTransport(lambda request: response))

    records = asyncio.run(analyzer.analyze_list_page("<div/>"))

    assert records == []
    assert analyzer.last_error


def test_transport_error_degrades_to_empty(ai_config, api_key):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    analyzer = AITextAnalyzer.from_config(ai_config, transport=httpx.MockTransport(handler))

    assert asyncio.run(analyzer.analyze_list_page("<div/>")) == []
    assert "TransientNetworkError" in analyzer.last_error


def test_page_status_analysis(ai_config, api_key):
    reply = '{"loaded": true, "needLogin": "false", "isJobList": true, "hasJobs": true, "pageType": "job_list"}'
    analyzer = AITextAnalyzer.from_config(
        ai_config, transport=httpx.MockTransport(lambda request: httpx.Response(200, json=completion(reply)))
    )

    status = asyncio.run(analyzer.analyze_page_status("<div/>", "https://example.com/jobs"))

    assert status.loaded and status.is_job_list and status.has_jobs
    assert status.need_login is False
    assert status.page_type == "job_list"


def test_page_status_defaults_on_failure(ai_config, api_key):
    analyzer = AITextAnalyzer.from_config(
        ai_config, transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )
    status = asyncio.run(analyzer.analyze_page_status("<div/>"))
    assert status.need_login is False and status.is_job_list is False


def replying(content):
    return httpx.MockTransport(lambda request: httpx.Response(200, json=completion(content)))


def test_detail_page_analysis(ai_config, api_key):
    reply = json.dumps({
        "description": "负责数据平台建设",
        "requirements": "熟悉 Kubernetes",
        "address": "深圳南山区",
        "tags": "大数据、Spark",
        "benefits": ["双休", ""],
        "companyName": "某科技",
        "companySize": "100-499人",
    }, ensure_ascii=False)
    analyzer = AITextAnalyzer.from_config(ai_config, transport=replying(reply))

    detail = asyncio.run(analyzer.analyze_detail_page("<div>详情</div>", "liepin"))

    assert detail.description == "负责数据平台建设"
    assert detail.requirements == "熟悉 Kubernetes"
    assert detail.address == "深圳南山区"
    assert detail.tags == ["大数据", "Spark"]
    assert detail.benefits == ["双休"]
    assert detail.company_name == "某科技"


def test_detail_page_analysis_degrades_to_none(ai_config, api_key):
    analyzer = AITextAnalyzer.from_config(ai_config, transport=replying("sorry, no idea"))

    assert asyncio.run(analyzer.analyze_detail_page("<div/>")) is None
    assert analyzer.last_error


@pytest.mark.parametrize("reply, expected", [
    ("YES", True),
    (" yes.\n", True),
    ("NO", False),
    ("UNKNOWN", False),
    ("Probably yes", False),
])
def test_is_job_open_needs_a_clear_yes(ai_config, api_key, reply, expected):
    analyzer = AITextAnalyzer.from_config(ai_config, transport=replying(reply))

    assert asyncio.run(analyzer.is_job_open("<li>Java开发 开放中</li>")) is expected


def test_is_job_open_truncates_the_fragment_and_fails_closed(ai_config, api_key):
    seen = {}

    def handler(request):
        seen["prompt"] = json.loads(request.content)["messages"][1]["content"]
        return httpx.Response(502)

    analyzer = AITextAnalyzer.from_config(ai_config, transport=httpx.MockTransport(handler))

    assert asyncio.run(analyzer.is_job_open("<li>" + "x" * 5000 + "</li>")) is False
    assert seen["prompt"].endswith("...[truncated]")
    assert analyzer.last_error


def test_vision_sends_data_url_and_parses_cards(ai_config, api_key):
    png = b"\x89PNG\r\n\x1a\nfake"
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        reply = json.dumps({
            "needLogin": False,
            "isJobListPage": True,
            "isLoading": False,
            "JobCards": [
                {"Title": "测试开发", "SalaryText": "15-20K", "Location": "成都"},
                {"title": ""},
            ],
        }, ensure_ascii=False)
        return httpx.Response(200, json=completion(reply))

    analyzer = AIVisionAnalyzer.from_config(ai_config, transport=httpx.MockTransport(handler))
    analysis = asyncio.run(analyzer.analyze_screenshot(png))

    content = seen["body"]["messages"][0]["content"]
    assert content[0]["type"] == "text"
    assert content[1]["image_url"]["url"] == "data:image/png;base64," + base64.b64encode(png).decode("ascii")
    assert seen["body"]["model"] == "glm-4v-flash"
    assert analysis.error is None
    assert analysis.is_job_list_page is True
    assert [(c.title, c.salary_text, c.location) for c in analysis.job_cards] == [("测试开发", "15-20K", "成都")]


def test_vision_disabled_and_garbage_replies(make_config, api_key):
    disabled = AIVisionAnalyzer.from_config(make_config())
    assert asyncio.run(disabled.analyze_screenshot(b"png")).error == "ai_vision_disabled"

    config = make_config({"ai_vision": {"enabled": True}})
    analyzer = AIVisionAnalyzer.from_config(
        config, transport=httpx.MockTransport(lambda request: httpx.Response(200, json=completion("no idea")))
    )
    analysis = asyncio.run(analyzer.analyze_screenshot(b"png"))
    assert analysis.job_cards == []
    assert analysis.error


def test_client_raises_typed_errors(ai_config, api_key):
    from job_harvest.errors import TransientNetworkError

    client = OpenAICompatClient(
        EndpointSettings.from_config(ai_config, "ai_text"),
        transport=httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited")),
    )
    with pytest.raises(TransientNetworkError, match="HTTP 429"):
        asyncio.run(client.chat([{"role": "user", "content": "hi"}]))
