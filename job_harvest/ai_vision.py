"""
AI Vision Analyzer - reads job cards off a page screenshot.

Last resort of the cascade. Same policy as the text analyzer: failures
become an empty ScreenAnalysis with `error` set.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .ai_client import EndpointSettings, OpenAICompatClient
from .cancel import CancelToken
from .errors import ExtractionCancelled
from .llm_json import as_bool, get_case_insensitive, parse_json_object
from .models import ScreenAnalysis, VisualJobCard

logger = logging.getLogger(__name__)

VISION_PROMPT = """Analyze this screenshot of a recruiting website.

Return a JSON object:
{
  "needLogin": true/false,
  "isJobListPage": true/false,
  "isLoading": true/false,
  "jobCards": [
    {"title": "", "salaryText": "", "location": "", "experience": "", "education": ""}
  ]
}

List every visible job posting in jobCards. Use "" for fields you cannot read.
Reply with JSON only."""


def _card_from_dict(item: dict) -> Optional[VisualJobCard]:
    if not isinstance(item, dict):
        return None
    title = str(get_case_insensitive(item, "title", "jobName", default="") or "").strip()
    if not title:
        return None
    return VisualJobCard(
        title=title,
        salary_text=str(get_case_insensitive(item, "salaryText", "salary", default="") or "").strip(),
        location=str(get_case_insensitive(item, "location", "city", default="") or "").strip(),
        experience=str(get_case_insensitive(item, "experience", "experienceRequired", default="") or "").strip(),
        education=str(get_case_insensitive(item, "education", "educationRequired", default="") or "").strip(),
    )


class AIVisionAnalyzer:
    """Classifies a screenshot and lists the job cards visible on it."""

    def __init__(self, client: OpenAICompatClient, enabled: bool = True,
                 debug_dir: Optional[Path] = None):
        self.client = client
        self.enabled = enabled
        self.debug_dir = debug_dir
        self.last_error: Optional[str] = None

    @classmethod
    def from_config(cls, config, transport=None) -> "AIVisionAnalyzer":
        settings = EndpointSettings.from_config(config, "ai_vision")
        return cls(
            OpenAICompatClient(settings, transport=transport),
            enabled=config.is_ai_enabled("ai_vision"),
            debug_dir=config.get_vision_debug_dir(),
        )

    def _save_debug(self, png_bytes: bytes) -> None:
        if not self.debug_dir:
            return
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            path = self.debug_dir / f"debug_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.png"
            path.write_bytes(png_bytes)
            logger.debug("Saved debug screenshot: %s", path)
        except OSError as exc:
            logger.warning("Failed to save debug screenshot: %s", exc)

    def _failed(self, error: str) -> ScreenAnalysis:
        self.last_error = error
        return ScreenAnalysis(error=error)

    async def analyze_screenshot(
        self,
        png_bytes: bytes,
        cancel: Optional[CancelToken] = None,
    ) -> ScreenAnalysis:
        cancel = cancel or CancelToken()
        self.last_error = None
        if not self.enabled:
            return self._failed("ai_vision_disabled")
        if not png_bytes:
            return self._failed("empty_screenshot")
        if not self.client.is_configured():
            logger.warning("AI vision analysis skipped: %s is not set", self.client.settings.api_key_env)
            return self._failed(f"missing_api_key:{self.client.settings.api_key_env}")

        self._save_debug(png_bytes)
        encoded = base64.b64encode(png_bytes).decode("ascii")
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": VISION_PROMPT},
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}},
            ],
        }]
        try:
            reply = await cancel.guard(self.client.chat(messages))
            payload = parse_json_object(reply)
        except ExtractionCancelled:
            raise
        except Exception as exc:
            logger.warning(
                "AI vision analysis failed (provider=%s, model=%s): %s",
                self.client.settings.provider, self.client.settings.model, exc,
            )
            return self._failed(f"{type(exc).__name__}: {exc}")

        raw_cards = get_case_insensitive(payload, "jobCards", "jobs", default=[])
        if not isinstance(raw_cards, list):
            raw_cards = []
        cards = [card for card in map(_card_from_dict, raw_cards) if card is not None]
        analysis = ScreenAnalysis(
            need_login=as_bool(get_case_insensitive(payload, "needLogin")),
            is_job_list_page=as_bool(get_case_insensitive(payload, "isJobListPage")),
            is_loading=as_bool(get_case_insensitive(payload, "isLoading")),
            job_cards=cards,
        )
        logger.info(
            "AI vision: %s cards (login=%s, list=%s)",
            len(cards), analysis.need_login, analysis.is_job_list_page,
        )
        return analysis
