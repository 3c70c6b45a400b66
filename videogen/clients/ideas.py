# videogen/clients/ideas.py
"""
Prompt rendering and payload parsing for the idea generator.

Language models return ideas in several shapes: a bare object, a top-level
array, an object wrapping the array under ``ideas``/``data`` (or any other
key), or any of those embedded in prose. ``parse_idea_payload`` accepts all
of them and yields a single ``IdeaDraft``.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from videogen.clients.base import ChannelBrief, IdeaDraft
from videogen.errors import IdeaParseError

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 60

LANGUAGE_NAMES = {"ru": "Russian", "kk": "Kazakh", "en": "English"}

DEFAULT_IDEA_TEMPLATE = (
    "Come up with one idea for a {{DURATION}}-second vertical video in {{LANGUAGE}} "
    "for a channel about: {{DESCRIPTION}}"
)
DEFAULT_VIDEO_TEMPLATE = (
    "A cinematic {{DURATION}}-second vertical shot illustrating the idea. "
    "Spoken language: {{LANGUAGE}}."
)

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_HASHTAG_RE = re.compile(r"[#@]\w+")
_EMOJI_RE = re.compile("[\U0001F300-\U0001FAFF☀-➿]")


def render_template(template: str, brief: ChannelBrief) -> str:
    return (
        template.replace("{{DURATION}}", str(brief.duration_seconds))
        .replace("{{LANGUAGE}}", brief.language)
        .replace("{{DESCRIPTION}}", brief.description or brief.name)
    )


def build_messages(brief: ChannelBrief) -> list[Dict[str, str]]:
    """Chat messages asking for one idea, its video prompt and a title."""
    language = LANGUAGE_NAMES.get(brief.language, LANGUAGE_NAMES["ru"])
    idea_part = render_template(brief.idea_prompt_template or DEFAULT_IDEA_TEMPLATE, brief)
    video_part = render_template(brief.video_prompt_template or DEFAULT_VIDEO_TEMPLATE, brief)

    user = (
        f"Step 1 - idea:\n{idea_part}\n\n"
        f"Step 2 - video prompt, following this structure:\n{video_part}\n\n"
        f"The video prompt and the title must be in {language}. "
        f"The title must be at most {TITLE_MAX_LENGTH} characters, without quotes or emoji.\n"
    )
    if brief.avoid_ideas:
        listed = "\n".join(f"- {idea}" for idea in brief.avoid_ideas)
        user += f"\nDo not repeat any of these ideas:\n{listed}\n"
    user += (
        '\nReturn strict JSON: {"idea_title": "...", "idea_description": "...", '
        '"veo_prompt": "...", "video_title": "..."}'
    )

    return [
        {
            "role": "system",
            "content": "You generate ideas and prompts for short videos. Always answer with JSON only.",
        },
        {"role": "user", "content": user},
    ]


def _loads_lenient(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for pattern in (_OBJECT_RE, _ARRAY_RE):
        match = pattern.search(text)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                continue
    raise IdeaParseError("Could not parse JSON from the text generator response")


def _first_item(payload: Any) -> Optional[Dict[str, Any]]:
    if isinstance(payload, list):
        return next((item for item in payload if isinstance(item, dict)), None)
    if not isinstance(payload, dict):
        return None
    for key in ("ideas", "data"):
        if isinstance(payload.get(key), list):
            return _first_item(payload[key])
    for value in payload.values():
        if isinstance(value, list) and any(isinstance(item, dict) for item in value):
            return _first_item(value)
    return payload


def _pick(item: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def clean_title(title: str, fallback: str = "") -> Optional[str]:
    """Strip quotes, hashtags and emoji; cut to 60 chars on a word boundary."""
    title = title.strip().strip("\"'«»")
    title = _HASHTAG_RE.sub("", title)
    title = _EMOJI_RE.sub("", title).strip()
    if len(title) > TITLE_MAX_LENGTH:
        title = title[:TITLE_MAX_LENGTH].strip()
        last_space = title.rfind(" ")
        if last_space > 40:
            title = title[:last_space]
    if not title:
        title = fallback[:TITLE_MAX_LENGTH].strip()
    return title or None


def parse_idea_payload(payload: Any) -> IdeaDraft:
    """
    Normalize a text generator payload into an ``IdeaDraft``.

    Raises:
        IdeaParseError: If no idea or prompt can be extracted
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        payload = _loads_lenient(payload)

    item = _first_item(payload)
    if item is None:
        raise IdeaParseError(f"Unsupported idea payload of type {type(payload).__name__}")

    idea_title = _pick(item, "idea_title", "ideaTitle", "title")
    description = _pick(item, "idea_description", "ideaDescription", "description", "idea", "text")
    prompt = _pick(item, "veo_prompt", "veoPrompt", "prompt", "video_prompt")

    if not (idea_title or description):
        raise IdeaParseError("Idea payload has neither a title nor a description")
    if not prompt:
        raise IdeaParseError("Idea payload has no video prompt")

    idea_text = f"{idea_title}: {description}" if idea_title and description else idea_title or description
    title = clean_title(_pick(item, "video_title", "videoTitle") or idea_title, fallback=idea_title)

    logger.debug("Parsed idea → %s", idea_text[:80])
    return IdeaDraft(idea_text=idea_text, prompt=prompt, title=title)
