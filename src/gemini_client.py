from __future__ import annotations

import ast
import json
import logging
import re
from typing import Any, Optional

from google import genai

from errors import ConfigurationError, GenerationParseError, UpstreamError


logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
MAX_TITLES = 50


class GeminiClient:
    """
    Text-completion oracle backed by google-genai.

    The SDK client is created on first use so that constructing the app does
    not require a key.
    """

    def __init__(self, api_key: str, *, model: str = DEFAULT_MODEL):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self._client = None

    def _get_client(self):
        if not self.api_key:
            raise ConfigurationError("Gemini", "GEMINI_API_KEY is not set")
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def generate(self, prompt: str) -> str:
        client = self._get_client()
        try:
            resp = client.models.generate_content(model=self.model, contents=prompt)
        except Exception as gemini_error:
            raise UpstreamError(f"Gemini request failed: {gemini_error}") from gemini_error
        return (resp.text or "").strip()


def build_recommendation_prompt(
    genre: str,
    language: str,
    additional_details: Optional[str] = None,
    actor: Optional[str] = None,
) -> str:
    hint = (additional_details or "").strip() or "none"
    language_label = (language or "").strip() or "any"
    actor_line = ""
    if actor and actor.strip():
        actor_line = f"\n- Featuring actor/actress: {actor.strip()}"
    return f"""Provide 20 to 50 movie recommendations that strictly match these criteria:
- Genre: {genre}
- Language: {language_label}
- Hint to guess about that movie: {hint}{actor_line}

Return ONLY a JSON array of movie titles in this exact format, with no explanation or extra text:
["Movie Title 1", "Movie Title 2", "Movie Title 3"]

If no movie matches exactly, return movies that are similar to the genre and language above.
"""


def _strip_fences(text: str) -> str:
    return re.sub(r"```(?:json)?", "", text or "").strip()


def _extract_array_substring(s: str) -> Optional[str]:
    """
    Pull the first [...] block out of model output that may carry prose.
    Uses a bracket-depth scan so brackets inside titles don't cut it short.
    """
    start = s.find("[")
    if start == -1:
        return None
    depth = 0
    in_str = False
    esc = False
    quote = ""
    for i in range(start, len(s)):
        ch = s[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == quote:
                in_str = False
            continue
        if ch == '"':
            in_str = True
            quote = ch
            continue
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return s[start : i + 1]
    return None


def _repair_json_like(s: str) -> str:
    """
    Repair common model output issues:
    - trailing commas
    - single-quoted strings
    """
    s = re.sub(r",\s*\]", "]", s)

    def _sq_to_dq(m: re.Match) -> str:
        inner = m.group(1).replace('"', '\\"')
        return f'"{inner}"'

    return re.sub(r"'([^'\\]*(?:\\.[^'\\]*)*)'(?=\s*[,\]])", _sq_to_dq, s)


def _load_array(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    repaired = _repair_json_like(candidate)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError:
        # Last resort for Python-style lists.
        return ast.literal_eval(repaired)


def parse_title_list(text: str, *, limit: int = MAX_TITLES) -> list[str]:
    """
    Parse the oracle's answer into a list of movie titles.

    Gemini sometimes wraps the array in ``` fences or adds a sentence around
    it. Raises GenerationParseError (carrying the raw text) when no non-empty
    array of titles can be recovered.
    """
    raw_text = text if isinstance(text, str) else ""
    candidate = _extract_array_substring(_strip_fences(raw_text))
    if candidate is None:
        raise GenerationParseError("No valid JSON array found in Gemini response", raw_text)

    try:
        data = _load_array(candidate)
    except Exception as parse_error:
        raise GenerationParseError(f"Gemini response is not valid JSON: {parse_error}", raw_text) from parse_error

    if not isinstance(data, list) or not data:
        raise GenerationParseError("Invalid response format - expected array of movie titles", raw_text)

    titles: list[str] = []
    for item in data:
        if not isinstance(item, str):
            continue
        title = item.strip()
        if title:
            titles.append(title)
        if len(titles) >= limit:
            break
    if not titles:
        raise GenerationParseError("Invalid response format - expected array of movie titles", raw_text)
    return titles


def ask_movie_titles(
    oracle: GeminiClient,
    *,
    genre: str,
    language: str,
    additional_details: Optional[str] = None,
    actor: Optional[str] = None,
) -> list[str]:
    prompt = build_recommendation_prompt(genre, language, additional_details, actor)
    logger.info("[Gemini] Requesting titles for genre=%r language=%r", genre, language)
    raw_text = oracle.generate(prompt)
    try:
        titles = parse_title_list(raw_text)
    except GenerationParseError:
        logger.error("[Gemini] Failed to parse response. Raw snippet:\n%s", raw_text[:400])
        raise
    logger.info("[Gemini] Suggested %d titles", len(titles))
    return titles
