"""
Content synthesis client.

The engine consumes an external service that synthesizes curriculum chapters,
remedial units, assessments and flashcards. `ContentSynthesizer` is the
interface the engine depends on; `HttpContentSynthesizer` talks to the service
over HTTP.

Hardening:
- Every request is bounded by the configured timeout
- Transport errors, HTTP errors and malformed payloads all surface as
  SynthesisError so callers can degrade gracefully
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

import httpx
from loguru import logger
from pydantic import ValidationError

from config import get_settings
from frailearn.synthesis.models import (
    AssessmentQuestion,
    MistakeSample,
    RemedialContent,
    SynthesizedChapter,
    SynthesizedFlashcard,
)


class SynthesisError(RuntimeError):
    """Raised when the synthesis service fails or returns unusable content."""


class ContentSynthesizer(Protocol):
    """Interface of the content synthesis collaborator."""

    def synthesize_curriculum(
        self, level: str, first_chapter: int = 1, last_chapter: int | None = None
    ) -> list[SynthesizedChapter]: ...

    def synthesize_remedial(
        self, topic: str, sample_mistakes: Sequence[MistakeSample]
    ) -> RemedialContent: ...

    def synthesize_assessment(self, content_range: dict[str, Any]) -> list[AssessmentQuestion]: ...

    def synthesize_flashcards(self, lesson: dict[str, Any]) -> list[SynthesizedFlashcard]: ...


class HttpContentSynthesizer:
    """
    HTTP implementation of ContentSynthesizer.

    Endpoints (POST, JSON):
        /curriculum   {level, firstChapter, lastChapter} -> {chapters: [...]}
        /remedial     {topic, mistakes}                  -> {title, description, content, exercises}
        /assessment   {contentRange}                     -> {questions: [...]}
        /flashcards   {lesson}                           -> {flashcards: [...]}
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.synthesis_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.synthesis_timeout_seconds
        token = api_key if api_key is not None else settings.synthesis_api_key
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.Client(
            base_url=self.base_url, headers=headers, timeout=self.timeout
        )

        logger.debug(
            "Initialized synthesis client: url={}, timeout={}s", self.base_url, self.timeout
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpContentSynthesizer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ========================================
    # Core API Methods
    # ========================================

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            raise SynthesisError(f"Synthesis request {path} timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise SynthesisError(
                f"Synthesis request {path} failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise SynthesisError(f"Synthesis request {path} failed: {exc}") from exc

        if not isinstance(body, dict):
            raise SynthesisError(f"Synthesis response for {path} is not a JSON object")
        return body

    def synthesize_curriculum(
        self, level: str, first_chapter: int = 1, last_chapter: int | None = None
    ) -> list[SynthesizedChapter]:
        body = self._post(
            "/curriculum",
            {"level": level, "firstChapter": first_chapter, "lastChapter": last_chapter},
        )
        chapters = _validate_list(body, "chapters", SynthesizedChapter)
        if not chapters:
            raise SynthesisError(f"No chapters returned for {level} {first_chapter}-{last_chapter}")
        return chapters

    def synthesize_remedial(
        self, topic: str, sample_mistakes: Sequence[MistakeSample]
    ) -> RemedialContent:
        body = self._post(
            "/remedial",
            {"topic": topic, "mistakes": [m.model_dump() for m in sample_mistakes]},
        )
        try:
            content = RemedialContent.model_validate(body)
        except ValidationError as exc:
            raise SynthesisError(f"Invalid remedial payload for topic {topic!r}: {exc}") from exc
        if not content.exercises:
            raise SynthesisError(f"Remedial payload for topic {topic!r} has no exercises")
        return content

    def synthesize_assessment(self, content_range: dict[str, Any]) -> list[AssessmentQuestion]:
        body = self._post("/assessment", {"contentRange": content_range})
        questions = _validate_list(body, "questions", AssessmentQuestion)
        if not questions:
            raise SynthesisError("Assessment payload has no questions")
        return questions

    def synthesize_flashcards(self, lesson: dict[str, Any]) -> list[SynthesizedFlashcard]:
        body = self._post("/flashcards", {"lesson": lesson})
        return _validate_list(body, "flashcards", SynthesizedFlashcard)


def _validate_list(body: dict[str, Any], key: str, model: type) -> list:
    raw = body.get(key)
    if not isinstance(raw, list):
        raise SynthesisError(f"Synthesis response is missing the '{key}' list")
    try:
        return [model.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise SynthesisError(f"Invalid item in '{key}': {exc}") from exc
