"""
Unit tests for HttpContentSynthesizer.

Uses httpx.MockTransport so no network is involved.
"""

import json

import httpx
import pytest

from frailearn.synthesis.client import HttpContentSynthesizer, SynthesisError
from frailearn.synthesis.models import MistakeSample


def make_client(handler) -> HttpContentSynthesizer:
    transport = httpx.MockTransport(handler)
    http = httpx.Client(base_url="http://synth.test", transport=transport)
    return HttpContentSynthesizer(base_url="http://synth.test", api_key="", client=http)


class TestCurriculum:
    def test_parses_chapters(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "chapters": [
                        {
                            "title": "Greetings",
                            "topic": "Greetings",
                            "lessons": [
                                {
                                    "lessonNumber": 1,
                                    "title": "Hello",
                                    "exercises": [{"question": "Hola?", "correctAnswer": "Hello"}],
                                }
                            ],
                        }
                    ]
                },
            )

        chapters = make_client(handler).synthesize_curriculum("BEGINNER", 6, 10)

        assert seen["path"] == "/curriculum"
        assert seen["body"] == {"level": "BEGINNER", "firstChapter": 6, "lastChapter": 10}
        assert chapters[0].lessons[0].exercises[0].correct_answer == "Hello"

    def test_empty_chapter_list_is_an_error(self):
        client = make_client(lambda request: httpx.Response(200, json={"chapters": []}))

        with pytest.raises(SynthesisError):
            client.synthesize_curriculum("BEGINNER")


class TestErrors:
    def test_http_error_status(self):
        client = make_client(lambda request: httpx.Response(503, json={"error": "busy"}))

        with pytest.raises(SynthesisError, match="503"):
            client.synthesize_assessment({"level": "BEGINNER"})

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(SynthesisError, match="timed out"):
            make_client(handler).synthesize_remedial("Articles", [])

    def test_malformed_json(self):
        client = make_client(lambda request: httpx.Response(200, content=b"not json"))

        with pytest.raises(SynthesisError):
            client.synthesize_flashcards({"title": "Hello"})

    def test_invalid_payload(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"questions": [{"question": "no id"}]})
        )

        with pytest.raises(SynthesisError, match="questions"):
            client.synthesize_assessment({"level": "BEGINNER"})


class TestRemedial:
    def test_sends_samples_and_requires_exercises(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"title": "Practice", "exercises": []})

        sample = MistakeSample(question="_ apple", user_answer="a", correct_answer="an", topic="Articles")

        with pytest.raises(SynthesisError, match="no exercises"):
            make_client(handler).synthesize_remedial("Articles", [sample])

        assert seen["body"]["topic"] == "Articles"
        assert seen["body"]["mistakes"][0]["correct_answer"] == "an"

    def test_bearer_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"flashcards": []})

        client = HttpContentSynthesizer(base_url="http://synth.test", api_key="secret")
        client._client = httpx.Client(
            base_url="http://synth.test",
            headers=client._client.headers,
            transport=httpx.MockTransport(handler),
        )

        assert client.synthesize_flashcards({"title": "x"}) == []
        assert seen["auth"] == "Bearer secret"
