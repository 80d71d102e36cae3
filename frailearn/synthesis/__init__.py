"""Content synthesis collaborator: protocol, HTTP client and payload models."""

from frailearn.synthesis.client import (
    ContentSynthesizer,
    HttpContentSynthesizer,
    SynthesisError,
)
from frailearn.synthesis.models import (
    AssessmentQuestion,
    MistakeSample,
    RemedialContent,
    SynthesizedChapter,
    SynthesizedExercise,
    SynthesizedFlashcard,
    SynthesizedLesson,
)

__all__ = [
    "ContentSynthesizer",
    "HttpContentSynthesizer",
    "SynthesisError",
    "AssessmentQuestion",
    "MistakeSample",
    "RemedialContent",
    "SynthesizedChapter",
    "SynthesizedExercise",
    "SynthesizedFlashcard",
    "SynthesizedLesson",
]
