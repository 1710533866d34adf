from .base_provider import (
    AnalysisOutcome,
    BaseModerationProvider,
    ImageModerator,
    OutcomeReason,
    TextModerator,
    VideoModerator,
)
from .openai_provider import OpenAIModerationProvider
from .rekognition_provider import RekognitionProvider
from .vision_provider import VisionProvider
