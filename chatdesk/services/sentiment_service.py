"""Sentiment classification over the last few customer messages."""

import json
from dataclasses import dataclass
from typing import List, Optional

from chatdesk.logging_config import get_logger
from chatdesk.services.errors import ServiceError
from chatdesk.services.llm import LLMProvider

logger = get_logger("sentiment_service")

SENTIMENTS = ("positive", "neutral", "negative")

CLASSIFY_PROMPT = """You review the latest messages a customer sent to a support chatbot.
Decide whether the customer is frustrated enough that a human agent should take over.

Customer messages, oldest first:
{messages}

Reply with a JSON object:
{{"sentiment": "positive" | "neutral" | "negative", "score": <number from -1 to 1>, "should_escalate": <true|false>, "reason": "<short reason>"}}"""


@dataclass
class SentimentResult:
    should_escalate: bool
    sentiment: str = "neutral"
    score: float = 0.0
    reason: Optional[str] = None


def parse_sentiment(raw: str) -> SentimentResult:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ServiceError(f"Unparseable classifier output: {raw[:100]!r}", "classifier_output") from e
    if not isinstance(data, dict) or "should_escalate" not in data:
        raise ServiceError("Classifier output missing should_escalate", "classifier_output")

    sentiment = str(data.get("sentiment", "neutral")).lower()
    if sentiment not in SENTIMENTS:
        sentiment = "neutral"
    try:
        score = float(data.get("score", 0.0))
    except (TypeError, ValueError):
        score = 0.0
    return SentimentResult(
        should_escalate=bool(data["should_escalate"]),
        sentiment=sentiment,
        score=score,
        reason=data.get("reason"),
    )


class SentimentClassifier:
    def __init__(self, provider: LLMProvider, model: Optional[str] = None):
        self.provider = provider
        self.model = model

    def classify(self, texts: List[str]) -> SentimentResult:
        """Classify a window of customer texts. Raises ServiceError when unavailable."""
        if not texts:
            return SentimentResult(should_escalate=False)

        prompt = CLASSIFY_PROMPT.format(messages="\n".join(f"- {text}" for text in texts))
        response = self.provider.generate(
            [{"role": "user", "content": prompt}],
            model=self.model,
            temperature=0.0,
            max_tokens=150,
            json_mode=True,
        )
        result = parse_sentiment(response.content)
        logger.info(
            "Sentiment classified",
            extra={
                "context": {
                    "sentiment": result.sentiment,
                    "score": result.score,
                    "should_escalate": result.should_escalate,
                    "window": len(texts),
                }
            },
        )
        return result
