# /chatflow/services/nlp_service.py

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from chatflow.config import rules
from chatflow.models.domain import SentimentResult
from chatflow.services.classifier import IntentClassifier
from chatflow.services.text_service import normalize_text, tokenize

# Labeled-pattern annotations: intent detection, sentiment and entities.
# Only intent detection feeds the matching engine's scoring; sentiment and
# entities are attached to results for logging and metrics.

logger = logging.getLogger(__name__)

UNKNOWN_INTENT = "unknown"


def detect_intent(
    normalized: str,
    raw: Optional[str] = None,
    classifier: Optional[IntentClassifier] = None,
    intent_rules: Sequence[Tuple[str, Sequence[Any]]] = rules.INTENT_RULES,
) -> str:
    """
    Evaluate the ordered intent table; the first matching label wins.
    Falls back to the trained classifier, then to 'unknown'.
    """
    raw_lower = raw.lower().strip() if raw else None
    for label, patterns in intent_rules:
        for pattern in patterns:
            if pattern.search(normalized) or (raw_lower and pattern.search(raw_lower)):
                return label

    if classifier is not None:
        try:
            predicted = classifier.classify(normalized)
            if predicted:
                return predicted
        except Exception as e:
            logger.debug(f"Classifier fallback failed: {e}")

    return UNKNOWN_INTENT


def derive_response_intent(output: str) -> str:
    """Label a training example by its reply text."""
    normalized = normalize_text(output)
    for label, pattern in rules.RESPONSE_INTENT_RULES:
        if pattern.search(normalized):
            return label
    return rules.DEFAULT_RESPONSE_INTENT


def analyze_sentiment(text: str) -> SentimentResult:
    tokens = tokenize(normalize_text(text))
    positive, negative = [], []
    score = 0
    for token in tokens:
        value = rules.SENTIMENT_LEXICON.get(token)
        if value is None:
            continue
        score += value
        (positive if value > 0 else negative).append(token)

    comparative = score / len(tokens) if tokens else 0.0
    if comparative > rules.SENTIMENT_POSITIVE_THRESHOLD:
        label = "positive"
    elif comparative < rules.SENTIMENT_NEGATIVE_THRESHOLD:
        label = "negative"
    else:
        label = "neutral"

    return SentimentResult(
        score=score,
        comparative=comparative,
        label=label,
        emotions=detect_emotions(text),
        positive=positive,
        negative=negative,
    )


def detect_emotions(text: str):
    normalized = normalize_text(text)
    return [emotion for emotion, pattern in rules.EMOTION_PATTERNS.items() if pattern.search(normalized)]


def extract_entities(text: str) -> Dict[str, Any]:
    entities: Dict[str, Any] = {
        "emails": rules.EMAIL_RE.findall(text),
        "phones": [],
        "numbers": [],
        "dates": rules.DATE_RE.findall(text),
        "custom": {},
    }
    # Phones and dates are matched first so their digits are not reported as plain numbers.
    remaining = rules.EMAIL_RE.sub(" ", text)
    remaining = rules.DATE_RE.sub(" ", remaining)
    entities["phones"] = rules.PHONE_RE.findall(remaining)
    remaining = rules.PHONE_RE.sub(" ", remaining)
    entities["numbers"] = rules.NUMBER_RE.findall(remaining)

    lowered = text.lower()
    for category, keywords in rules.KNOWN_ENTITIES.items():
        found = [keyword for keyword in keywords if keyword in lowered]
        if found:
            entities["custom"][category] = found
    return entities
