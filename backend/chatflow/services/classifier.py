# /chatflow/services/classifier.py

import logging
from typing import Iterable, List, Optional, Tuple

from sklearn.feature_extraction.text import CountVectorizer
from sklearn.naive_bayes import MultinomialNB

from chatflow.services.text_service import expand_synonyms

logger = logging.getLogger(__name__)


class IntentClassifier:
    """
    Naive-Bayes classifier over (normalized input, intent label) pairs.

    Class priors are uniform so that a large "general" bucket does not drown
    small, specific intents such as greetings.
    """

    def __init__(self, alpha: float = 1.0):
        self.alpha = alpha
        self._vectorizer: Optional[CountVectorizer] = None
        self._model: Optional[MultinomialNB] = None
        self.labels: List[str] = []

    @property
    def is_trained(self) -> bool:
        return self._model is not None

    def train(self, samples: Iterable[Tuple[str, str]]) -> bool:
        """Fit on normalized texts. Returns False (and stays untrained) when there is nothing to learn."""
        pairs = [(text, label) for text, label in samples if text and label]
        self._vectorizer = None
        self._model = None
        self.labels = []
        if not pairs:
            return False

        texts = [expand_synonyms(text) for text, _ in pairs]
        labels = [label for _, label in pairs]
        vectorizer = CountVectorizer(token_pattern=r"(?u)\b\w+\b")
        try:
            features = vectorizer.fit_transform(texts)
        except ValueError as e:
            # Empty vocabulary
            logger.warning(f"Intent classifier not trained: {e}")
            return False

        model = MultinomialNB(alpha=self.alpha, fit_prior=False)
        model.fit(features, labels)
        self._vectorizer = vectorizer
        self._model = model
        self.labels = [str(label) for label in model.classes_]
        logger.info(f"Intent classifier trained on {len(pairs)} examples, {len(self.labels)} labels.")
        return True

    def classify(self, normalized: str) -> Optional[str]:
        """Most likely label, or None when untrained or the text has no known vocabulary."""
        if not self.is_trained or not normalized:
            return None
        features = self._vectorizer.transform([expand_synonyms(normalized)])
        if features.nnz == 0:
            return None
        return str(self._model.predict(features)[0])
