# /chatflow/services/matching_service.py

import logging
import time
from collections import Counter, deque
from typing import Any, Callable, Deque, Dict, List, Optional

from chatflow.config import rules, strings
from chatflow.config.settings import MatchingConfig
from chatflow.exceptions import LearningConflictError, MatchingEngineError
from chatflow.models.domain import (
    CandidateGroup,
    ContextEntry,
    IndexedExample,
    MatchResult,
    ResponseCandidate,
    TrainingExample,
)
from chatflow.services.cache_service import ResponseCache
from chatflow.services.classifier import IntentClassifier
from chatflow.services.db_service import PersistenceGateway
from chatflow.services.nlp_service import (
    analyze_sentiment,
    derive_response_intent,
    detect_intent,
    extract_entities,
)
from chatflow.services.scoring import STRING_ALGORITHMS, dedup_similarity, jaccard_similarity
from chatflow.services.text_service import extract_keywords, normalize_text, sanitize_input, tokenize
from chatflow.utils.events import EventEmitter

# This service is the response matching engine. It scores a message against
# the approved training corpus with several similarity algorithms, fuses the
# scores per reply text, caches confident results and learns new pairs online.

logger = logging.getLogger(__name__)

STILL_LEARNING_CONFIDENCE = 0.3
REPHRASE_CONFIDENCE = 0.2
APPROVED_EXAMPLE_CONFIDENCE = 1.0
AUTO_LEARNED_EXAMPLE_CONFIDENCE = 0.8


class ResponseMatcher:
    def __init__(
        self,
        config: MatchingConfig,
        gateway: PersistenceGateway,
        events: Optional[EventEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.gateway = gateway
        self.events = events or EventEmitter()
        self.classifier = IntentClassifier()
        self._clock = clock
        self.cache = ResponseCache(config.cache_max_size, config.cache_ttl_seconds, clock=clock)
        self.index: List[IndexedExample] = []
        self.contexts: Dict[str, Deque[ContextEntry]] = {}
        self._reset_stats()

    def _reset_stats(self) -> None:
        self.stats: Dict[str, Any] = {
            "total_processed": 0,
            "cache_hits": 0,
            "average_confidence": 0.0,
            "intent_distribution": Counter(),
            "sentiment_distribution": Counter(),
        }

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def corpus_size(self) -> int:
        return len(self.index)

    # ==================== Corpus ====================

    async def load_training_data(self) -> int:
        """Read the approved corpus from the gateway and rebuild the index."""
        count = await self.rebuild_index()
        logger.info(f"Loaded {count} training examples.")
        return count

    async def rebuild_index(self) -> int:
        examples = await self.gateway.get_training_data()
        self._build_index(examples)
        return len(self.index)

    def _build_index(self, examples: List[TrainingExample]) -> None:
        index = []
        for example in examples:
            normalized = normalize_text(example.input)
            if not normalized:
                continue
            index.append(IndexedExample(
                example=example,
                normalized_input=normalized,
                tokens=frozenset(tokenize(normalized)),
                intent=derive_response_intent(example.output),
            ))
        # Replace the whole index at once, never patch it in place.
        self.index = index
        self.classifier.train((item.normalized_input, item.intent) for item in index)

    # ==================== Conversation Context ====================

    def _record_context(self, identity: str, message: str, intent: str, sentiment: str) -> None:
        history = self.contexts.get(identity)
        if history is None:
            history = deque(maxlen=self.config.max_context_size)
            self.contexts[identity] = history
        history.append(ContextEntry(message=message, intent=intent, sentiment=sentiment))

    def get_conversation_context(self, identity: str) -> List[ContextEntry]:
        return list(self.contexts.get(identity, ()))

    def clear_context(self, identity: str) -> None:
        self.contexts.pop(identity, None)

    def _recent_intents(self, identity: Optional[str]) -> set:
        if not identity or identity not in self.contexts:
            return set()
        recent = list(self.contexts[identity])[-self.config.context_window:]
        return {rules.QUERY_TO_RESPONSE_INTENT.get(entry.intent, entry.intent) for entry in recent}

    # ==================== Pipeline ====================

    async def process_message(self, text: str, identity: Optional[str] = None) -> MatchResult:
        """
        Full pipeline: sanitize, normalize, cache lookup, score, annotate.
        Never raises; internal failures come back as the error response.
        """
        start = time.perf_counter()
        try:
            clean = sanitize_input(text, self.config.max_input_length)
            normalized = normalize_text(clean)
            if not normalized:
                return self._error_response("Empty message", start)

            if self.config.cache_enabled:
                cached = self.cache.get(normalized)
                if cached is not None:
                    self.stats["total_processed"] += 1
                    self.stats["cache_hits"] += 1
                    self.events.emit("match.cache_hit", key=normalized, confidence=cached.confidence)
                    return cached.model_copy(update={"cached": True, "processing_time_ms": self._elapsed(start)})
                self.events.emit("match.cache_miss", key=normalized)

            intent = detect_intent(normalized, raw=clean, classifier=self.classifier)
            sentiment = analyze_sentiment(clean)
            if identity:
                self._record_context(identity, clean, intent, sentiment.label)

            candidate = await self.match(normalized, identity=identity, intent=intent)

            result = MatchResult(
                text=candidate.text,
                confidence=candidate.confidence,
                algorithm=candidate.algorithm,
                intent=intent,
                sentiment=sentiment,
                entities=extract_entities(clean),
                keywords=extract_keywords(normalized),
                needs_human_handoff=candidate.confidence < self.config.min_confidence,
                processing_time_ms=self._elapsed(start),
            )
            self._update_stats(result)
            self.events.emit(
                "match.scored",
                identity=identity,
                intent=intent,
                confidence=result.confidence,
                algorithm=result.algorithm,
            )

            if self.config.cache_enabled and result.confidence >= self.config.cache_publish_threshold:
                self.cache.set(normalized, result)

            if self.config.learning_enabled and candidate.training_id is not None \
                    and result.confidence >= self.config.auto_learn_threshold:
                await self.learn(clean, result.text, approved=False)

            return result
        except MatchingEngineError as e:
            logger.error(f"Matching failed: {e}", exc_info=True)
            return self._error_response(str(e), start)
        except Exception as e:
            logger.error(f"Unexpected error processing message: {e}", exc_info=True)
            return self._error_response(str(e), start)

    async def match(self, normalized: str, identity: Optional[str] = None, intent: Optional[str] = None) -> ResponseCandidate:
        """Score a normalized message against the corpus and return the best reply."""
        if not self.index:
            return ResponseCandidate(
                text=strings.MATCH_STILL_LEARNING,
                confidence=STILL_LEARNING_CONFIDENCE,
                algorithm="fallback",
            )

        try:
            groups = self._score_candidates(normalized)
            if groups:
                self._apply_classifier_boost(normalized, groups)
                self._apply_context_boost(identity, groups)
        except Exception as e:
            raise MatchingEngineError(f"Scoring failed for '{normalized}': {e}") from e

        if not groups:
            return ResponseCandidate(text=strings.MATCH_REPHRASE, confidence=REPHRASE_CONFIDENCE, algorithm="none")

        best = max(groups.values(), key=lambda group: group.confidence)
        confidence = min(1.0, best.confidence)
        logger.debug(f"Best match for '{normalized}' (intent={intent}): {confidence:.3f} via {best.algorithms}")

        if confidence >= self.config.min_confidence:
            await self.gateway.update_training_usage(best.training_id)

        return ResponseCandidate(
            text=best.text,
            confidence=confidence,
            algorithm="+".join(best.algorithms),
            training_id=best.training_id,
            intent=best.intent,
        )

    def _score_candidates(self, normalized: str) -> Dict[str, CandidateGroup]:
        """Run the string algorithms; only scores above their cutoff produce candidates."""
        weights = self.config.weights
        cutoffs = self.config.cutoffs
        query_tokens = frozenset(tokenize(normalized))
        groups: Dict[str, CandidateGroup] = {}

        def contribute(item: IndexedExample, algorithm: str, contribution: float) -> None:
            group = groups.get(item.example.output)
            if group is None:
                group = CandidateGroup(text=item.example.output, intent=item.intent, training_id=item.example.id)
                groups[item.example.output] = group
            group.add(algorithm, contribution)

        for item in self.index:
            lexical = jaccard_similarity(query_tokens, item.tokens)
            if lexical > cutoffs.lexical:
                contribute(item, "lexical", lexical * weights.lexical)

            for name, algorithm in STRING_ALGORITHMS.items():
                similarity = algorithm(normalized, item.normalized_input)
                if similarity > getattr(cutoffs, name):
                    contribute(item, name, similarity * getattr(weights, name))

        return groups

    def _apply_classifier_boost(self, normalized: str, groups: Dict[str, CandidateGroup]) -> None:
        predicted = self.classifier.classify(normalized)
        if not predicted:
            return
        for group in groups.values():
            if group.intent == predicted:
                group.add("classifier", self.config.weights.classifier)

    def _apply_context_boost(self, identity: Optional[str], groups: Dict[str, CandidateGroup]) -> None:
        recent = self._recent_intents(identity)
        if not recent:
            return
        for group in groups.values():
            if group.intent in recent:
                group.add("context", self.config.weights.context)

    # ==================== Learning ====================

    async def learn(self, input: str, output: str, approved: bool = False) -> bool:
        """
        Persist a new (input, output) pair unless a near-duplicate input exists.
        Returns False on rejection; conflicts are logged, never raised.
        """
        clean_input = sanitize_input(input, self.config.max_input_length)
        clean_output = (output or "").strip()
        normalized = normalize_text(clean_input)
        if not normalized or not clean_output:
            return False

        try:
            await self._check_duplicate(normalized, clean_input)
        except LearningConflictError as e:
            logger.info(f"Learning rejected: {e}")
            self.events.emit("learning.rejected", input=clean_input, existing=e.existing_input, similarity=e.similarity)
            return False

        confidence = APPROVED_EXAMPLE_CONFIDENCE if approved else AUTO_LEARNED_EXAMPLE_CONFIDENCE
        example_id = await self.gateway.save_training_data(clean_input, clean_output, confidence, approved)
        # Rebuilding also retrains the classifier; unapproved pairs are not part of the index.
        await self.rebuild_index()

        logger.info(f"New training added: '{clean_input}' -> '{clean_output[:60]}' (approved={approved})")
        self.events.emit("learning.accepted", input=clean_input, example_id=example_id, approved=approved)
        return True

    async def _check_duplicate(self, normalized: str, clean_input: str) -> None:
        existing = await self.gateway.get_training_data(include_unapproved=True)
        for example in existing:
            similarity = dedup_similarity(normalized, normalize_text(example.input))
            if similarity > self.config.dedup_threshold:
                raise LearningConflictError(clean_input, example.input, similarity)

    async def approve(self, example_id: int) -> bool:
        """Promote an auto-learned example so it joins the scoring corpus."""
        if not await self.gateway.approve_training_data(example_id):
            logger.warning(f"Training example {example_id} not found or already approved.")
            return False
        await self.rebuild_index()
        self.cache.clear()
        self.events.emit("learning.approved", example_id=example_id)
        return True

    # ==================== Maintenance ====================

    def clear_cache(self) -> None:
        self.cache.clear()

    def sweep_cache(self) -> int:
        return self.cache.sweep()

    async def reset(self) -> None:
        """Clear cache and contexts, then reload the corpus."""
        self.cache.clear()
        self.contexts.clear()
        await self.load_training_data()
        logger.info("Matching engine reset.")

    def reload_config(self, config: MatchingConfig) -> None:
        """Swap in new thresholds and weights. Cached scores were computed with the old ones."""
        self.config = config
        self.cache = ResponseCache(config.cache_max_size, config.cache_ttl_seconds, clock=self._clock)
        for identity, history in list(self.contexts.items()):
            self.contexts[identity] = deque(history, maxlen=config.max_context_size)
        logger.info("Matching configuration reloaded.")

    # ==================== Stats ====================

    def _update_stats(self, result: MatchResult) -> None:
        stats = self.stats
        stats["total_processed"] += 1
        scored = stats["total_processed"] - stats["cache_hits"]
        stats["average_confidence"] += (result.confidence - stats["average_confidence"]) / scored
        stats["intent_distribution"][result.intent] += 1
        stats["sentiment_distribution"][result.sentiment.label] += 1

    def get_stats(self) -> Dict[str, Any]:
        processed = self.stats["total_processed"]
        return {
            "training_data_count": self.corpus_size,
            "total_processed": processed,
            "cache_size": len(self.cache),
            "cache_hits": self.stats["cache_hits"],
            "cache_hit_rate": round(self.stats["cache_hits"] / processed, 4) if processed else 0.0,
            "average_confidence": round(self.stats["average_confidence"], 4),
            "intent_distribution": dict(self.stats["intent_distribution"]),
            "sentiment_distribution": dict(self.stats["sentiment_distribution"]),
            "active_contexts": len(self.contexts),
        }

    # ==================== Helpers ====================

    @staticmethod
    def _elapsed(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    def _error_response(self, error: str, start: float) -> MatchResult:
        return MatchResult(
            text=strings.MATCH_ERROR,
            confidence=0.0,
            algorithm="error",
            intent="error",
            needs_human_handoff=True,
            processing_time_ms=self._elapsed(start),
            error=error,
        )
