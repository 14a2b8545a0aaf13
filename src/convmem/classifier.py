"""Conversational query classification.

Decides whether a query refers to prior conversation, what kind of lookup it
is, and which sessions it should search. Evaluation order:

1. Guard rules (negation, general-trivia "history traps") short-circuit to GENERAL.
2. An LLM is asked for exactly two tokens: {CONVERSATIONAL|GENERAL} {CURRENT_SESSION|CROSS_SESSION}.
3. If the LLM is missing, slow, or answers outside that grammar, named regex
   rules decide instead.

The query type and positional detail are always derived from the query text
itself, whichever path decided conversational-ness. classify() never raises.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from convmem.errors import ClassificationUnavailableError
from convmem.models import (
    Classification,
    CrossSession,
    CurrentSession,
    PositionDetail,
    PositionKind,
    QueryType,
)

if TYPE_CHECKING:
    from convmem.config import ConvMemConfig
    from convmem.llm import OpenRouterClient

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_COUNTS = {"couple": 2, "few": 3, "several": 4}

_ORDINAL_WORDS = {
    "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
}

# =============================================================================
# Patterns
# =============================================================================

NEGATION = re.compile(r"\b(don['’]?t|do not|never|not|stop|cancel)\b")

HISTORY_TRAP = re.compile(
    r"\b(first|last|earliest|latest|previous|prior)\b.*\b("
    r"emperor|president|king|queen|pope|album|movie|film|season|game|war|century|year|"
    r"quarter|release|version|episode|chapter|book|song|event|battle|dynasty|kingdom|"
    r"empire|nation|country|city|planet|moon|star|universe|law|olympics?|world cup"
    r")s?\b"
)

ORDERING = re.compile(
    r"\b(first|earliest|initial|beginning|start|last|latest|final|most recent|recent|"
    r"previous|previously|prior|earlier|before|after|next)\b"
)
FIRST_WORDS = re.compile(r"\b(first|earliest|initial|beginning|start|1st)\b")
LAST_WORDS = re.compile(r"\b(last|latest|final|most recent|recent|end)\b")
CHRONO_FIRST = re.compile(r"\b(first|earliest|initial|start|begin(ning)?)\b")

JUST_SAID = re.compile(
    r"\b(just|recently)\s+(said|say|asked|ask|mentioned|mention|told|tell|talked about|wrote|typed)\b"
)
N_MESSAGES_AGO = re.compile(r"\b(\d+)\s+(messages?|msgs?)\s+(ago|back|before)\b")
FUZZY_MESSAGES_AGO = re.compile(
    r"\b(?:a\s+)?(couple|few|several)\s+(?:of\s+)?(messages?|msgs?)\s+(ago|back|before)\b"
)
ORDINAL_MESSAGE = re.compile(
    r"\b(\d+)(?:st|nd|rd|th)\s+(?:message|msg|question|response|reply)s?\b"
)
ORDINAL_WORD_MESSAGE = re.compile(
    r"\b(" + "|".join(_ORDINAL_WORDS) + r")\s+(?:message|msg|question|response|reply)s?\b"
)

SELF_SPEECH = re.compile(
    r"\bdid i\b|\bi\s+(just\s+|previously\s+|recently\s+|last\s+)?"
    r"(said|say|asked|ask|told|tell|mentioned|mention|wrote|write|typed|type)\b"
    r"|\bmy\s+(\w+\s+)?(message|question|msg)\b"
)
OTHER_SPEECH = re.compile(
    r"\b(did you|you\s+(just\s+|previously\s+|recently\s+)?"
    r"(said|say|told|tell|asked|ask|mentioned|mention|wrote|replied|answered))\b"
)

OVERVIEW_WORDS = re.compile(r"\b(summary|summarize|summarise|overview|recap|sum up)\b")
TOPIC_WORDS = re.compile(r"\b(about|regarding|topics?|subjects?|discuss(ed|ing)?)\b")

CHAT_META = re.compile(
    r"\b(this|our)\s+(chat|conversation|thread|session|discussion)s?\b"
    r"|\bthe\s+(chat|conversation|thread)\b"
    r"|\b(message|chat|conversation)\s+history\b"
)
PAST_SPEECH = re.compile(
    r"\bdid (i|we|you)\s+(just\s+|ever\s+|previously\s+|already\s+)?"
    r"(ask|say|tell|talk|discuss|mention|cover)\b"
    r"|\b(i|we|you)\s+(just\s+|ever\s+|previously\s+|already\s+|have\s+|'ve\s+)?"
    r"(asked|said|told|talked|discussed|mentioned|covered)\b"
)
TOPIC_REFERENCE = re.compile(
    r"\bwhat (topics?|subjects?|things?) (have|did|are) we\b"
    r"|\bwhat have we been (discussing|talking about|covering)\b"
    r"|\bwhat (were|are) we (discussing|talking about)\b"
)
MESSAGE_REFERENCE = re.compile(
    r"\b(first|last|latest|recent|previous|earlier|initial|final|earliest)\b.*"
    r"\b(message|msg|question|response|reply|answer)s?\b"
)
DISPLAY_REFERENCE = re.compile(
    r"\b(show|display|list|bring up|pull up|fetch|retrieve|review)\b.*"
    r"\b(messages?|msgs?|conversation|chat|thread)\b"
)
OVERVIEW_REFERENCE = re.compile(
    r"\b(summary|summarize|summarise|recap|overview|sum up)\b.*\b(conversation|chat|thread|session|discussion)\b"
    r"|\b(conversation|chat)\b.*\b(summary|overview|recap)\b"
)
CHAT_REFERENT = re.compile(r"\b(i|we|you|me|us|my|our|your)\b")

CROSS_SESSION_CUES = re.compile(
    r"\b(have|did) we (ever|previously|already)\b"
    r"|\b(ever|previously) (discussed|talked about|mentioned|covered)\b"
    r"|\b(last|previous|earlier|other|past|older) (conversations?|sessions?|chats?)\b"
    r"|\bin the past\b|\blast time\b|\bremember when\b|\bbefore today\b"
)

CLASSIFICATION_PROMPT = """Classify this user query: is it asking about the conversation history, and how far back does it need to look?

USER QUERY: "{query}"

CONVERSATIONAL queries ask about:
- What was said or discussed earlier
- A summary or overview of the conversation
- The first, last, or Nth message
- Any reference to "we", "us", "our conversation"

SCOPE:
- CURRENT_SESSION: refers to the ongoing chat ("this", "that", "what did I just say")
- CROSS_SESSION: refers to older chats ("have we ever", "did we discuss before")

Respond with ONLY two words separated by a space:
CONVERSATIONAL CURRENT_SESSION
CONVERSATIONAL CROSS_SESSION
GENERAL CURRENT_SESSION
GENERAL CROSS_SESSION

Answer:"""


# =============================================================================
# Rules
# =============================================================================


@dataclass(frozen=True)
class PatternRule:
    """A named regex predicate over the normalized query."""

    name: str
    pattern: re.Pattern[str]

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


@dataclass(frozen=True)
class ConjunctionRule:
    """A named rule that fires only when every pattern matches."""

    name: str
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, text: str) -> bool:
        return all(p.search(text) for p in self.patterns)


# Evaluated top-down before anything else; first match forces GENERAL.
GUARD_RULES: tuple[PatternRule, ...] = (
    PatternRule("negation", NEGATION),
    PatternRule("history_trap", HISTORY_TRAP),
)

# Evaluated top-down when the LLM path is unavailable; first match marks the
# query conversational.
CONVERSATIONAL_RULES: tuple[PatternRule | ConjunctionRule, ...] = (
    PatternRule("just_said", JUST_SAID),
    PatternRule("messages_ago", N_MESSAGES_AGO),
    PatternRule("fuzzy_messages_ago", FUZZY_MESSAGES_AGO),
    PatternRule("ordinal_message", ORDINAL_MESSAGE),
    PatternRule("ordinal_word_message", ORDINAL_WORD_MESSAGE),
    PatternRule("message_reference", MESSAGE_REFERENCE),
    PatternRule("overview_reference", OVERVIEW_REFERENCE),
    PatternRule("chat_meta", CHAT_META),
    PatternRule("topic_reference", TOPIC_REFERENCE),
    PatternRule("past_speech", PAST_SPEECH),
    PatternRule("display_reference", DISPLAY_REFERENCE),
    ConjunctionRule("ordering_with_referent", (ORDERING, CHAT_REFERENT)),
)


def normalize_query(query: str) -> str:
    """Lowercase and collapse whitespace."""
    return " ".join(query.lower().split())


def first_guard_match(text: str) -> str | None:
    """Name of the first guard rule that fires, if any."""
    for rule in GUARD_RULES:
        if rule.matches(text):
            return rule.name
    return None


def first_conversational_match(text: str) -> str | None:
    """Name of the first conversational rule that fires, if any."""
    for rule in CONVERSATIONAL_RULES:
        if rule.matches(text):
            return rule.name
    return None


def needs_cross_session(text: str) -> bool:
    """True when the query reaches back beyond the current session."""
    return CROSS_SESSION_CUES.search(text) is not None


def is_self_reference(text: str) -> bool:
    """True when the requester asks about their own earlier words."""
    if OTHER_SPEECH.search(text):
        return False
    return SELF_SPEECH.search(text) is not None


def chronological_intent(text: str) -> str | None:
    """'first' or 'last' when the query carries ordering words, else None."""
    if CHRONO_FIRST.search(text):
        return "first"
    if ORDERING.search(text):
        return "last"
    return None


def parse_position(
    text: str,
    fuzzy_counts: Mapping[str, int] = DEFAULT_FUZZY_COUNTS,
) -> PositionDetail | None:
    """Resolve an exact positional reference in a normalized query.

    Offsets are descending from the most recent message ("3 messages ago" is
    offset 2). Returns None when the query only has loose ordering words like
    "earlier" or "before".
    """
    self_ref = is_self_reference(text)

    if JUST_SAID.search(text):
        return PositionDetail(kind=PositionKind.LAST, self_reference=self_ref)

    match = N_MESSAGES_AGO.search(text)
    if match:
        count = max(1, int(match.group(1)))
        return PositionDetail(kind=PositionKind.AGO, offset=count - 1, self_reference=self_ref)

    match = FUZZY_MESSAGES_AGO.search(text)
    if match:
        count = max(1, fuzzy_counts.get(match.group(1), DEFAULT_FUZZY_COUNTS[match.group(1)]))
        return PositionDetail(kind=PositionKind.AGO, offset=count - 1, self_reference=self_ref)

    number = None
    match = ORDINAL_MESSAGE.search(text)
    if match:
        number = int(match.group(1))
    else:
        match = ORDINAL_WORD_MESSAGE.search(text)
        if match:
            number = _ORDINAL_WORDS[match.group(1)]
    if number is not None:
        if number <= 1:
            return PositionDetail(kind=PositionKind.FIRST, self_reference=self_ref)
        return PositionDetail(kind=PositionKind.ORDINAL, offset=number - 1, self_reference=self_ref)

    if FIRST_WORDS.search(text):
        return PositionDetail(kind=PositionKind.FIRST, self_reference=self_ref)
    if LAST_WORDS.search(text):
        return PositionDetail(kind=PositionKind.LAST, self_reference=self_ref)

    return None


def derive_query_type(
    text: str,
    fuzzy_counts: Mapping[str, int] = DEFAULT_FUZZY_COUNTS,
) -> tuple[QueryType, PositionDetail | None]:
    """Derive the lookup type of a conversational query from its wording."""
    detail = parse_position(text, fuzzy_counts)
    if detail is not None:
        return QueryType.POSITIONAL, detail
    if ORDERING.search(text):
        return QueryType.POSITIONAL, None
    if OVERVIEW_WORDS.search(text):
        return QueryType.OVERVIEW, None
    if TOPIC_WORDS.search(text):
        return QueryType.TOPICAL, None
    return QueryType.GENERAL, None


def parse_classifier_response(raw: str) -> tuple[bool, bool]:
    """Parse the two-token classifier answer.

    Returns:
        (is_conversational, needs_cross_session)

    Raises:
        ClassificationUnavailableError: If the answer is not exactly two valid tokens
    """
    tokens = raw.strip().upper().split()
    if len(tokens) != 2:
        raise ClassificationUnavailableError(f"Expected two tokens, got {raw!r}")

    kind, scope = tokens
    if kind not in ("CONVERSATIONAL", "GENERAL") or scope not in ("CURRENT_SESSION", "CROSS_SESSION"):
        raise ClassificationUnavailableError(f"Unexpected classifier tokens: {raw!r}")

    return kind == "CONVERSATIONAL", scope == "CROSS_SESSION"


def _scope(cross_session: bool, session_id: str | None) -> CurrentSession | CrossSession:
    return CrossSession() if cross_session else CurrentSession(session_id=session_id)


# =============================================================================
# Backends
# =============================================================================


class ClassifierBackend(Protocol):
    """A natural-language classifier answering in the two-token grammar."""

    async def classify_raw(self, prompt: str, timeout: float) -> str:
        """Return the raw answer text.

        Raises:
            ClassificationUnavailableError: On failure or timeout
        """
        ...


class LLMClassifierBackend:
    """Classifier backend on top of the OpenRouter chat client."""

    def __init__(self, client: "OpenRouterClient", max_tokens: int = 10, temperature: float = 0.1):
        self.client = client
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def classify_raw(self, prompt: str, timeout: float) -> str:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.complete,
                    prompt,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise ClassificationUnavailableError(f"Classifier timed out after {timeout:.1f}s") from e
        except Exception as e:
            raise ClassificationUnavailableError(f"Classifier call failed: {e}") from e


# =============================================================================
# Classifier
# =============================================================================


class QueryClassifier:
    """Classifies queries as conversational or general, with scope.

    Example:
        classifier = QueryClassifier(LLMClassifierBackend(OpenRouterClient()))
        result = await classifier.classify("what did I just say?", session_id="s-1")
        result.type          # QueryType.POSITIONAL
        result.scope         # CurrentSession(session_id="s-1")
    """

    def __init__(
        self,
        backend: ClassifierBackend | None = None,
        timeout: float = 5.0,
        fuzzy_counts: Mapping[str, int] | None = None,
    ):
        self.backend = backend
        self.timeout = timeout
        self.fuzzy_counts = dict(fuzzy_counts or DEFAULT_FUZZY_COUNTS)

    @classmethod
    def from_config(cls, config: "ConvMemConfig") -> "QueryClassifier":
        """Build a classifier, attaching the LLM backend when OPENROUTER_API_KEY is set."""
        from convmem.llm import OpenRouterClient

        backend = None
        if os.getenv("OPENROUTER_API_KEY"):
            backend = LLMClassifierBackend(OpenRouterClient(model=config.llm_model))
        return cls(backend, timeout=config.classifier_timeout_seconds, fuzzy_counts=config.fuzzy_counts)

    async def classify(
        self,
        query: str,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> Classification:
        """Classify a query. Never raises; falls back to patterns on any backend failure."""
        text = normalize_query(query)
        guarded = self._apply_guards(text, session_id)
        if guarded is not None:
            return guarded

        if self.backend is not None:
            try:
                return await self._classify_with_backend(
                    text, session_id, self.timeout if timeout is None else timeout
                )
            except ClassificationUnavailableError as e:
                logger.warning(f"[CLASSIFY] LLM classification unavailable, using patterns: {e}")
            except Exception as e:
                logger.warning(f"[CLASSIFY] LLM classification failed, using patterns: {e}")

        return self._classify_with_patterns(text, session_id)

    def classify_with_patterns(self, query: str, session_id: str | None = None) -> Classification:
        """Deterministic classification (guards + regex rules), no LLM."""
        text = normalize_query(query)
        guarded = self._apply_guards(text, session_id)
        if guarded is not None:
            return guarded
        return self._classify_with_patterns(text, session_id)

    def _apply_guards(self, text: str, session_id: str | None) -> Classification | None:
        if not text:
            return Classification(
                is_conversational=False,
                scope=_scope(False, session_id),
                source="guard",
                reason="empty",
            )

        rule = first_guard_match(text)
        if rule is None:
            return None

        logger.debug(f"[CLASSIFY] Guard '{rule}' fired for {text!r}")
        return Classification(
            is_conversational=False,
            type=QueryType.GENERAL,
            scope=_scope(needs_cross_session(text), session_id),
            source="guard",
            reason=rule,
        )

    async def _classify_with_backend(
        self, text: str, session_id: str | None, timeout: float
    ) -> Classification:
        prompt = CLASSIFICATION_PROMPT.format(query=text)
        try:
            raw = await asyncio.wait_for(self.backend.classify_raw(prompt, timeout), timeout=timeout)
        except TimeoutError as e:
            raise ClassificationUnavailableError(f"Classifier timed out after {timeout:.1f}s") from e

        is_conversational, cross_session = parse_classifier_response(raw)
        scope = _scope(cross_session, session_id)

        if not is_conversational:
            logger.debug(f"[CLASSIFY] LLM: GENERAL ({scope.kind}) for {text!r}")
            return Classification(is_conversational=False, scope=scope, source="llm", reason="llm")

        query_type, detail = derive_query_type(text, self.fuzzy_counts)
        logger.debug(f"[CLASSIFY] LLM: CONVERSATIONAL {query_type.value} ({scope.kind}) for {text!r}")
        return Classification(
            is_conversational=True,
            type=query_type,
            scope=scope,
            position_detail=detail,
            source="llm",
            reason="llm",
        )

    def _classify_with_patterns(self, text: str, session_id: str | None) -> Classification:
        scope = _scope(needs_cross_session(text), session_id)
        rule = first_conversational_match(text)

        if rule is None:
            logger.debug(f"[CLASSIFY] Patterns: GENERAL for {text!r}")
            return Classification(is_conversational=False, scope=scope, source="pattern")

        query_type, detail = derive_query_type(text, self.fuzzy_counts)
        logger.debug(f"[CLASSIFY] Patterns: CONVERSATIONAL {query_type.value} via '{rule}' for {text!r}")
        return Classification(
            is_conversational=True,
            type=query_type,
            scope=scope,
            position_detail=detail,
            source="pattern",
            reason=rule,
        )
