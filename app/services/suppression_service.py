"""
Suppression / rule matching as an ordered filter chain.

Each filter inspects a SuppressionCandidate and either returns a
suppressing decision or None to pass. The chain returns the first
suppressing decision; its reason is persisted verbatim by the pipelines.

OpenPhone chain: DB phone/conversation blocklist, static env lists,
DB phrase suppressions. Gmail chain: skip_sender then skip_subject rules.
"""

from dataclasses import dataclass

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.repositories.openphone_repository import SuppressionRepository

logger = get_logger(__name__)

PHRASE_SUPPRESSION_LIMIT = 200


@dataclass(slots=True, frozen=True)
class SuppressionDecision:
    suppressed: bool
    reason: str = ""
    matched_by: str | None = None


PROCEED = SuppressionDecision(suppressed=False)


@dataclass(slots=True)
class SuppressionCandidate:
    """What a filter may look at; each channel fills in its own fields."""

    phone: str | None = None
    conversation_id: str | None = None
    transcript: str = ""
    sender: str | None = None
    subject: str = ""


class SuppressionFilter:
    name = "filter"

    async def evaluate(self, candidate: SuppressionCandidate) -> SuppressionDecision | None:
        raise NotImplementedError

    def _suppress(self, reason: str) -> SuppressionDecision:
        return SuppressionDecision(suppressed=True, reason=reason, matched_by=self.name)


class IdentitySuppressionFilter(SuppressionFilter):
    """suppressions rows of kind phone/conversation matching the participant or conversation id."""

    name = "db_identity"

    async def evaluate(self, candidate):
        if not candidate.phone and not candidate.conversation_id:
            return None
        try:
            rows = await SuppressionRepository.find_identity_matches(
                candidate.phone or "", candidate.conversation_id or ""
            )
        except DatabaseError as e:
            logger.warning("Identity suppression lookup failed", error=str(e))
            return None
        if not rows:
            return None
        row = rows[0]
        return self._suppress(row.get("reason") or f"Suppressed by {row['kind']}")


class StaticBlocklistFilter(SuppressionFilter):
    """RESPONSE_BLOCKLIST_PHONES (exact) and RESPONSE_BLOCKLIST_PHRASES (substring)."""

    name = "env_blocklist"

    def __init__(self, phones: list[str] | None = None, phrases: list[str] | None = None):
        if phones is None:
            phones = settings.RESPONSE_BLOCKLIST_PHONES
        if phrases is None:
            phrases = settings.RESPONSE_BLOCKLIST_PHRASES
        self.phones = [p.strip() for p in phones if p.strip()]
        self.phrases = [p.strip() for p in phrases if p.strip()]

    async def evaluate(self, candidate):
        if candidate.phone and candidate.phone in self.phones:
            return self._suppress("Phone is blocklisted (env)")
        transcript = candidate.transcript.lower()
        for phrase in self.phrases:
            if phrase.lower() in transcript:
                return self._suppress(f"Transcript contains blocked phrase: {phrase}")
        return None


class PhraseSuppressionFilter(SuppressionFilter):
    """suppressions rows of kind phrase; loaded once per filter instance."""

    name = "db_phrase"

    def __init__(self):
        self._phrases: list[dict] | None = None

    async def _load(self) -> list[dict]:
        if self._phrases is None:
            try:
                self._phrases = await SuppressionRepository.list_phrases(PHRASE_SUPPRESSION_LIMIT)
            except DatabaseError as e:
                logger.warning("Phrase suppression lookup failed", error=str(e))
                return []
        return self._phrases

    async def evaluate(self, candidate):
        transcript = candidate.transcript.lower()
        for row in await self._load():
            value = str(row.get("value") or "").strip()
            if value and value.lower() in transcript:
                return self._suppress(row.get("reason") or f"Transcript contains blocked phrase: {value}")
        return None


class SenderRuleFilter(SuppressionFilter):
    """skip_sender agent rules: exact, case-insensitive sender address."""

    name = "rule_sender"

    def __init__(self, rules: list[dict]):
        self.patterns = {
            r["pattern"].strip().lower()
            for r in rules
            if r.get("rule_type") == "skip_sender" and (r.get("pattern") or "").strip()
        }

    async def evaluate(self, candidate):
        sender = (candidate.sender or "").lower()
        if sender and sender in self.patterns:
            return self._suppress(f'Skipped (rule): sender "{sender}"')
        return None


class SubjectRuleFilter(SuppressionFilter):
    """skip_subject agent rules: case-insensitive substring of the subject."""

    name = "rule_subject"

    def __init__(self, rules: list[dict]):
        self.patterns = [
            r["pattern"]
            for r in rules
            if r.get("rule_type") == "skip_subject" and (r.get("pattern") or "").strip()
        ]

    async def evaluate(self, candidate):
        subject = (candidate.subject or "").lower()
        for pattern in self.patterns:
            if pattern.strip().lower() in subject:
                return self._suppress(f'Skipped (rule): subject matched "{pattern}"')
        return None


class SuppressionChain:
    def __init__(self, filters: list[SuppressionFilter]):
        self.filters = filters

    async def evaluate(self, candidate: SuppressionCandidate) -> SuppressionDecision:
        for suppression_filter in self.filters:
            decision = await suppression_filter.evaluate(candidate)
            if decision and decision.suppressed:
                logger.debug("Candidate suppressed", matched_by=decision.matched_by, reason=decision.reason)
                return decision
        return PROCEED


def build_openphone_chain() -> SuppressionChain:
    return SuppressionChain(
        [IdentitySuppressionFilter(), StaticBlocklistFilter(), PhraseSuppressionFilter()]
    )


def build_gmail_chain(rules: list[dict]) -> SuppressionChain:
    return SuppressionChain([SenderRuleFilter(rules), SubjectRuleFilter(rules)])
