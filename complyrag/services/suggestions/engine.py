from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.config import Settings, get_settings
from complyrag.core.errors import (
    NotFoundError,
    ProviderConfigError,
    UpstreamServiceError,
    ValidationError,
)
from complyrag.domain.enums import MergePolicy
from complyrag.persistence.repos import documents as documents_repo
from complyrag.persistence.repos import risks as risks_repo
from complyrag.persistence.repos import rules as rules_repo
from complyrag.providers.extraction.base import TextExtractor
from complyrag.providers.llm.base import CompletionProvider
from complyrag.providers.storage.base import ContentStorage
from complyrag.services.authz import RISK_EDIT_ROLES, SUGGEST_ROLES, Principal, require_roles, require_view
from complyrag.services.resilience import RetryPolicy, call_upstream
from complyrag.services.suggestions.normalize import (
    RiskAssessment,
    RiskCandidate,
    RuleCandidate,
    normalize_assessment,
    normalize_risk,
    normalize_rule,
)
from complyrag.services.suggestions.parsing import (
    ParsedWrapped,
    Unparseable,
    candidate_items,
    parse_candidates,
    parse_object,
)
from complyrag.services.suggestions.prompts import (
    build_assessment_prompt,
    build_risk_prompt,
    build_rule_prompt,
)
from complyrag.services.text import load_version_text


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _unrated(error: str) -> RiskAssessment:
    assessment = normalize_assessment({})
    assessment.errors.append(error)
    return assessment


@dataclass
class MergedRecord:
    business_id: str
    label: str
    created: bool


@dataclass
class DocumentText:
    document_id: str
    name: str
    text: str


@dataclass
class SuggestionResult:
    document_id: str
    document_name: str
    rules: list[MergedRecord] = field(default_factory=list)
    risks: list[MergedRecord] = field(default_factory=list)
    # Absorbed completion/parse failures; never raised.
    errors: list[str] = field(default_factory=list)
    # Candidates dropped for a missing name/title.
    skipped: list[str] = field(default_factory=list)


class SuggestionEngine:
    """Mines rule and risk candidates from document text and merges them idempotently."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ContentStorage,
        extractor: TextExtractor,
        completion: CompletionProvider,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._extractor = extractor
        self._completion = completion
        self._settings = settings or get_settings()
        policy = (self._settings.suggestion_merge_policy or "").lower()
        if policy not in {p.value for p in MergePolicy}:
            raise ProviderConfigError(f"Unsupported suggestion merge policy: {policy}")
        self._merge_policy = policy

    async def suggest_entities(self, document_id: str, principal: Principal | None = None) -> SuggestionResult:
        if principal is not None:
            require_roles(principal, SUGGEST_ROLES, "request suggestions")
        doc_text = await self.load_text(document_id, principal)
        return await self.process(doc_text)

    async def load_text(self, document_id: str, principal: Principal | None = None) -> DocumentText:
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                raise NotFoundError(f"document {document_id} not found")
            if principal is not None:
                require_view(principal, doc)
            if doc.current_version_id is None:
                raise NotFoundError(f"document {document_id} has no current version")
            version = await documents_repo.get_version(session, document_id, doc.current_version_id)
            if version is None:
                raise NotFoundError(f"current version of {document_id} not found")
            text = await load_version_text(session, self._storage, self._extractor, version)
            await session.commit()
            name = doc.name
        text = text.strip()
        if not text:
            raise ValidationError(f"document {document_id} has no extractable text")
        return DocumentText(document_id=document_id, name=name, text=text[: self._settings.suggestion_max_chars])

    async def process(self, doc_text: DocumentText) -> SuggestionResult:
        """Rules first, then risks with the rule candidates as context.

        Completion and parse failures land in result.errors; store failures raise.
        """
        result = SuggestionResult(document_id=doc_text.document_id, document_name=doc_text.name)
        now = _utc_now()

        rule_items = await self._complete("rules", build_rule_prompt(doc_text.name, doc_text.text), result)
        rule_candidates: list[RuleCandidate] = []
        for item in rule_items:
            candidate = normalize_rule(item, document_id=doc_text.document_id, now=now)
            if candidate is None:
                result.skipped.append("rule suggestion without a name")
                continue
            rule_candidates.append(candidate)
        result.rules = await self._merge_rules(rule_candidates)

        context = [(c.name, c.description) for c in rule_candidates]
        risk_items = await self._complete(
            "risks", build_risk_prompt(doc_text.name, doc_text.text, context, today=now.date()), result
        )
        risk_candidates: list[RiskCandidate] = []
        for item in risk_items:
            candidate = normalize_risk(
                item, document_id=doc_text.document_id, document_name=doc_text.name, now=now
            )
            if candidate is None:
                result.skipped.append("risk suggestion without a title")
                continue
            risk_candidates.append(candidate)
        result.risks = await self._merge_risks(doc_text.document_id, risk_candidates)

        logger.info(
            "suggestions_merged document_id=%s rules=%s risks=%s errors=%s skipped=%s",
            doc_text.document_id,
            len(result.rules),
            len(result.risks),
            len(result.errors),
            len(result.skipped),
        )
        return result

    def _policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout_ms=self._settings.ext_call_timeout_ms,
            max_attempts=max(1, self._settings.ext_retry_max_attempts),
            backoff_ms=self._settings.ext_retry_backoff_ms,
        )

    async def assess_risk(self, description: str, principal: Principal | None = None) -> RiskAssessment:
        """Classify a free-text risk description without storing anything.

        Completion and parse failures come back as an unrated assessment with
        the reason in errors; a blank description raises ValidationError.
        """
        if principal is not None:
            require_roles(principal, RISK_EDIT_ROLES, "assess risks")
        text = (description or "").strip()
        if not text:
            raise ValidationError("description must not be empty")
        prompt = build_assessment_prompt(text[: self._settings.suggestion_max_chars])
        try:
            raw = await call_upstream(
                "completion", lambda: self._completion.complete(prompt), policy=self._policy()
            )
        except (UpstreamServiceError, ProviderConfigError) as exc:
            logger.warning("risk_assessment_completion_failed error=%s", exc)
            return _unrated(f"assessment: {exc}")
        parsed = parse_object(raw)
        if isinstance(parsed, Unparseable):
            logger.warning("risk_assessment_unparseable reason=%s", parsed.reason)
            return _unrated(f"assessment: unparseable completion ({parsed.reason})")
        assessment = normalize_assessment(parsed.fields)
        logger.info(
            "risk_assessed category=%s probability=%s impact=%s measures=%s",
            assessment.category,
            assessment.probability,
            assessment.impact,
            len(assessment.measures),
        )
        return assessment

    async def _complete(self, kind: str, prompt: str, result: SuggestionResult) -> list[dict]:
        try:
            raw = await call_upstream(
                "completion", lambda: self._completion.complete(prompt), policy=self._policy()
            )
        except (UpstreamServiceError, ProviderConfigError) as exc:
            logger.warning("suggestion_completion_failed kind=%s document_id=%s error=%s", kind, result.document_id, exc)
            result.errors.append(f"{kind}: {exc}")
            return []
        parsed = parse_candidates(raw)
        if isinstance(parsed, Unparseable):
            logger.warning("suggestion_unparseable kind=%s document_id=%s reason=%s", kind, result.document_id, parsed.reason)
            result.errors.append(f"{kind}: unparseable completion ({parsed.reason})")
        elif isinstance(parsed, ParsedWrapped):
            logger.info("suggestion_wrapped kind=%s key=%s", kind, parsed.key)
        return candidate_items(parsed)

    async def _merge_rules(self, candidates: list[RuleCandidate]) -> list[MergedRecord]:
        merged: list[MergedRecord] = []
        if not candidates:
            return merged
        async with self._session_factory() as session:
            for candidate in candidates:
                rule, created = await rules_repo.upsert_ai_rule(
                    session,
                    source_document_id=candidate.source_document_id,
                    name=candidate.name,
                    description=candidate.description,
                    category=candidate.category,
                    priority=candidate.priority,
                    status=candidate.status,
                    tags=candidate.tags,
                    ai_updated_at=candidate.ai_updated_at,
                    merge_policy=self._merge_policy,
                )
                merged.append(MergedRecord(business_id=rule.rule_id, label=rule.name, created=created))
            await session.commit()
        return merged

    async def _merge_risks(self, document_id: str, candidates: list[RiskCandidate]) -> list[MergedRecord]:
        merged: list[MergedRecord] = []
        if not candidates:
            return merged
        async with self._session_factory() as session:
            # Related rule names resolve against every rule stored for this document.
            stored_rules = await rules_repo.list_rules_for_document(session, document_id)
            rule_ids_by_name = {rule.name.casefold(): rule.rule_id for rule in stored_rules}
            for candidate in candidates:
                linked = [
                    rule_ids_by_name[name.casefold()]
                    for name in candidate.related_rules
                    if name.casefold() in rule_ids_by_name
                ]
                risk, created = await risks_repo.upsert_ai_risk(
                    session,
                    source_document_id=candidate.source_document_id,
                    title=candidate.title,
                    description=candidate.description,
                    source=candidate.source,
                    category=candidate.category,
                    probability=candidate.probability,
                    impact=candidate.impact,
                    status=candidate.status,
                    identified_date=candidate.identified_date,
                    linked_rule_ids=sorted(set(linked)),
                    ai_updated_at=candidate.ai_updated_at,
                    merge_policy=self._merge_policy,
                )
                if candidate.mitigations:
                    # Re-suggestions only add measures the risk does not list yet.
                    known = {m.description.casefold() for m in await risks_repo.list_mitigations(session, risk.id)}
                    fresh = [text for text in candidate.mitigations if text.casefold() not in known]
                    if fresh:
                        await risks_repo.add_mitigations(session, risk.id, [{"description": text} for text in fresh])
                merged.append(MergedRecord(business_id=risk.risk_id, label=risk.title, created=created))
            await session.commit()
        return merged

