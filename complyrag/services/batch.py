from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.config import Settings, get_settings
from complyrag.core.errors import PartialBatchFailure
from complyrag.persistence.repos import documents as documents_repo
from complyrag.services.authz import BATCH_ROLES, Principal, require_roles
from complyrag.services.suggestions.engine import SuggestionEngine, SuggestionResult


logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    rules_processed: int = 0
    risks_processed: int = 0
    errors_count: int = 0
    documents_total: int = 0
    cancelled: bool = False
    summary: list[str] = field(default_factory=list)
    failures: list[PartialBatchFailure] = field(default_factory=list)


@dataclass
class _DocumentOutcome:
    lines: list[str]
    rules: int = 0
    risks: int = 0
    failure: PartialBatchFailure | None = None
    started: bool = True


def _result_lines(result: SuggestionResult) -> list[str]:
    lines: list[str] = []
    for record in result.rules:
        action = "created" if record.created else "updated"
        lines.append(f'    [OK] Rule {action}: "{record.label}" ({record.business_id})')
    for record in result.risks:
        action = "created" if record.created else "updated"
        lines.append(f'    [OK] Risk {action}: "{record.label}" ({record.business_id})')
    for message in result.skipped:
        lines.append(f"    [WARNING] {message} skipped for document {result.document_id}")
    for message in result.errors:
        lines.append(f"    [WARNING] {message}")
    return lines


class BatchOrchestrator:
    """Runs the suggestion engine across every document with per-document isolation.

    A document failure is counted and summarized; only enumeration failure
    aborts the run. Documents run sequentially unless batch_max_concurrency > 1.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        engine: SuggestionEngine,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._settings = settings or get_settings()

    async def run(
        self,
        *,
        cancel_event: asyncio.Event | None = None,
        principal: Principal | None = None,
    ) -> BatchSummary:
        if principal is not None:
            require_roles(principal, BATCH_ROLES, "run batch suggestions")

        async with self._session_factory() as session:
            documents = [(doc.id, doc.name) for doc in await documents_repo.list_documents(session)]

        summary = BatchSummary(documents_total=len(documents))
        if not documents:
            summary.summary.append("No documents found for processing.")
            return summary
        summary.summary.append(f"Starting batch run for {len(documents)} document(s)...")
        logger.info("batch_start documents=%s", len(documents))

        semaphore = asyncio.Semaphore(max(1, int(self._settings.batch_max_concurrency)))

        async def _guarded(document_id: str, name: str) -> _DocumentOutcome:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return _DocumentOutcome(lines=[], started=False)
                return await self._process_document(document_id, name)

        # gather keeps enumeration order, so summary lines stay grouped per document.
        outcomes = await asyncio.gather(*(_guarded(doc_id, name) for doc_id, name in documents))

        not_started = 0
        for outcome in outcomes:
            if not outcome.started:
                not_started += 1
                continue
            summary.summary.extend(outcome.lines)
            summary.rules_processed += outcome.rules
            summary.risks_processed += outcome.risks
            if outcome.failure is not None:
                summary.errors_count += 1
                summary.failures.append(outcome.failure)

        if not_started:
            summary.cancelled = True
            summary.summary.append(f"Batch run cancelled; {not_started} document(s) not started.")
        else:
            summary.summary.append("Batch run completed.")
        logger.info(
            "batch_done rules=%s risks=%s errors=%s cancelled=%s",
            summary.rules_processed,
            summary.risks_processed,
            summary.errors_count,
            summary.cancelled,
        )
        return summary

    async def _process_document(self, document_id: str, name: str) -> _DocumentOutcome:
        header = f"--- Processing document: {name} (ID: {document_id}) ---"
        try:
            doc_text = await self._engine.load_text(document_id)
            result = await self._engine.process(doc_text)
        except Exception as exc:  # noqa: BLE001 - one document must not abort the run
            logger.exception("batch_document_failed document_id=%s", document_id)
            message = str(exc) or type(exc).__name__
            return _DocumentOutcome(
                lines=[header, f"    [ERROR] Processing document {name} (ID: {document_id}) failed: {message}"],
                failure=PartialBatchFailure(document_id, message),
            )
        return _DocumentOutcome(
            lines=[header, *_result_lines(result)],
            rules=len(result.rules),
            risks=len(result.risks),
        )
