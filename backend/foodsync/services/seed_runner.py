"""
Resumable seeding of the canonical product table.

A seed run walks a fixed list of search terms page by page. Each call to
run_seed_step() performs exactly one (term, page) unit of work and persists
the cursor and counters, so an external scheduler can keep calling with the
same run id until the run reports "done". A failed unit leaves the cursor
where it was and the next call retries it.

The transitions themselves (advance, record_failure, mark_done) are pure
functions over SeedRun so they can be tested without network or database.
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import (
    DEFAULT_LOCALE,
    OFF_SOURCE,
    SEED_DEFAULT_PAGE_SIZE,
    SEED_DEFAULT_TERMS,
    SEED_LOG_WINDOW,
    SEED_MAX_TERMS,
    SEED_MIN_PAGE_SIZE,
    MAX_PAGE_SIZE,
)
from ..errors import SeedRunNotFound, SeedStepFailure
from ..logger import get_logger
from .database import (
    db_json,
    db_placeholder,
    db_timestamp,
    fetch_all,
    fetch_one,
    load_json,
    parse_timestamp,
    utcnow,
)
from .food_products import upsert_food_products
from .normalizer import normalize_search_results

logger = get_logger(__name__)

STATUS_RUNNING = 'running'
STATUS_DONE = 'done'
STATUS_ERROR = 'error'


@dataclass(frozen=True)
class SeedCursor:
    term_index: int = 0
    page: int = 1

    def to_dict(self) -> Dict[str, int]:
        return {'termIndex': self.term_index, 'page': self.page}

    @classmethod
    def from_dict(cls, data: Any, default_page: int = 1) -> 'SeedCursor':
        data = data if isinstance(data, dict) else {}
        try:
            term_index = max(0, int(data.get('termIndex', 0)))
        except (TypeError, ValueError):
            term_index = 0
        try:
            page = max(1, int(data.get('page', default_page)))
        except (TypeError, ValueError):
            page = max(1, default_page)
        return cls(term_index=term_index, page=page)


@dataclass(frozen=True)
class SeedLogEntry:
    at: str
    level: str
    term: Optional[str]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {'at': self.at, 'level': self.level, 'term': self.term, 'message': self.message}


@dataclass(frozen=True)
class SeedRun:
    id: str
    locale: str
    terms: List[str]
    status: str = STATUS_RUNNING
    cursor: SeedCursor = field(default_factory=SeedCursor)
    processed_count: int = 0
    upserted_count: int = 0
    error_count: int = 0
    logs: List[SeedLogEntry] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def exhausted(self) -> bool:
        return self.cursor.term_index >= len(self.terms)

    @property
    def current_term(self) -> Optional[str]:
        if self.exhausted:
            return None
        return self.terms[self.cursor.term_index]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'runId': self.id,
            'locale': self.locale,
            'terms': list(self.terms),
            'status': self.status,
            'cursor': self.cursor.to_dict(),
            'processed': self.processed_count,
            'upserted': self.upserted_count,
            'errors': self.error_count,
            'logs': [entry.to_dict() for entry in self.logs],
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class StepResult:
    """Outcome of one successful unit of work."""
    term: str
    page: int
    items_seen: int
    items_written: int
    total_pages: int


# =============================================================================
# Pure transitions
# =============================================================================

def normalize_terms(values: Any) -> List[str]:
    """Trim, drop empties, dedupe in order and cap the list; default terms when empty or not a list."""
    if not values or not isinstance(values, (list, tuple)):
        return list(SEED_DEFAULT_TERMS)
    terms = [str(value if value is not None else '').strip() for value in values]
    terms = list(dict.fromkeys(term for term in terms if term))
    return terms[:SEED_MAX_TERMS] or list(SEED_DEFAULT_TERMS)


def clamp_seed_page_size(page_size: Any) -> int:
    try:
        value = int(page_size)
    except (TypeError, ValueError):
        return SEED_DEFAULT_PAGE_SIZE
    return max(SEED_MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, value))


def total_pages(payload: Any, page_size: int) -> int:
    """Page count reported upstream: page_count, else ceil(count / page_size), else 1."""
    if not isinstance(payload, dict):
        return 1
    try:
        page_count = int(payload.get('page_count') or 0)
    except (TypeError, ValueError):
        page_count = 0
    if page_count > 0:
        return page_count
    try:
        count = int(payload.get('count') or 0)
    except (TypeError, ValueError):
        count = 0
    if count > 0 and page_size > 0:
        return max(1, math.ceil(count / page_size))
    return 1


def next_cursor(cursor: SeedCursor, pages: int, items_seen: int) -> SeedCursor:
    """Move to the next page, or to the next term once this one is exhausted."""
    if cursor.page + 1 > pages or items_seen == 0:
        return SeedCursor(term_index=cursor.term_index + 1, page=1)
    return SeedCursor(term_index=cursor.term_index, page=cursor.page + 1)


def _append_log(logs: List[SeedLogEntry], entry: SeedLogEntry) -> List[SeedLogEntry]:
    return (list(logs) + [entry])[-SEED_LOG_WINDOW:]


def advance(run: SeedRun, result: StepResult, now: datetime) -> SeedRun:
    """Apply one successful unit of work to the run."""
    cursor = next_cursor(run.cursor, result.total_pages, result.items_seen)
    logs = run.logs
    if result.items_seen > 0:
        logs = _append_log(logs, SeedLogEntry(
            at=now.isoformat(), level='info', term=result.term,
            message=f'Upserted {result.items_written}',
        ))
    done = cursor.term_index >= len(run.terms)
    return replace(
        run,
        status=STATUS_DONE if done else STATUS_RUNNING,
        cursor=cursor,
        processed_count=run.processed_count + result.items_seen,
        upserted_count=run.upserted_count + result.items_written,
        logs=logs,
        updated_at=now,
    )


def record_failure(run: SeedRun, term: Optional[str], message: str, now: datetime) -> SeedRun:
    """Count the failure and log it; the cursor stays put so the unit is retried."""
    return replace(
        run,
        status=STATUS_ERROR,
        error_count=run.error_count + 1,
        logs=_append_log(run.logs, SeedLogEntry(
            at=now.isoformat(), level='error', term=term, message=message,
        )),
        updated_at=now,
    )


def mark_done(run: SeedRun, now: datetime) -> SeedRun:
    if run.status == STATUS_DONE:
        return run
    return replace(run, status=STATUS_DONE, updated_at=now)


# =============================================================================
# Persistence
# =============================================================================

def _row_to_run(row: Dict[str, Any]) -> SeedRun:
    logs = []
    for entry in load_json(row.get('logs'), []) or []:
        if isinstance(entry, dict):
            logs.append(SeedLogEntry(
                at=str(entry.get('at') or ''),
                level=str(entry.get('level') or 'info'),
                term=entry.get('term'),
                message=str(entry.get('message') or ''),
            ))
    terms = [str(term) for term in (load_json(row.get('terms'), []) or [])]
    return SeedRun(
        id=str(row['id']),
        locale=row.get('locale') or DEFAULT_LOCALE,
        terms=terms,
        status=row.get('status') or STATUS_RUNNING,
        cursor=SeedCursor.from_dict(load_json(row.get('cursor'), {})),
        processed_count=int(row.get('processed_count') or 0),
        upserted_count=int(row.get('upserted_count') or 0),
        error_count=int(row.get('error_count') or 0),
        logs=logs[-SEED_LOG_WINDOW:],
        created_at=parse_timestamp(row.get('created_at')),
        updated_at=parse_timestamp(row.get('updated_at')),
    )


def create_seed_run(conn, locale: str, terms: List[str], page: int = 1,
                    now: Optional[datetime] = None) -> SeedRun:
    """Insert a new run positioned at the first term and the requested page."""
    now = now or utcnow()
    run = SeedRun(
        id=str(uuid.uuid4()),
        locale=locale,
        terms=list(terms),
        cursor=SeedCursor(term_index=0, page=max(1, int(page))),
        created_at=now,
        updated_at=now,
    )
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    try:
        cursor.execute(
            f'''INSERT INTO off_seed_runs
               (id, locale, terms, status, cursor, processed_count, upserted_count,
                error_count, logs, created_at, updated_at)
               VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})''',
            (run.id, run.locale, db_json(conn, run.terms), run.status,
             db_json(conn, run.cursor.to_dict()), 0, 0, 0, db_json(conn, []),
             db_timestamp(conn, now), db_timestamp(conn, now))
        )
    finally:
        cursor.close()
    conn.commit()
    logger.info("Created seed run %s (%d terms, locale=%s)", run.id, len(run.terms), locale)
    return run


def load_seed_run(conn, run_id: str) -> Optional[SeedRun]:
    ph = db_placeholder(conn)
    row = fetch_one(conn, f'SELECT * FROM off_seed_runs WHERE id = {ph}', (run_id,))
    return _row_to_run(row) if row else None


def save_seed_run(conn, run: SeedRun) -> None:
    """Persist status, cursor, counters and logs of a run."""
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    try:
        cursor.execute(
            f'''UPDATE off_seed_runs SET
                   status = {ph}, cursor = {ph}, processed_count = {ph},
                   upserted_count = {ph}, error_count = {ph}, logs = {ph}, updated_at = {ph}
               WHERE id = {ph}''',
            (run.status, db_json(conn, run.cursor.to_dict()), run.processed_count,
             run.upserted_count, run.error_count,
             db_json(conn, [entry.to_dict() for entry in run.logs[-SEED_LOG_WINDOW:]]),
             db_timestamp(conn, run.updated_at or utcnow()), run.id)
        )
    finally:
        cursor.close()
    conn.commit()


def list_seed_runs(conn, limit: int = 20) -> List[SeedRun]:
    ph = db_placeholder(conn)
    rows = fetch_all(
        conn,
        f'SELECT * FROM off_seed_runs ORDER BY created_at DESC LIMIT {ph}',
        (max(1, min(100, int(limit))),)
    )
    return [_row_to_run(row) for row in rows]


# =============================================================================
# Driver
# =============================================================================

def progress_payload(run: SeedRun, term: Optional[str] = None,
                     page: Optional[int] = None) -> Dict[str, Any]:
    """Response body shared by the HTTP endpoint and the CLI."""
    return {
        'runId': run.id,
        'status': run.status,
        'progress': {
            'term': term,
            'page': page,
            'processed': run.processed_count,
            'upserted': run.upserted_count,
            'errors': run.error_count,
        },
        'next': None if run.status == STATUS_DONE else run.cursor.to_dict(),
    }


def run_seed_step(conn, client, run_id: str, page_size: int = SEED_DEFAULT_PAGE_SIZE,
                  now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Perform one unit of seeding work for run_id.

    Returns:
        Progress payload (runId, status, progress, next)

    Raises:
        SeedRunNotFound: run_id does not exist
        SeedStepFailure: fetch or upsert failed; the failure is persisted first
    """
    run = load_seed_run(conn, run_id)
    if run is None:
        raise SeedRunNotFound(f'Seed run {run_id} not found')

    if run.exhausted:
        done = mark_done(run, now or utcnow())
        if done is not run:
            save_seed_run(conn, done)
        return progress_payload(done)

    term = run.current_term
    page = run.cursor.page
    page_size = clamp_seed_page_size(page_size)

    try:
        payload = client.search(term, run.locale, page, page_size)
        items = normalize_search_results(payload, run.locale)
        written = upsert_food_products(conn, items, OFF_SOURCE, now=now) if items else 0
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error("Seed step failed: run=%s term=%s page=%d error=%s", run.id, term, page, e)
        failed = record_failure(run, term, f'Seeding failed: {e}', now or utcnow())
        save_seed_run(conn, failed)
        raise SeedStepFailure('Seeding failed for current batch.', run_id=run.id) from e

    result = StepResult(
        term=term,
        page=page,
        items_seen=len(items),
        items_written=written,
        total_pages=total_pages(payload, page_size),
    )
    updated = advance(run, result, now or utcnow())
    save_seed_run(conn, updated)
    logger.info(
        "Seed step: run=%s term=%s page=%d/%d items=%d next=%s",
        run.id, term, page, result.total_pages, len(items), updated.cursor.to_dict(),
    )
    return progress_payload(updated, term=term, page=page)
