"""Paper, annotation and usage persistence on SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from skim.errors import SkimError
from skim.models import Annotation, Paper, SourceKind, UsageRecord

logger = logging.getLogger(__name__)

# A conflicting row can be deleted between the insert and the read of it.
_INSERT_ATTEMPTS = 3

_SCHEMA = """
CREATE TABLE IF NOT EXISTS papers (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    source_url TEXT,
    source_kind TEXT NOT NULL,
    pdf_url TEXT,
    title TEXT NOT NULL,
    authors TEXT NOT NULL DEFAULT '[]',
    abstract TEXT,
    extracted_markdown TEXT,
    summary TEXT,
    rating INTEGER,
    category TEXT NOT NULL DEFAULT 'Other',
    tags TEXT NOT NULL DEFAULT '[]',
    published_date TEXT,
    added_date TEXT NOT NULL,
    is_read INTEGER NOT NULL DEFAULT 0,
    UNIQUE(owner_id, source_url)
);

CREATE TABLE IF NOT EXISTS annotations (
    id TEXT PRIMARY KEY,
    paper_id TEXT NOT NULL REFERENCES papers(id) ON DELETE CASCADE,
    owner_id TEXT NOT NULL,
    selected_text TEXT,
    note TEXT,
    ai_response TEXT,
    page_number INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS usage (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    action TEXT NOT NULL,
    cost_estimate REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS collection_papers (
    collection_id TEXT NOT NULL,
    paper_id TEXT NOT NULL REFERENCES papers(id) ON DELETE CASCADE,
    added_at TEXT NOT NULL,
    PRIMARY KEY (collection_id, paper_id)
);

CREATE INDEX IF NOT EXISTS idx_papers_owner ON papers(owner_id);
CREATE INDEX IF NOT EXISTS idx_papers_added_date ON papers(added_date);
CREATE INDEX IF NOT EXISTS idx_annotations_paper ON annotations(paper_id);
CREATE INDEX IF NOT EXISTS idx_usage_owner ON usage(owner_id, created_at);
"""


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _row_to_paper(row: sqlite3.Row) -> Paper:
    return Paper(
        id=row["id"],
        owner_id=row["owner_id"],
        source_url=row["source_url"],
        source_kind=SourceKind(row["source_kind"]),
        pdf_url=row["pdf_url"],
        title=row["title"],
        authors=json.loads(row["authors"] or "[]"),
        abstract=row["abstract"],
        extracted_markdown=row["extracted_markdown"],
        summary=row["summary"],
        rating=row["rating"],
        category=row["category"],
        tags=json.loads(row["tags"] or "[]"),
        published_date=row["published_date"],
        added_date=row["added_date"],
        is_read=bool(row["is_read"]),
    )


def _row_to_annotation(row: sqlite3.Row) -> Annotation:
    return Annotation(**{k: row[k] for k in row.keys()})


class PaperStore:
    """Repository for papers and everything hanging off them."""

    def __init__(self, db_path: Path | str, pdf_dir: Path | str):
        self.db_path = Path(db_path)
        self.pdf_dir = Path(pdf_dir)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
            conn.commit()

    # ------------------------------------------------------------------
    # Papers
    # ------------------------------------------------------------------

    def _select_by_url(self, conn: sqlite3.Connection, owner_id: str, source_url: Optional[str]) -> Optional[Paper]:
        row = conn.execute(
            "SELECT * FROM papers WHERE owner_id = ? AND source_url = ?",
            (owner_id, source_url),
        ).fetchone()
        return _row_to_paper(row) if row else None

    def find_by_owner_and_url(self, owner_id: str, source_url: str) -> Optional[Paper]:
        with self._connection() as conn:
            return self._select_by_url(conn, owner_id, source_url)

    def insert_paper(self, paper: Paper) -> tuple[Paper, bool]:
        """
        Insert `paper` unless the owner already has one for the same source URL.

        The unique (owner_id, source_url) constraint makes check-and-insert a
        single statement, so concurrent submissions cannot both insert. The
        conflicting row is read in the same transaction; if it was deleted
        before that read, the insert is tried again.

        Returns:
            (stored paper, True) when inserted, (existing paper, False) otherwise
        """
        params = (
            paper.id,
            paper.owner_id,
            paper.source_url,
            paper.source_kind.value,
            paper.pdf_url,
            paper.title,
            json.dumps(paper.authors),
            paper.abstract,
            paper.extracted_markdown,
            paper.summary,
            paper.rating,
            paper.category,
            json.dumps(paper.tags),
            paper.published_date,
            paper.added_date,
            int(paper.is_read),
        )
        for _ in range(_INSERT_ATTEMPTS):
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO papers
                    (id, owner_id, source_url, source_kind, pdf_url, title, authors, abstract,
                     extracted_markdown, summary, rating, category, tags, published_date, added_date, is_read)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(owner_id, source_url) DO NOTHING
                    """,
                    params,
                )
                if cursor.rowcount > 0:
                    conn.commit()
                    return paper, True
                existing = self._select_by_url(conn, paper.owner_id, paper.source_url)
                conn.commit()
            if existing is not None:
                return existing, False
            logger.info("conflicting paper for owner=%s url=%r vanished, retrying insert",
                        paper.owner_id, paper.source_url)
        raise SkimError("Could not save paper", stage="saving")

    def get_paper(self, paper_id: str, owner_id: str) -> Optional[Paper]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM papers WHERE id = ? AND owner_id = ?", (paper_id, owner_id)
            ).fetchone()
        return _row_to_paper(row) if row else None

    def list_papers(self, owner_id: str) -> list[Paper]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM papers WHERE owner_id = ? ORDER BY added_date DESC", (owner_id,)
            ).fetchall()
        return [_row_to_paper(r) for r in rows]

    def count_papers(self, owner_id: str, start: Optional[str] = None, end: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) FROM papers WHERE owner_id = ?"
        params: list = [owner_id]
        if start and end:
            sql += " AND added_date >= ? AND added_date < ?"
            params += [start, end]
        with self._connection() as conn:
            return conn.execute(sql, params).fetchone()[0]

    def set_read(self, paper_id: str, owner_id: str, is_read: bool) -> Optional[Paper]:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE papers SET is_read = ? WHERE id = ? AND owner_id = ?",
                (int(is_read), paper_id, owner_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        return self.get_paper(paper_id, owner_id)

    def delete_paper(self, paper_id: str, owner_id: str) -> bool:
        """Delete a paper; annotations and collection memberships go with it."""
        paper = self.get_paper(paper_id, owner_id)
        if paper is None:
            return False
        with self._connection() as conn:
            conn.execute("DELETE FROM papers WHERE id = ? AND owner_id = ?", (paper_id, owner_id))
            conn.commit()
        if paper.source_kind == SourceKind.UPLOAD and paper.pdf_url:
            self.discard_upload(paper.pdf_url)
        return True

    # ------------------------------------------------------------------
    # Uploaded files
    # ------------------------------------------------------------------

    def save_upload(self, paper_id: str, data: bytes) -> str:
        self.pdf_dir.mkdir(parents=True, exist_ok=True)
        path = self.pdf_dir / f"{paper_id}.pdf"
        path.write_bytes(data)
        return str(path)

    def discard_upload(self, path: str) -> None:
        Path(path).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def insert_annotation(self, annotation: Annotation) -> Annotation:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO annotations
                (id, paper_id, owner_id, selected_text, note, ai_response, page_number, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    annotation.id,
                    annotation.paper_id,
                    annotation.owner_id,
                    annotation.selected_text,
                    annotation.note,
                    annotation.ai_response,
                    annotation.page_number,
                    annotation.created_at,
                ),
            )
            conn.commit()
        return annotation

    def list_annotations(self, paper_id: str, owner_id: str) -> list[Annotation]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM annotations WHERE paper_id = ? AND owner_id = ? ORDER BY created_at DESC",
                (paper_id, owner_id),
            ).fetchall()
        return [_row_to_annotation(r) for r in rows]

    # ------------------------------------------------------------------
    # Collection membership (collections themselves live elsewhere)
    # ------------------------------------------------------------------

    def add_to_collection(self, collection_id: str, paper_id: str) -> None:
        with self._connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO collection_papers (collection_id, paper_id, added_at) VALUES (?, ?, ?)",
                (collection_id, paper_id, utcnow()),
            )
            conn.commit()

    def collection_paper_ids(self, collection_id: str) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT paper_id FROM collection_papers WHERE collection_id = ? ORDER BY added_at",
                (collection_id,),
            ).fetchall()
        return [r["paper_id"] for r in rows]

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def insert_usage(self, record: UsageRecord) -> UsageRecord:
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO usage (id, owner_id, action, cost_estimate, created_at) VALUES (?, ?, ?, ?, ?)",
                (record.id, record.owner_id, record.action.value, record.cost_estimate, record.created_at),
            )
            conn.commit()
        return record

    def usage_totals(self, owner_id: str, start: Optional[str] = None, end: Optional[str] = None) -> tuple[int, float]:
        """(number of usage records, summed cost) for an owner, optionally within [start, end)."""
        sql = "SELECT COUNT(*), COALESCE(SUM(cost_estimate), 0) FROM usage WHERE owner_id = ?"
        params: list = [owner_id]
        if start and end:
            sql += " AND created_at >= ? AND created_at < ?"
            params += [start, end]
        with self._connection() as conn:
            count, total = conn.execute(sql, params).fetchone()
        return count, float(total)
