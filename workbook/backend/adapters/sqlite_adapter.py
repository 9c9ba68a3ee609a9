from __future__ import annotations

import asyncio
import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from workbook.backend import constants


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _get_db_path(db_path: Optional[str]) -> str:
	if db_path:
		return db_path
	return os.getenv("WORKBOOK_DB_PATH", "").strip() or constants.DEFAULT_DB_PATH


def _connect(path: str) -> sqlite3.Connection:
	conn = sqlite3.connect(path, timeout=constants.SQLITE_BUSY_TIMEOUT_MS / 1000)
	conn.execute("PRAGMA journal_mode=WAL")
	conn.execute("PRAGMA synchronous=NORMAL")
	conn.execute(f"PRAGMA busy_timeout={constants.SQLITE_BUSY_TIMEOUT_MS}")
	conn.row_factory = sqlite3.Row
	return conn


def _connect_readonly(path: str) -> sqlite3.Connection:
	# mode=ro never creates the file or changes the journal mode.
	uri = Path(path).absolute().as_uri() + "?mode=ro"
	conn = sqlite3.connect(uri, uri=True, timeout=constants.SQLITE_BUSY_TIMEOUT_MS / 1000)
	conn.execute(f"PRAGMA busy_timeout={constants.SQLITE_BUSY_TIMEOUT_MS}")
	conn.row_factory = sqlite3.Row
	return conn


def _loads(raw: Optional[str]) -> Any:
	if raw is None:
		return None
	try:
		return json.loads(raw)
	except json.JSONDecodeError:
		return None


def init_db(db_path: Optional[str] = None) -> None:
	path = _get_db_path(db_path)
	Path(path).parent.mkdir(parents=True, exist_ok=True)
	conn = _connect(path)
	try:
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS assessments (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				user_id TEXT NOT NULL,
				assessment_type TEXT NOT NULL,
				responses TEXT NOT NULL,
				completed_at TEXT NOT NULL
			)
			"""
		)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS workbook_progress (
				user_id TEXT NOT NULL,
				chapter_id INTEGER NOT NULL,
				section_id TEXT NOT NULL,
				completed INTEGER NOT NULL DEFAULT 0,
				responses TEXT,
				updated_at TEXT NOT NULL,
				PRIMARY KEY (user_id, chapter_id, section_id)
			)
			"""
		)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS ai_insights (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				user_id TEXT NOT NULL,
				insight_type TEXT NOT NULL,
				title TEXT NOT NULL,
				description TEXT NOT NULL,
				confidence INTEGER,
				actionable INTEGER NOT NULL DEFAULT 0,
				acknowledged INTEGER NOT NULL DEFAULT 0,
				created_at TEXT NOT NULL
			)
			"""
		)
		conn.commit()
	finally:
		conn.close()


def insert_assessment(
	user_id: str,
	assessment_type: str,
	responses: List[Dict[str, Any]],
	completed_at: Optional[str] = None,
	db_path: Optional[str] = None,
) -> Dict[str, Any]:
	init_db(db_path)
	completed = completed_at or _now_iso()
	conn = _connect(_get_db_path(db_path))
	try:
		conn.execute(
			"""
			INSERT INTO assessments (user_id, assessment_type, responses, completed_at)
			VALUES (?, ?, ?, ?)
			""",
			(user_id, assessment_type, json.dumps(responses), completed),
		)
		conn.commit()
	finally:
		conn.close()
	return {
		"userId": user_id,
		"assessmentType": assessment_type,
		"responses": responses,
		"completedAt": completed,
	}


def upsert_progress(
	user_id: str,
	chapter_id: int,
	section_id: str,
	completed: bool,
	responses: Any = None,
	updated_at: Optional[str] = None,
	db_path: Optional[str] = None,
) -> Dict[str, Any]:
	init_db(db_path)
	updated = updated_at or _now_iso()
	conn = _connect(_get_db_path(db_path))
	try:
		conn.execute(
			"""
			INSERT INTO workbook_progress (user_id, chapter_id, section_id, completed, responses, updated_at)
			VALUES (?, ?, ?, ?, ?, ?)
			ON CONFLICT(user_id, chapter_id, section_id)
			DO UPDATE SET completed=excluded.completed, responses=excluded.responses, updated_at=excluded.updated_at
			""",
			(user_id, chapter_id, section_id, int(completed), json.dumps(responses), updated),
		)
		conn.commit()
	finally:
		conn.close()
	return {
		"userId": user_id,
		"chapterId": chapter_id,
		"sectionId": section_id,
		"completed": completed,
		"updatedAt": updated,
	}


def insert_insight(
	user_id: str,
	insight_type: str,
	title: str,
	description: str,
	confidence: Optional[int] = None,
	actionable: bool = False,
	acknowledged: bool = False,
	created_at: Optional[str] = None,
	db_path: Optional[str] = None,
) -> Dict[str, Any]:
	init_db(db_path)
	created = created_at or _now_iso()
	conn = _connect(_get_db_path(db_path))
	try:
		cursor = conn.execute(
			"""
			INSERT INTO ai_insights
				(user_id, insight_type, title, description, confidence, actionable, acknowledged, created_at)
			VALUES (?, ?, ?, ?, ?, ?, ?, ?)
			""",
			(user_id, insight_type, title, description, confidence, int(actionable), int(acknowledged), created),
		)
		conn.commit()
		insight_id = cursor.lastrowid
	finally:
		conn.close()
	return {
		"id": insight_id,
		"userId": user_id,
		"insightType": insight_type,
		"title": title,
		"description": description,
		"confidence": confidence,
		"actionable": actionable,
		"acknowledged": acknowledged,
		"createdAt": created,
	}


def get_assessments(user_id: str, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
	conn = _connect_readonly(_get_db_path(db_path))
	try:
		rows = conn.execute(
			"""
			SELECT assessment_type, responses, completed_at
			FROM assessments
			WHERE user_id = ?
			ORDER BY completed_at ASC, id ASC
			""",
			(user_id,),
		).fetchall()
	finally:
		conn.close()
	return [
		{
			"assessmentType": row["assessment_type"],
			"responses": _loads(row["responses"]) or [],
			"completedAt": row["completed_at"],
		}
		for row in rows
	]


def get_progress(user_id: str, chapter_id: Optional[int] = None, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
	query = """
		SELECT chapter_id, section_id, completed, updated_at
		FROM workbook_progress
		WHERE user_id = ?
	"""
	params: List[Any] = [user_id]
	if chapter_id is not None:
		query += " AND chapter_id = ?"
		params.append(chapter_id)
	query += " ORDER BY updated_at ASC"
	conn = _connect_readonly(_get_db_path(db_path))
	try:
		rows = conn.execute(query, params).fetchall()
	finally:
		conn.close()
	return [
		{
			"chapterId": row["chapter_id"],
			"sectionId": row["section_id"],
			"completed": bool(row["completed"]),
			"updatedAt": row["updated_at"],
		}
		for row in rows
	]


def get_insights(user_id: str, acknowledged: Optional[bool] = None, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
	query = """
		SELECT id, insight_type, title, description, confidence, actionable, acknowledged, created_at
		FROM ai_insights
		WHERE user_id = ?
	"""
	params: List[Any] = [user_id]
	if acknowledged is not None:
		query += " AND acknowledged = ?"
		params.append(int(acknowledged))
	query += " ORDER BY created_at ASC, id ASC"
	conn = _connect_readonly(_get_db_path(db_path))
	try:
		rows = conn.execute(query, params).fetchall()
	finally:
		conn.close()
	return [
		{
			"id": row["id"],
			"insightType": row["insight_type"],
			"title": row["title"],
			"description": row["description"],
			"confidence": row["confidence"],
			"actionable": bool(row["actionable"]),
			"acknowledged": bool(row["acknowledged"]),
			"createdAt": row["created_at"],
		}
		for row in rows
	]


class SqliteHistorySource:
	"""Read-only history for the context aggregator. Queries run off the event loop."""

	def __init__(self, db_path: Optional[str] = None):
		self.db_path = _get_db_path(db_path)

	async def get_assessments(self, user_id: str) -> List[Dict[str, Any]]:
		return await asyncio.to_thread(get_assessments, user_id, self.db_path)

	async def get_progress(self, user_id: str, chapter_id: Optional[int] = None) -> List[Dict[str, Any]]:
		return await asyncio.to_thread(get_progress, user_id, chapter_id, self.db_path)

	async def get_insights(self, user_id: str, acknowledged: Optional[bool] = None) -> List[Dict[str, Any]]:
		return await asyncio.to_thread(get_insights, user_id, acknowledged, self.db_path)
