import json
import sqlite3
import uuid
import datetime as dt
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

DB_PATH = Path("data") / "app.db"


def get_conn(db_path: Path = DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path = DB_PATH) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with get_conn(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS images (
                id TEXT PRIMARY KEY,
                filename TEXT,
                blob_ref TEXT,

                description TEXT,
                categories TEXT,
                tags TEXT,
                colours TEXT,

                width INTEGER,
                height INTEGER,
                format TEXT,

                created_at TEXT
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_images_created_at ON images(created_at)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_images_blob_ref ON images(blob_ref)")


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def insert_records(records: Iterable[Dict[str, Any]], db_path: Path = DB_PATH) -> int:
    """
    Inserts staged records ({"filename", "imageFileId", "data": {...}}).
    Returns the number of rows written.
    """
    created_at = _now_iso()
    rows = []
    for record in records:
        data = record.get("data") or {}
        rows.append(
            (
                str(uuid.uuid4()),
                record.get("filename"),
                record.get("imageFileId"),
                data.get("GPT_S_Description"),
                json.dumps(data.get("Categories") or []),
                json.dumps(data.get("Tags") or []),
                json.dumps(data.get("Colours") or []),
                data.get("Width"),
                data.get("Height"),
                data.get("Format"),
                created_at,
            )
        )

    with get_conn(db_path) as conn:
        conn.executemany(
            """
            INSERT INTO images (
                id, filename, blob_ref, description, categories, tags, colours,
                width, height, format, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        conn.commit()
    return len(rows)


def row_to_dict(r: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": r["id"],
        "filename": r["filename"],
        "blob_ref": r["blob_ref"],
        "description": r["description"],
        "categories": json.loads(r["categories"] or "[]"),
        "tags": json.loads(r["tags"] or "[]"),
        "colours": json.loads(r["colours"] or "[]"),
        "width": r["width"],
        "height": r["height"],
        "format": r["format"],
        "created_at": r["created_at"],
    }


def list_images(db_path: Path = DB_PATH) -> List[Dict[str, Any]]:
    with get_conn(db_path) as conn:
        rows = conn.execute("SELECT * FROM images ORDER BY created_at DESC").fetchall()
    return [row_to_dict(r) for r in rows]


def get_image(image_id: str, db_path: Path = DB_PATH) -> Optional[Dict[str, Any]]:
    with get_conn(db_path) as conn:
        r = conn.execute("SELECT * FROM images WHERE id=?", (image_id,)).fetchone()
    return row_to_dict(r) if r else None
