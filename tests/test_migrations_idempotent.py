from autoseo.migrations import _get_migrations, apply_migrations
from autoseo.storage import init_db


def test_apply_migrations_idempotent(tmp_path):
    db_path = str(tmp_path / "state.sqlite3")
    conn = init_db(db_path)
    apply_migrations(conn)
    conn.close()
    conn = init_db(db_path)

    rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    versions = [row[0] for row in rows]
    expected = [version for version, _ in _get_migrations()]
    assert sorted(versions) == sorted(expected)
    assert len(versions) == len(set(versions))
