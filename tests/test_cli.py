import yaml

from autoseo.cli import main
from autoseo.models import KeywordStatus
from autoseo.queue import JobQueue
from autoseo.services.keywords_service import list_keywords


def test_keywords_import_and_plan(tmp_path, conn, db_path, project):
    source = tmp_path / "keywords.yml"
    source.write_text(
        yaml.safe_dump({"keywords": ["best crm", {"keyword": "crm pricing", "search_volume": 400}, "best crm"]}),
        encoding="utf-8",
    )

    code = main(["--db", db_path, "keywords", "import", project.id, str(source), "--plan", "--start", "2026-04-01"])

    assert code == 0
    keywords = list_keywords(conn, project.id)
    assert [keyword.keyword for keyword in keywords] == ["best crm", "crm pricing"]
    assert {keyword.status for keyword in keywords} == {KeywordStatus.PLANNED}
    assert keywords[1].search_volume == 400


def test_config_show_and_set(tmp_path, db_path, capsys, monkeypatch):
    monkeypatch.setenv("AUTOSEO_LOG_LEVEL", "WARNING")
    assert main(["--db", db_path, "config", "show"]) == 0
    shown = yaml.safe_load(capsys.readouterr().out)
    assert shown["queues"]["publishing"]["concurrency"] == 5

    shown["queues"]["publishing"]["concurrency"] = 8
    good = tmp_path / "config.yml"
    good.write_text(yaml.safe_dump(shown), encoding="utf-8")
    assert main(["--db", db_path, "config", "set", str(good)]) == 0

    main(["--db", db_path, "config", "show"])
    assert yaml.safe_load(capsys.readouterr().out)["queues"]["publishing"]["concurrency"] == 8

    bad = tmp_path / "bad.yml"
    bad.write_text(yaml.safe_dump({"app": {"name": "x"}}), encoding="utf-8")
    assert main(["--db", db_path, "config", "set", str(bad)]) == 1


def test_jobs_enqueue_and_retry(conn, db_path, config):
    assert main(["--db", db_path, "jobs", "enqueue", "analytics_sync", "--payload", '{"project_id": "p1"}']) == 0
    assert main(["--db", db_path, "jobs", "enqueue", "analytics_sync", "--payload", "{not json"]) == 1

    (job,) = JobQueue(conn, config).list_jobs()
    assert job.payload == {"project_id": "p1"}
    assert main(["--db", db_path, "jobs", "list", "--queue", "analytics_sync"]) == 0
    assert main(["--db", db_path, "jobs", "dead"]) == 0
    assert main(["--db", db_path, "jobs", "retry", job.id]) == 1
