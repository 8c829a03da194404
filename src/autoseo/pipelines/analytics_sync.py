from __future__ import annotations

import logging
from typing import Any, Protocol

from ..errors import ValidationFailed
from ..models import Project
from ..services.projects_service import require_project
from ..storage import insert_analytics_snapshot
from ..utils import log_event

METRIC_FIELDS = ("clicks", "impressions", "ctr", "position")


class AnalyticsClient(Protocol):
    def fetch_metrics(self, project: Project) -> dict[str, Any]: ...


def sync_analytics(
    conn: Any,
    payload: dict[str, Any],
    client: AnalyticsClient | None,
    *,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Pull search metrics for one project and record a snapshot.

    Without a client the sync is recorded as ``skipped`` so operators can see
    that analytics were never configured.
    """
    logger = logger or logging.getLogger("autoseo.pipelines.analytics_sync")
    project_id = str(payload.get("project_id") or "").strip()
    if not project_id:
        raise ValidationFailed("project_id is required")
    project = require_project(conn, project_id)
    if client is None:
        snapshot_id = insert_analytics_snapshot(
            conn, project_id, "skipped", None, {"reason": "analytics_not_configured"}
        )
        log_event(logger, logging.INFO, "analytics_sync_skipped", project_id=project_id)
        return {"project_id": project_id, "snapshot_id": snapshot_id, "status": "skipped"}

    raw = client.fetch_metrics(project) or {}
    metrics = {name: raw.get(name) for name in METRIC_FIELDS}
    detail = {key: value for key, value in raw.items() if key not in METRIC_FIELDS}
    snapshot_id = insert_analytics_snapshot(conn, project_id, "ok", metrics, detail or None)
    log_event(
        logger,
        logging.INFO,
        "analytics_synced",
        project_id=project_id,
        clicks=metrics["clicks"],
        impressions=metrics["impressions"],
    )
    return {"project_id": project_id, "snapshot_id": snapshot_id, "status": "ok", **metrics}
