"""Celery tasks for archive imports."""
import logging

from app.models.base import get_sync_session_factory
from app.services.archive_extraction import mark_import_failed, run_import_extraction
from app.services.llm.orchestrator import LLMOrchestrator
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.archive_tasks.extract_archive_entities")
def extract_archive_entities(import_id: int):
    """Run LLM entity extraction over every chunk of an archive import."""
    db = get_sync_session_factory()()
    try:
        stats = run_import_extraction(db, import_id, LLMOrchestrator())
        return {"import_id": import_id, "stats": stats}
    except Exception as exc:
        logger.exception("[ExtractEntities] Import %s failed", import_id)
        db.rollback()
        mark_import_failed(db, import_id, str(exc))
        return {"import_id": import_id, "error": str(exc)}
    finally:
        db.close()
