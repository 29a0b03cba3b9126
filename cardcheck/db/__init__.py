from cardcheck.db.database import async_session_factory, get_session, init_db
from cardcheck.db.operations import (
    add_card_if_new,
    add_variation_if_new,
    checklist_to_model,
    create_checklist,
    delete_checklist,
    delete_missing_checklist,
    find_checklist,
    get_checklist_by_id,
    get_checklist_by_key,
    get_missing_checklist,
    get_or_create_checklist,
    list_checklists,
    list_missing_checklists,
    mark_enriched,
    missing_checklist_to_model,
    record_missing_checklist,
    save_card,
)

__all__ = [
    "add_card_if_new",
    "add_variation_if_new",
    "async_session_factory",
    "checklist_to_model",
    "create_checklist",
    "delete_checklist",
    "delete_missing_checklist",
    "find_checklist",
    "get_checklist_by_id",
    "get_checklist_by_key",
    "get_missing_checklist",
    "get_or_create_checklist",
    "get_session",
    "init_db",
    "list_checklists",
    "list_missing_checklists",
    "mark_enriched",
    "missing_checklist_to_model",
    "record_missing_checklist",
    "save_card",
]
