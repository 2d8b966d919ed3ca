from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from plany.core.notifications.toasts import Toast, ToastNotifier
from plany.core.stores.logs import LogEntry, LogKind, LogStore
from plany.core.stores.supplements import SupplementStore

from .deps import get_log_store, get_supplement_store, get_toast_notifier

router = APIRouter()


@router.get("/logs", response_model=list[LogEntry])
def list_logs(
    kind: LogKind | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    store: LogStore = Depends(get_log_store),
) -> list[LogEntry]:
    return store.list_entries(kind=kind, limit=limit)


@router.delete("/logs/{log_id}", response_model=LogEntry)
async def delete_log(log_id: str, store: LogStore = Depends(get_log_store)) -> LogEntry:
    return await store.delete(log_id)


@router.get("/supplements")
def list_supplements(store: SupplementStore = Depends(get_supplement_store)) -> dict[str, list[dict]]:
    return {
        "supplements": [item.model_dump(mode="json") for item in store.list_supplements()],
        "intakes": [item.model_dump(mode="json") for item in store.list_intakes()],
    }


@router.get("/toasts", response_model=list[Toast])
def list_toasts(
    limit: int = Query(default=20, ge=1, le=200),
    notifier: ToastNotifier = Depends(get_toast_notifier),
) -> list[Toast]:
    return notifier.recent(limit)
