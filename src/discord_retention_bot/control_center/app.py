from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from discord_retention_bot.services.config_watcher import ConfigStore
from discord_retention_bot.services.worker_supervisor import WorkerSupervisor


class StepResultView(BaseModel):
    ok: bool
    deleted: int
    bulk_deleted: int
    candidates: int
    dry_run: bool
    error_kind: str
    error: str
    finished_at: str


class ChannelStatus(BaseModel):
    channel_id: int
    max_age_seconds: float
    dry_run: bool
    running: bool
    cursor_id: Optional[int] = None
    cursor_created_at: Optional[str] = None
    steps: int
    failed_steps: int
    deleted_total: int
    last_result: Optional[StepResultView] = None


def create_app(supervisor: WorkerSupervisor, config_store: Optional[ConfigStore] = None) -> FastAPI:
    app = FastAPI(title="Discord retention bot")

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        channels = supervisor.snapshot()
        payload: Dict[str, Any] = {
            "status": "ok",
            "channels": len(channels),
            "running": sum(1 for c in channels if c["running"]),
        }
        if config_store is not None:
            payload["delete_action_delay_seconds"] = config_store.delete_action_delay_seconds()
        return payload

    @app.get("/api/channels", response_model=List[ChannelStatus])
    async def api_channels() -> List[Dict[str, Any]]:
        return supervisor.snapshot()

    @app.get("/api/channels/{channel_id}", response_model=ChannelStatus)
    async def api_channel(channel_id: int) -> Dict[str, Any]:
        worker = supervisor.workers.get(channel_id)
        if worker is None:
            raise HTTPException(status_code=404, detail="channel not configured")
        return worker.snapshot()

    return app
