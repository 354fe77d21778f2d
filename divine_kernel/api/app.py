"""
Divine Kernel API — FastAPI endpoints.

Exposes the deity engine via a REST API for:
- Deity state inspection and dial tuning
- Character attention inspection
- Manifestation polling, delivery and acknowledgement
- Dream checks on rest
- Active effect lookup
- Scheduler control and configuration
"""

import logging
import random
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from divine_kernel.attention.store import AttentionStore
from divine_kernel.decision.engine import DecisionEngine
from divine_kernel.deity.store import DeityStore
from divine_kernel.effects.store import EffectStore
from divine_kernel.ledger.store import (
    InMemoryKarmaLedger,
    InMemorySocialDirectory,
    KarmaLedger,
    SocialDirectory,
    WorldActivitySource,
)
from divine_kernel.manifestation.dispatcher import ManifestationDispatcher
from divine_kernel.manifestation.messages import MessageGenerator
from divine_kernel.manifestation.store import ManifestationStore
from divine_kernel.models.karma import DeityName
from divine_kernel.models.scheduler import EngineConfig, RestKind
from divine_kernel.scheduler.tick import TickScheduler
from divine_kernel.storage.database import Database

logger = logging.getLogger(__name__)


# --- Request/Response Models ---

class DialUpdateRequest(BaseModel):
    influence: Optional[float] = Field(default=None, ge=0, le=100)
    patience: Optional[float] = Field(default=None, ge=0, le=100)
    wrath: Optional[float] = Field(default=None, ge=0, le=100)
    benevolence: Optional[float] = Field(default=None, ge=0, le=100)
    global_cooldown_hours: Optional[float] = Field(default=None, ge=0)


class AcknowledgeRequest(BaseModel):
    response: Optional[str] = None


class DreamCheckRequest(BaseModel):
    rest_kind: RestKind = RestKind.FULL_REST


# --- Application Factory ---

def create_app(
    db: Optional[Database] = None,
    ledger: Optional[KarmaLedger] = None,
    social: Optional[SocialDirectory] = None,
    world: Optional[WorldActivitySource] = None,
    generator: Optional[MessageGenerator] = None,
    engine_config: Optional[EngineConfig] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Divine Kernel API shutting down")
        app.state.dispatcher.close()

    app = FastAPI(
        title="Divine Kernel API",
        description="Deity attention and intervention engine",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Initialize components
    database = db or Database()
    kl = ledger or InMemoryKarmaLedger()
    config = engine_config or EngineConfig()
    rng = rng or random.Random()

    attention_store = AttentionStore(database)
    deity_store = DeityStore(database, config.default_global_cooldown_hours)
    manifestation_store = ManifestationStore(database)
    effect_store = EffectStore(database)
    dispatcher = ManifestationDispatcher(
        db=database,
        attention_store=attention_store,
        deity_store=deity_store,
        manifestation_store=manifestation_store,
        effect_store=effect_store,
        generator=generator,
        config=config,
        rng=rng,
    )
    scheduler = TickScheduler(
        ledger=kl,
        attention_store=attention_store,
        deity_store=deity_store,
        manifestation_store=manifestation_store,
        effect_store=effect_store,
        dispatcher=dispatcher,
        engine=DecisionEngine(config, rng),
        social=social or InMemorySocialDirectory(),
        world=world,
        config=config,
    )

    # Store components on app state for access in endpoints
    app.state.db = database
    app.state.ledger = kl
    app.state.attention_store = attention_store
    app.state.deity_store = deity_store
    app.state.manifestation_store = manifestation_store
    app.state.effect_store = effect_store
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler

    # === DEITIES ===

    @app.get("/deities")
    def list_deities():
        """Both deities' current state."""
        return [s.model_dump(mode="json") for s in deity_store.all()]

    @app.get("/deities/{deity}")
    def get_deity(deity: DeityName):
        return deity_store.get(deity).model_dump(mode="json")

    @app.put("/deities/{deity}/dials")
    def update_dials(deity: DeityName, req: DialUpdateRequest):
        """Tune a deity's stat dials (operator only)."""
        dials = req.model_dump(exclude_none=True)
        if not dials:
            raise HTTPException(400, "No dials given")
        return deity_store.update_dials(deity, **dials).model_dump(mode="json")

    # === ATTENTION ===

    @app.get("/characters/{character_id}/attention")
    def get_attention(character_id: str, refresh: bool = False):
        """How closely each deity watches a character."""
        if refresh:
            records = scheduler.refresh_attention(character_id)
        else:
            records = attention_store.for_character(character_id)
        return [r.model_dump(mode="json") for r in records]

    # === MANIFESTATIONS ===

    @app.get("/characters/{character_id}/manifestations")
    def get_history(character_id: str, limit: int = 20, deity: Optional[DeityName] = None):
        """Recent manifestations, newest first."""
        records = manifestation_store.history(character_id, limit=limit, deity=deity)
        return [m.model_dump(mode="json") for m in records]

    @app.get("/characters/{character_id}/manifestations/undelivered")
    def get_undelivered(character_id: str):
        return [m.model_dump(mode="json") for m in manifestation_store.undelivered(character_id)]

    @app.get("/characters/{character_id}/manifestations/unacknowledged")
    def get_unacknowledged(character_id: str):
        return [
            m.model_dump(mode="json") for m in manifestation_store.unacknowledged(character_id)
        ]

    @app.get("/manifestations/{manifestation_id}")
    def get_manifestation(manifestation_id: str):
        manifestation = manifestation_store.get(manifestation_id)
        if not manifestation:
            raise HTTPException(404, "Manifestation not found")
        return manifestation.model_dump(mode="json")

    @app.post("/manifestations/{manifestation_id}/deliver")
    def deliver_manifestation(manifestation_id: str):
        """Mark delivered. Repeating the call changes nothing."""
        if not manifestation_store.get(manifestation_id):
            raise HTTPException(404, "Manifestation not found")
        changed = manifestation_store.mark_delivered(manifestation_id, datetime.utcnow())
        return {
            "changed": changed,
            "manifestation": manifestation_store.get(manifestation_id).model_dump(mode="json"),
        }

    @app.post("/manifestations/{manifestation_id}/acknowledge")
    def acknowledge_manifestation(manifestation_id: str, req: AcknowledgeRequest):
        """Player responded. Repeating the call changes nothing."""
        if not manifestation_store.get(manifestation_id):
            raise HTTPException(404, "Manifestation not found")
        changed = manifestation_store.mark_acknowledged(
            manifestation_id, datetime.utcnow(), req.response
        )
        return {
            "changed": changed,
            "manifestation": manifestation_store.get(manifestation_id).model_dump(mode="json"),
        }

    # === DREAMS & EFFECTS ===

    @app.post("/characters/{character_id}/dream")
    def check_dream(character_id: str, req: DreamCheckRequest):
        """Called by the rest system. ``dream`` is null when nothing is sent."""
        result = scheduler.check_for_dream(character_id, req.rest_kind)
        return {"dream": result.model_dump(mode="json") if result else None}

    @app.get("/characters/{character_id}/effects")
    def get_effects(character_id: str):
        """Timed effects still in force."""
        effects = effect_store.active_for(character_id, datetime.utcnow())
        return [e.model_dump(mode="json") for e in effects]

    # === SCHEDULER ===

    @app.get("/scheduler/status")
    def scheduler_status():
        """Current scheduler status."""
        next_runs = scheduler.next_runs()
        return {
            "status": scheduler.status,
            "cycle_count": scheduler.cycle_count,
            "tracked": {d.value: attention_store.count(d) for d in DeityName},
            "next_tick_at": next_runs["tick"].isoformat(),
            "next_maintenance_at": next_runs["maintenance"].isoformat(),
            "last_summary": (
                scheduler.last_summary.model_dump(mode="json")
                if scheduler.last_summary else None
            ),
        }

    @app.post("/scheduler/tick")
    def trigger_tick():
        """Force a tick (for testing and operations)."""
        summary = scheduler.run_once()
        if summary is None:
            raise HTTPException(409, "A tick is already running")
        return summary.model_dump(mode="json")

    @app.post("/scheduler/maintenance")
    def trigger_maintenance():
        return scheduler.run_maintenance().model_dump(mode="json")

    @app.get("/scheduler/config")
    def get_engine_config():
        """Current engine configuration."""
        return scheduler.config.model_dump(mode="json")

    @app.put("/scheduler/config")
    def update_engine_config(new_config: EngineConfig):
        """Replace engine configuration; applies from the next cycle."""
        scheduler.update_config(new_config)
        return new_config.model_dump(mode="json")

    return app
