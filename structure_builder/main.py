"""AI Structure Builder FastAPI server."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from structure_builder.models import (
    BuildRequest,
    BuildStatusResponse,
    GenerateRequest,
    HealthResponse,
    MaterialCount,
    PreviewResponse,
    StatusResponse,
    StructureResponse,
    ValidateRequest,
    ValidateResponse,
)
from structure_builder.services import generation_service, llm_service
from structure_builder.services.build_scheduler import (
    BuildInProgressError,
    BuildScheduler,
    BuildState,
    StructureValidationError,
    validate_structure,
)
from structure_builder.services.world import VoxelWorld
from structure_builder.prompts.examples import EXAMPLES
from structure_builder import config

VERSION = "0.1.0"

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

world = VoxelWorld()
scheduler = BuildScheduler(world.place)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    cancelled = scheduler.cancel_all()
    if cancelled:
        logger.info("Cancelled %d active builds on shutdown", cancelled)


app = FastAPI(
    title="AI Structure Builder",
    description="Generate voxel structures from text descriptions and build them incrementally",
    version=VERSION,
    lifespan=lifespan,
)


def _status(actor_id: str) -> BuildStatusResponse:
    job = scheduler.get_job(actor_id)
    if job is None:
        return BuildStatusResponse(
            actor_id=actor_id, active=False, progress=0, state=BuildState.IDLE.value
        )
    return BuildStatusResponse(
        actor_id=actor_id,
        active=job.active,
        progress=job.progress,
        state=job.state.value,
        message=job.message,
    )


def _describe_errors(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


# ── REST Endpoints ──────────────────────────────────────────────


@app.get("/api/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        version=VERSION,
        providers={
            "claude": bool(config.ANTHROPIC_API_KEY),
            "gemini": bool(config.GOOGLE_API_KEY),
        },
    )


@app.get("/api/status", response_model=StatusResponse)
async def status():
    provider = config.DEFAULT_PROVIDER
    return StatusResponse(
        active_builds=scheduler.active_count(),
        provider=provider,
        model=config.DEFAULT_MODELS.get(provider, ""),
        blocks_per_turn=scheduler.blocks_per_turn,
        build_delay_seconds=scheduler.turn_delay,
        max_structure_size=scheduler.max_structure_size,
        chunked_generation_enabled=config.CHUNKED_GENERATION_ENABLED,
        chunked_threshold=config.CHUNKED_THRESHOLD,
    )


@app.post("/api/generate", response_model=StructureResponse)
async def generate(req: GenerateRequest):
    try:
        structure, timings = await generation_service.generate_structure(
            req.description, req.size, provider=req.provider, model=req.model
        )
    except Exception as e:
        logger.exception("Generation failed for %r", req.description)
        return StructureResponse(error=f"Generation error: {e}")

    return StructureResponse(
        structure=structure,
        voxel_count=structure.voxel_count,
        timings=timings,
    )


@app.post("/api/preview", response_model=PreviewResponse)
async def preview(req: GenerateRequest):
    structure, _ = await generation_service.generate_structure(
        req.description, req.size, provider=req.provider, model=req.model
    )
    counts = sorted(structure.material_counts().items(), key=lambda kv: (-kv[1], kv[0]))
    return PreviewResponse(
        name=structure.name,
        description=structure.description,
        dimensions=structure.with_derived_size().size,
        voxel_count=structure.voxel_count,
        material_types=len(counts),
        materials=[MaterialCount(material=m, count=c) for m, c in counts[:10]],
        height_range=structure.height_range(),
        requires_confirmation=structure.voxel_count > config.CONFIRMATION_THRESHOLD,
    )


@app.post("/api/validate", response_model=ValidateResponse)
async def validate(req: ValidateRequest):
    try:
        count = validate_structure(req.structure, scheduler.max_structure_size)
    except StructureValidationError as e:
        return ValidateResponse(valid=False, error=str(e))
    return ValidateResponse(valid=True, voxel_count=count)


@app.post("/api/builds", response_model=BuildStatusResponse)
async def start_build(req: BuildRequest):
    if scheduler.has_active(req.actor_id):
        raise HTTPException(status_code=409, detail="Build already in progress")

    structure = req.structure
    if structure is None:
        if not req.description:
            raise HTTPException(status_code=400, detail="Either description or structure is required")
        structure, _ = await generation_service.generate_structure(
            req.description, req.size, provider=req.provider, model=req.model
        )

    try:
        scheduler.start(req.actor_id, structure, req.origin)
    except BuildInProgressError:
        raise HTTPException(status_code=409, detail="Build already in progress")
    return _status(req.actor_id)


@app.get("/api/builds/{actor_id}", response_model=BuildStatusResponse)
async def build_status(actor_id: str):
    return _status(actor_id)


@app.delete("/api/builds/{actor_id}", response_model=BuildStatusResponse)
async def cancel_build(actor_id: str):
    scheduler.cancel(actor_id)
    return _status(actor_id)


@app.get("/api/examples")
async def examples():
    return [
        {"prompt": ex["prompt"], "structure_json": ex["structure_json"]}
        for ex in EXAMPLES
    ]


@app.post("/api/cache/clear")
async def clear_cache():
    return {"cleared": llm_service.cache_clear()}


# ── WebSocket Endpoint ──────────────────────────────────────────


@app.websocket("/ws/generate")
async def ws_generate(ws: WebSocket):
    await ws.accept()

    try:
        while True:
            data = await ws.receive_json()
            if not isinstance(data, dict):
                await ws.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            provider = data.get("provider")
            if not data.get("description"):
                await ws.send_json({"type": "error", "message": "Empty description"})
                continue
            if provider is not None and provider not in llm_service.PROVIDERS:
                await ws.send_json({"type": "error", "message": f"Unknown provider: {provider}"})
                continue
            try:
                req = GenerateRequest.model_validate(data)
            except ValidationError as e:
                await ws.send_json({"type": "error", "message": f"Invalid request: {_describe_errors(e)}"})
                continue

            total_t0 = time.perf_counter()
            await ws.send_json({"type": "status", "message": "Generating structure..."})

            messages: asyncio.Queue = asyncio.Queue()
            task = asyncio.create_task(
                generation_service.generate_structure(
                    req.description, req.size, messages.put_nowait, provider=req.provider, model=req.model
                )
            )
            # Watches for the client going away while generation runs
            listener = asyncio.create_task(ws.receive())
            try:
                while not task.done() or not messages.empty():
                    if listener.done():
                        incoming = listener.result()
                        if incoming["type"] == "websocket.disconnect":
                            raise WebSocketDisconnect(incoming.get("code", 1000))
                        await ws.send_json({"type": "error", "message": "Generation already in progress"})
                        listener = asyncio.create_task(ws.receive())
                    try:
                        message = await asyncio.wait_for(messages.get(), timeout=0.1)
                    except asyncio.TimeoutError:
                        continue
                    await ws.send_json({"type": "progress", "message": message})
            finally:
                listener.cancel()
                if not task.done():
                    logger.info("Client left, cancelling generation for %r", req.description)
                    task.cancel()
                await asyncio.wait({task, listener})

            try:
                structure, timings = task.result()
            except Exception as e:
                await ws.send_json({"type": "error", "message": f"Generation error: {e}"})
                continue

            await ws.send_json({
                "type": "structure",
                "structure": structure.model_dump(by_alias=True),
                "voxel_count": structure.voxel_count,
                "timings": timings,
            })
            await ws.send_json({
                "type": "done",
                "total_time_ms": round((time.perf_counter() - total_t0) * 1000, 2),
            })

    except WebSocketDisconnect:
        pass


# ── Main ────────────────────────────────────────────────────────


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "structure_builder.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True,
    )
