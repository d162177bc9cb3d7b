from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from chat_engine.api.deps import RuntimeDep

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz(runtime: RuntimeDep) -> dict[str, str | int]:
    return {"status": "ok", "sessions": len(runtime.presence)}


@router.get("/readyz")
async def readyz(runtime: RuntimeDep) -> JSONResponse:
    errors: list[str] = []

    try:
        await runtime.store.ping()
    except Exception as exc:  # noqa: BLE001
        errors.append(f"store: {exc}")

    if runtime.redis is not None:
        try:
            await runtime.redis.ping()
        except Exception as exc:  # noqa: BLE001
            errors.append(f"redis: {exc}")

    if errors:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "errors": errors},
        )
    return JSONResponse(content={"status": "ready"})
