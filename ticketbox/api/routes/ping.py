from fastapi import APIRouter, Depends, HTTPException, Request

from ticketbox.dependencies.auth import Role, role_required

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/database",
    summary="PostgreSQL connectivity check",
    dependencies=[Depends(role_required(Role.STAFF))],
)
async def ping_database(request: Request) -> dict[str, str]:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    try:
        await tester.test_connection()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {exc}") from exc
    return {"status": "ok"}
