from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring API status and component readiness.

    Reports "degraded" when the lock backend is unreachable: uploads then
    fail with a retryable 503 instead of writing unlocked.
    """
    runtime = request.app.state.runtime
    runtime_status = runtime.status()

    health_status = {
        "status": "ok",
        "environment": runtime_status["environment"],
        "components": {
            "api": "ready",
            "locks": "ready" if runtime_status["lock_available"] else "unavailable",
            "policy_store": runtime_status["policy_store"],
        },
        "fields": runtime_status["fields"],
    }
    if not runtime_status["lock_available"]:
        health_status["status"] = "degraded"
    return health_status
