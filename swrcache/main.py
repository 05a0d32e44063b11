"""
SWR Cache - diagnostics FastAPI application
Exposes the state of the process-wide cache engine
"""
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from swrcache import __version__
from swrcache.cache import CacheManager, ManualEnvironment, get_cache_manager, set_cache_manager
from swrcache.schemas import (
    CacheInfo,
    CancelResult,
    CancellationInfo,
    ClearResult,
    EntryInfo,
    EnvironmentState,
    NetworkUpdate,
    PollingInfo,
    RevalidateResult,
    VisibilityUpdate,
)
from config.settings import settings

load_dotenv()

logging.basicConfig(level=settings.log_level)

APP_NAME = "SWR Cache"

app = FastAPI(
    title=APP_NAME,
    description="Stale-while-revalidate cache engine diagnostics",
    version=__version__,
)

# Host-driven environment so visibility/network changes can be pushed in
set_cache_manager(CacheManager(environment=ManualEnvironment()))


def host_environment() -> ManualEnvironment:
    """Environment of the current engine, if the host can drive it."""
    environment = get_cache_manager().environment
    if not isinstance(environment, ManualEnvironment):
        raise HTTPException(status_code=409, detail="Engine environment is not host-driven")
    return environment


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "entries": get_cache_manager().cache_info()["size"]}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": __version__,
        "full": f"{APP_NAME} {__version__}",
    }


@app.get("/cache/stats")
def cache_stats():
    """Get cache statistics."""
    return get_cache_manager().get_stats()


@app.get("/cache/info", response_model=CacheInfo)
def cache_info():
    """Cache size and keys."""
    return get_cache_manager().cache_info()


@app.get("/cache/entries/{key}", response_model=EntryInfo)
def cache_entry(key: str):
    """Summary of a single cache entry."""
    info = get_cache_manager().entry_info(key)
    if info is None:
        raise HTTPException(status_code=404, detail=f"No cache entry for '{key}'")
    return info


@app.get("/cache/polling", response_model=PollingInfo)
def polling_info():
    """Active polling tasks."""
    return get_cache_manager().polling_info()


@app.get("/cache/cancellation", response_model=CancellationInfo)
def cancellation_info():
    """Live cancellation tokens."""
    return get_cache_manager().cancellation_info()


@app.post("/cache/revalidate", response_model=RevalidateResult)
async def revalidate():
    """Refresh every eligible entry in the background."""
    return {"issued": get_cache_manager().trigger_revalidation()}


@app.delete("/cache", response_model=ClearResult)
async def clear_all():
    """Clear the whole cache and stop all polling."""
    return {"cleared": get_cache_manager().clear()}


@app.delete("/cache/{key}", response_model=ClearResult)
async def clear_key(key: str):
    """Clear one key and stop its polling."""
    return {"cleared": get_cache_manager().clear(key)}


@app.post("/cache/{key}/cancel", response_model=CancelResult)
async def cancel_key(key: str):
    """Cancel the in-flight request for a key."""
    return {"key": key, "cancelled": get_cache_manager().cancel(key)}


@app.post("/environment/visibility", response_model=EnvironmentState)
async def set_visibility(update: VisibilityUpdate):
    """Report a visibility change (regaining focus triggers revalidation)."""
    environment = host_environment()
    environment.set_hidden(update.hidden)
    return {"hidden": environment.is_hidden(), "offline": environment.is_offline()}


@app.post("/environment/network", response_model=EnvironmentState)
async def set_network(update: NetworkUpdate):
    """Report a network change (reconnecting triggers revalidation)."""
    environment = host_environment()
    environment.set_offline(update.offline)
    return {"hidden": environment.is_hidden(), "offline": environment.is_offline()}
