"""Plugin management REST API endpoints."""

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from harness.dependencies import get_plugin_manager
from harness.plugins.errors import PluginError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plugins", tags=["plugins"])


class PluginConfigUpdate(BaseModel):
    """Request body for replacing plugin configuration."""

    config: dict


class PluginConfigValue(BaseModel):
    """Request body for setting one configuration key."""

    value: Any


class PluginInstallRequest(BaseModel):
    """Request body for installing a plugin from local path."""

    path: str


@router.get("/")
async def list_plugins():
    """List all discovered plugins and their status."""
    manager = get_plugin_manager()
    return {"plugins": manager.list_plugins()}


@router.get("/extensions")
async def list_extensions():
    """Everything plugins have registered, grouped by extension point."""
    manager = get_plugin_manager()
    return manager.get_extensions_summary()


@router.post("/install")
async def install_plugin(body: PluginInstallRequest):
    """Install a plugin from a local path."""
    source_path = Path(body.path)
    if not source_path.exists():
        raise HTTPException(status_code=400, detail=f"Path does not exist: {body.path}")
    if not source_path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {body.path}")

    manager = get_plugin_manager()
    try:
        manifest = manager.install_plugin(source_path)
    except PluginError as e:
        logger.error(f"Install failed: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "message": f"Plugin '{manifest.name}' installed. Use /enable to activate.",
        "plugin": manifest.model_dump(),
    }


@router.get("/{name}")
async def get_plugin(name: str):
    """Get detailed information about a specific plugin."""
    manager = get_plugin_manager()
    info = manager.get_plugin_info(name)
    if not info:
        raise HTTPException(status_code=404, detail=f"Plugin '{name}' not found")
    return info


@router.post("/{name}/enable")
async def enable_plugin(name: str):
    """Enable a plugin and load it immediately."""
    manager = get_plugin_manager()
    result = await manager.enable_plugin(name)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Plugin '{name}' not found")
    return {
        "message": f"Plugin '{name}' enabled",
        "result": result.to_dict(),
    }


@router.post("/{name}/disable")
async def disable_plugin(name: str):
    """Disable a plugin and unload it."""
    manager = get_plugin_manager()
    dependents = await manager.disable_plugin(name)
    if dependents is None:
        raise HTTPException(status_code=404, detail=f"Plugin '{name}' not found")
    return {
        "message": f"Plugin '{name}' disabled",
        "dependents": dependents,
    }


@router.post("/{name}/reload")
async def reload_plugin(name: str):
    """Reload a loaded plugin from disk."""
    manager = get_plugin_manager()
    result = await manager.reload_plugin(name)
    return {"result": result.to_dict()}


@router.get("/{name}/config")
async def get_plugin_config(name: str):
    """Effective configuration (schema defaults plus overrides)."""
    manager = get_plugin_manager()
    try:
        return {"config": manager.get_config(name)}
    except PluginError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{name}/config")
async def update_plugin_config(name: str, body: PluginConfigUpdate):
    """Replace plugin configuration. Takes effect on the next load or reload."""
    manager = get_plugin_manager()
    try:
        manager.update_plugin_config(name, body.config)
    except PluginError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": f"Configuration updated for plugin '{name}'"}


@router.put("/{name}/config/{key}")
async def set_plugin_config_value(name: str, key: str, body: PluginConfigValue):
    """Set one configuration key."""
    manager = get_plugin_manager()
    try:
        manager.set_config(name, key, body.value)
    except PluginError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": f"Set '{key}' for plugin '{name}'"}


@router.delete("/{name}")
async def uninstall_plugin(name: str):
    """Unload and delete an installed plugin."""
    manager = get_plugin_manager()
    try:
        removed = await manager.uninstall_plugin(name)
    except PluginError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not removed:
        raise HTTPException(status_code=404, detail=f"Plugin '{name}' not found")
    return {"message": f"Plugin '{name}' uninstalled"}
