from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .catalog import ToolName
from .connection import DEFAULT_VERSION, ConnectionProfile, ConnectionRegistry
from .errors import NotFoundError


def _summary(profile: ConnectionProfile) -> Dict[str, Any]:
    return {
        "name": profile.name,
        "server": profile.server,
        "database": profile.database,
        "user": profile.user,
        "version": profile.version,
    }


def register_connection_tools(mcp: FastMCP, registry: ConnectionRegistry) -> None:
    """Register the tools that manage named and inline connections."""

    # ---------------- Configuration ----------------
    @mcp.tool(name=ToolName.CONFIG_ADD_CONNECTION.value)
    async def config_add_connection(
        name: str,
        server: str,
        database: str,
        user: str,
        password: str,
        version: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Save a named FileMaker connection (e.g. 'production', 'staging') to the local configuration.
        Inputs:
        - name (str): unique connection name; fails if it already exists (remove it first to replace it).
        - server (str): FileMaker Server IP address or hostname, without https://.
        - database (str), user (str), password (str): required credentials.
        - version (str|None): Data API version, default vLatest.
        Outputs: the stored connection without its password.
        Behavior: validates every field and reports all problems at once; the file is only written on success.
        """
        profile = registry.add(
            name,
            ConnectionProfile(
                server=server,
                database=database,
                user=user,
                password=password,
                version=version or DEFAULT_VERSION,
            ),
        )
        return {
            "success": True,
            "message": f'Connection "{name}" added successfully',
            "connection": _summary(profile),
        }

    @mcp.tool(name=ToolName.CONFIG_REMOVE_CONNECTION.value)
    async def config_remove_connection(name: str) -> Dict[str, Any]:
        """
        Purpose: Delete a named connection from the configuration.
        Inputs: name (str).
        Behavior: also clears the default pointer and the current connection when they referred to it.
        """
        registry.remove(name)
        return {"success": True, "message": f'Connection "{name}" removed successfully'}

    @mcp.tool(name=ToolName.CONFIG_LIST_CONNECTIONS.value)
    async def config_list_connections() -> Dict[str, Any]:
        """List all saved connections (passwords omitted) and which one is the default."""
        default_name = registry.default_name
        connections = [
            {**_summary(profile), "isDefault": profile.name == default_name}
            for profile in registry.list_connections()
        ]
        return {
            "success": True,
            "count": len(connections),
            "defaultConnection": default_name,
            "connections": connections,
        }

    @mcp.tool(name=ToolName.CONFIG_GET_CONNECTION.value)
    async def config_get_connection(name: str) -> Dict[str, Any]:
        """Get one saved connection with its password masked."""
        masked = registry.get_masked(name)
        if masked is None:
            raise NotFoundError(f'Connection "{name}" not found')
        return {
            "success": True,
            "connection": {**masked, "isDefault": registry.default_name == name},
        }

    @mcp.tool(name=ToolName.CONFIG_SET_DEFAULT_CONNECTION.value)
    async def config_set_default_connection(name: str) -> Dict[str, Any]:
        """
        Purpose: Choose the connection that becomes current when the server starts.
        Inputs: name (str) of a saved connection.
        """
        registry.set_default(name)
        return {
            "success": True,
            "message": f'Default connection set to "{name}"',
            "defaultConnection": name,
        }

    # ---------------- Runtime connection ----------------
    @mcp.tool(name=ToolName.SET_CONNECTION.value)
    async def set_connection(connection_name: str) -> Dict[str, Any]:
        """
        Purpose: Switch the active connection to a saved one.
        Inputs: connection_name (str), e.g. 'production'.
        Outputs: the now-active connection without its password.
        Behavior: session only; the choice is not written to disk (use fm_config_set_default_connection for that).
        """
        profile = registry.switch_to(connection_name)
        return {
            "success": True,
            "message": f'Switched to connection "{connection_name}"',
            "connection": _summary(profile),
        }

    @mcp.tool(name=ToolName.CONNECT.value)
    async def connect(
        server: str,
        database: str,
        user: str,
        password: str,
        version: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Connect with inline credentials for this session only.
        Inputs: server, database, user, password (all required); version (default vLatest).
        Behavior: the connection is validated and made current but never saved.
        """
        profile = registry.set_current_inline(
            ConnectionProfile(
                server=server,
                database=database,
                user=user,
                password=password,
                version=version or DEFAULT_VERSION,
            )
        )
        return {
            "success": True,
            "message": "Connected to FileMaker database",
            "connection": _summary(profile),
        }

    @mcp.tool(name=ToolName.LIST_CONNECTIONS.value)
    async def list_connections() -> Dict[str, Any]:
        """List saved connections, flagging the default and the currently active one."""
        default_name = registry.default_name
        current = registry.get_current()
        current_name = current.name if current else None
        connections = [
            {
                **_summary(profile),
                "isDefault": profile.name == default_name,
                "isCurrent": current_name is not None and profile.name == current_name,
            }
            for profile in registry.list_connections()
        ]
        return {
            "success": True,
            "count": len(connections),
            "defaultConnection": default_name,
            "currentConnection": current_name,
            "connections": connections,
        }

    @mcp.tool(name=ToolName.GET_CURRENT_CONNECTION.value)
    async def get_current_connection() -> Dict[str, Any]:
        """Show the active connection (password masked); inline connections are named 'inline'."""
        current = registry.get_current()
        if current is None:
            return {
                "success": False,
                "error": "No active connection. Use fm_set_connection or fm_connect to establish a connection.",
                "availableConnections": registry.names(),
            }
        return {
            "success": True,
            "connection": {**current.masked(), "name": current.name or "inline"},
        }
