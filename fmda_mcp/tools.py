from dataclasses import replace
from typing import Any, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP

from .auth import AuthManager
from .catalog import ToolName
from .connection import ConnectionProfile

RecordId = Union[int, str]


def register_tools(mcp: FastMCP, auth: AuthManager) -> None:
    """Register the session and Data API tools with FastMCP."""
    client = auth.client
    registry = auth.registry
    tokens = auth.tokens

    async def _call(
        method: str,
        *parts: Any,
        database: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Internal helper that:
        - snapshots the active connection, pointed at `database` when given
        - injects the cached session token, logging in when there is none usable
        - on a 401, drops the token, logs in again and replays the call (bounded)
        """
        profile = auth.active_profile(database)

        async def _do_request(active: ConnectionProfile, token: str) -> Dict[str, Any]:
            return await client.request(
                method,
                active.database_url(*parts),
                access_token=token,
                params=params,
                json_body=json_body,
                files=files,
            )

        return await auth.run_with_auth_retry(_do_request, profile)

    # ---------------- Session ----------------
    @mcp.tool(name=ToolName.LOGIN.value)
    async def login(
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        fm_data_source: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Authenticate with FileMaker Server and cache a session token. Most tools log in on demand,
        so this is only needed to switch database/account or to pass external data sources.
        Inputs:
        - database, username, password (str|None): override the active connection's values; when any is
          given the result becomes the current (unsaved) connection.
        - fm_data_source (list|None): external database credentials [{database, username, password}];
          defaults to FM_EXTERNAL_DATABASES.
        Outputs: token metadata (expiry, refresh count); never the token or the password.
        """
        profile = auth.active_profile()
        if database or username or password:
            profile = registry.set_current_inline(
                replace(
                    profile,
                    database=database or profile.database,
                    user=username or profile.user,
                    password=password or profile.password,
                    name=None,
                )
            )
        await auth.login(profile, fm_data_source)
        info = tokens.get_info(*profile.identity)
        return {
            "status": "ok",
            "cached": info is not None,
            "server": profile.server,
            "database": profile.database,
            "user": profile.user,
            "token": info.as_dict() if info else None,
        }

    @mcp.tool(name=ToolName.LOGOUT.value)
    async def logout(database: Optional[str] = None) -> Dict[str, Any]:
        """
        Purpose: End the Data API session for the active connection (or `database`) and forget its token.
        Behavior: DELETE /sessions/{token}; fails when no usable token is cached.
        """
        return await auth.logout(auth.active_profile(database))

    @mcp.tool(name=ToolName.VALIDATE_SESSION.value)
    async def validate_session() -> Dict[str, Any]:
        """Check with the server whether the active connection's session token is still valid (no retry)."""
        profile = auth.active_profile()
        token = await auth.login(profile)
        return await client.request("GET", f"{profile.base_url}/validateSession", access_token=token)

    @mcp.tool(name=ToolName.TOKEN_STATUS.value)
    async def token_status() -> Dict[str, Any]:
        """
        Purpose: Inspect the local token cache.
        Outputs: cache statistics plus expiry details for the active connection's token. Token values are never returned.
        """
        profile = registry.get_current()
        info = tokens.get_info(*profile.identity) if profile else None
        return {
            "stats": tokens.stats().as_dict(),
            "current": info.as_dict() if info else None,
            "needsRefresh": tokens.needs_refresh(*profile.identity) if profile else False,
        }

    # ---------------- Metadata ----------------
    @mcp.tool(name=ToolName.GET_PRODUCT_INFO.value)
    async def get_product_info() -> Dict[str, Any]:
        """Server product information: version, date/time formats. No session needed."""
        profile = auth.active_profile()
        return await client.request("GET", f"{profile.base_url}/productInfo")

    @mcp.tool(name=ToolName.GET_DATABASES.value)
    async def get_databases() -> Dict[str, Any]:
        """List the databases hosted on the active connection's server (Basic auth, no session)."""
        profile = auth.active_profile()
        return await client.request(
            "GET",
            f"{profile.base_url}/databases",
            basic_auth=(profile.user, profile.password),
        )

    @mcp.tool(name=ToolName.GET_LAYOUTS.value)
    async def get_layouts(database: Optional[str] = None) -> Dict[str, Any]:
        """List layouts in the database (defaults to the active connection's database)."""
        return await _call("GET", "layouts", database=database)

    @mcp.tool(name=ToolName.GET_SCRIPTS.value)
    async def get_scripts(database: Optional[str] = None) -> Dict[str, Any]:
        """List scripts in the database."""
        return await _call("GET", "scripts", database=database)

    @mcp.tool(name=ToolName.GET_LAYOUT_METADATA.value)
    async def get_layout_metadata(layout: str, database: Optional[str] = None) -> Dict[str, Any]:
        """
        Purpose: Field definitions, value lists and portals of one layout.
        Inputs: layout (str); database (str|None).
        """
        return await _call("GET", "layouts", layout, database=database)

    # ---------------- Records ----------------
    @mcp.tool(name=ToolName.GET_RECORDS.value)
    async def get_records(
        layout: str,
        offset: int = 1,
        limit: int = 20,
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Page through the records of a layout.
        Inputs:
        - layout (str): layout name.
        - offset (int): 1-based starting record.
        - limit (int): page size.
        - database (str|None): override the active connection's database.
        Outputs: FileMaker response with `response.data` records and `dataInfo` counts.
        """
        params = {"_offset": offset, "_limit": limit}
        return await _call("GET", "layouts", layout, "records", database=database, params=params)

    @mcp.tool(name=ToolName.GET_RECORD_BY_ID.value)
    async def get_record_by_id(layout: str, record_id: RecordId, database: Optional[str] = None) -> Dict[str, Any]:
        """Fetch one record by its FileMaker internal recordId."""
        return await _call("GET", "layouts", layout, "records", record_id, database=database)

    @mcp.tool(name=ToolName.CREATE_RECORD.value)
    async def create_record(
        layout: str,
        field_data: Dict[str, Any],
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Create a record.
        Inputs: layout (str); field_data (dict) of field name to value; database (str|None).
        Outputs: FileMaker response containing the new recordId and modId.
        """
        return await _call(
            "POST", "layouts", layout, "records", database=database, json_body={"fieldData": field_data}
        )

    @mcp.tool(name=ToolName.EDIT_RECORD.value)
    async def edit_record(
        layout: str,
        record_id: RecordId,
        field_data: Dict[str, Any],
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Update fields of an existing record; fields not listed are left alone.
        Inputs: layout (str); record_id (int|str); field_data (dict); database (str|None).
        """
        return await _call(
            "PATCH",
            "layouts",
            layout,
            "records",
            record_id,
            database=database,
            json_body={"fieldData": field_data},
        )

    @mcp.tool(name=ToolName.DELETE_RECORD.value)
    async def delete_record(layout: str, record_id: RecordId, database: Optional[str] = None) -> Dict[str, Any]:
        """Permanently delete a record."""
        return await _call("DELETE", "layouts", layout, "records", record_id, database=database)

    @mcp.tool(name=ToolName.DUPLICATE_RECORD.value)
    async def duplicate_record(layout: str, record_id: RecordId, database: Optional[str] = None) -> Dict[str, Any]:
        """Duplicate a record; the response carries the copy's recordId."""
        return await _call("POST", "layouts", layout, "records", record_id, database=database, json_body={})

    @mcp.tool(name=ToolName.FIND_RECORDS.value)
    async def find_records(
        layout: str,
        query: List[Dict[str, Any]],
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Find records matching FileMaker find requests.
        Inputs:
        - layout (str): layout name.
        - query (list[dict]): find requests, e.g. [{"City": "Springfield"}, {"Status": "Open", "omit": "true"}].
        - offset (int|None), limit (int|None): pagination.
        - database (str|None).
        Outputs: matching records; FileMaker answers code 401 "No records match" as an error.
        """
        body: Dict[str, Any] = {"query": query}
        if offset is not None:
            body["offset"] = offset
        if limit is not None:
            body["limit"] = limit
        return await _call("POST", "layouts", layout, "_find", database=database, json_body=body)

    # ---------------- Containers ----------------
    @mcp.tool(name=ToolName.UPLOAD_TO_CONTAINER.value)
    async def upload_to_container(
        layout: str,
        record_id: RecordId,
        container_field_name: str,
        file_path: str,
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Upload a local file (image, PDF, ...) into a container field.
        Inputs: layout, record_id, container_field_name, file_path (local path readable by the server process), database.
        """
        files = {"upload": client.file_payload(file_path)}
        return await _call(
            "POST", "layouts", layout, "records", record_id, container_field_name, database=database, files=files
        )

    @mcp.tool(name=ToolName.UPLOAD_TO_CONTAINER_REPETITION.value)
    async def upload_to_container_repetition(
        layout: str,
        record_id: RecordId,
        container_field_name: str,
        repetition: int,
        file_path: str,
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Upload a local file into one repetition (1-based) of a repeating container field."""
        files = {"upload": client.file_payload(file_path)}
        return await _call(
            "POST",
            "layouts",
            layout,
            "records",
            record_id,
            container_field_name,
            repetition,
            database=database,
            files=files,
        )

    # ---------------- Globals & scripts ----------------
    @mcp.tool(name=ToolName.SET_GLOBAL_FIELDS.value)
    async def set_global_fields(global_fields: Dict[str, Any], database: Optional[str] = None) -> Dict[str, Any]:
        """
        Purpose: Set global field values for the current session.
        Inputs: global_fields (dict) keyed by fully qualified name, e.g. {"Globals::gCompany": "Acme"}.
        """
        return await _call("PATCH", "globals", database=database, json_body={"globalFields": global_fields})

    @mcp.tool(name=ToolName.EXECUTE_SCRIPT.value)
    async def execute_script(
        layout: str,
        script_name: str,
        script_parameter: Optional[str] = None,
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Purpose: Run a FileMaker script in the context of a layout.
        Inputs: layout (str); script_name (str); script_parameter (str|None) passed as script.param; database.
        Outputs: FileMaker response with `scriptResult` and `scriptError`.
        """
        params = {"script.param": script_parameter} if script_parameter is not None else None
        return await _call("GET", "layouts", layout, "script", script_name, database=database, params=params)
