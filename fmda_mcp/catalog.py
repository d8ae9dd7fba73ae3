from enum import Enum


class ToolName(str, Enum):
    """Every tool the server exposes. Registration goes through these members only."""

    # Configuration (persisted named connections)
    CONFIG_ADD_CONNECTION = "fm_config_add_connection"
    CONFIG_REMOVE_CONNECTION = "fm_config_remove_connection"
    CONFIG_LIST_CONNECTIONS = "fm_config_list_connections"
    CONFIG_GET_CONNECTION = "fm_config_get_connection"
    CONFIG_SET_DEFAULT_CONNECTION = "fm_config_set_default_connection"

    # Runtime connection
    SET_CONNECTION = "fm_set_connection"
    CONNECT = "fm_connect"
    LIST_CONNECTIONS = "fm_list_connections"
    GET_CURRENT_CONNECTION = "fm_get_current_connection"

    # Session
    LOGIN = "fm_login"
    LOGOUT = "fm_logout"
    VALIDATE_SESSION = "fm_validate_session"
    TOKEN_STATUS = "fm_token_status"

    # Metadata
    GET_PRODUCT_INFO = "fm_get_product_info"
    GET_DATABASES = "fm_get_databases"
    GET_LAYOUTS = "fm_get_layouts"
    GET_SCRIPTS = "fm_get_scripts"
    GET_LAYOUT_METADATA = "fm_get_layout_metadata"

    # Records
    GET_RECORDS = "fm_get_records"
    GET_RECORD_BY_ID = "fm_get_record_by_id"
    CREATE_RECORD = "fm_create_record"
    EDIT_RECORD = "fm_edit_record"
    DELETE_RECORD = "fm_delete_record"
    DUPLICATE_RECORD = "fm_duplicate_record"
    FIND_RECORDS = "fm_find_records"

    # Containers, globals, scripts
    UPLOAD_TO_CONTAINER = "fm_upload_to_container"
    UPLOAD_TO_CONTAINER_REPETITION = "fm_upload_to_container_repetition"
    SET_GLOBAL_FIELDS = "fm_set_global_fields"
    EXECUTE_SCRIPT = "fm_execute_script"
