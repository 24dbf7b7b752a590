"""MCP Server for router access list management.

Manages numbered packet filters on routers (Yamaha RTX over SSH) as named
access lists: sequence numbers are assigned, diffed against the last
snapshot and synced, then bound to interfaces.

Tools exposed:
- list_devices: List all configured routers
- acl_plan: Preview the changes an access list declaration would make
- acl_apply: Create or update an access list (declarative)
- acl_read: Refresh a managed access list from the router
- acl_delete: Unbind and delete a managed access list
- acl_import: Adopt existing router filters as an access list
- apply_binding_set: Create or update a standalone interface binding
- apply_binding_read: Refresh a standalone binding from the router
- apply_binding_delete: Remove a standalone binding
- apply_binding_import: Adopt an existing interface binding
- get_audit_log: Recent changes from the audit log
"""
import asyncio
import json
import logging
import os
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
    Resource,
)
from pydantic import AnyUrl

from .acl_engine.engine import AclEngine
from .acl_engine.schema import FilterTable, OperationResult
from .config.inventory import RouterInventory
from .state_store import StateStore
from .utils.logging_config import setup_logging, timed_section
from .utils.audit_log import setup_audit_logging, get_recent_changes

# Initialize audit logging
setup_audit_logging()

setup_logging()
logger = logging.getLogger(__name__)

# Global inventory (initialized on first use)
inventory: Optional[RouterInventory] = None
state_store: Optional[StateStore] = None
engine: Optional[AclEngine] = None


def get_inventory() -> RouterInventory:
    """Get or create the router inventory."""
    global inventory
    if inventory is None:
        config_path = os.environ.get("ACLCRAFT_CONFIG")
        inventory = RouterInventory(config_path)
    return inventory


def get_state_store() -> StateStore:
    """Get or create the snapshot store."""
    global state_store
    if state_store is None:
        state_store = StateStore()
    return state_store


def get_engine() -> AclEngine:
    global engine
    if engine is None:
        engine = AclEngine(get_inventory(), get_state_store())
    return engine


# Create MCP server
server = Server("mcp-router-acl")


ACCESS_LIST_EXAMPLE = """
Example declaration (auto mode, numbers 100, 110, 120):
{
  "name": "web-in",
  "table": "ip",
  "sequence_start": 100,
  "sequence_step": 10,
  "entries": [
    {"action": "pass", "destination": "192.168.1.10", "protocol": "tcp", "dest_port": "443"},
    {"action": "pass", "destination": "192.168.1.10", "protocol": "tcp", "dest_port": "80"},
    {"action": "reject"}
  ],
  "applies": [{"interface": "lan2", "direction": "in"}]
}

Omit sequence_start to use manual mode; every entry then needs its own "sequence".
Tables: ip, ipv6, mac, ip_dynamic, ipv6_dynamic.
Dynamic entries take source, destination, protocol (ftp, www, smtp, ...) and syslog instead of an action.
An ip or ipv6 apply block may add "dynamic_filter_ids" to bind dynamic filters behind the static list."""


def _string(description: str, **extra) -> dict:
    return {"type": "string", "description": description, **extra}


def _integer(description: str, **extra) -> dict:
    return {"type": "integer", "description": description, **extra}


def _flag(description: str) -> dict:
    return {"type": "boolean", "description": f"{description} (default: false)", "default": False}


def _declaration(description: str) -> dict:
    return {"type": "object", "description": description}


def _schema(*required: str, **properties) -> dict:
    """Object schema; a required device_id gets the inventory router property."""
    if "device_id" in required:
        properties = {"device_id": _string("Router ID from the inventory"), **properties}
    return {"type": "object", "properties": properties, "required": list(required)}


TABLE = _string("Filter table", enum=[t.value for t in FilterTable])
DRY_RUN = _flag("Preview changes without applying")
BINDING_IDENTITY = _string("Binding identity, e.g. ip:lan2:in")


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="list_devices",
            description="List all configured routers and the access lists managed on them",
            inputSchema=_schema(),
        ),
        Tool(
            name="acl_plan",
            description="Preview the filter changes an access list declaration would make, without touching the router." + ACCESS_LIST_EXAMPLE,
            inputSchema=_schema(
                "device_id", "config",
                config=_declaration("Access list declaration"),
                allow_recreate=_flag("Permit switching between auto and manual sequencing"),
            ),
        ),
        Tool(
            name="acl_apply",
            description="""Create or update an access list. Send the desired entries and the engine assigns sequence numbers, deletes stale filters, defines the rest and binds the interfaces.

Use dry_run=true to preview changes without applying.""" + ACCESS_LIST_EXAMPLE,
            inputSchema=_schema(
                "device_id", "config",
                config=_declaration("Access list declaration"),
                dry_run=DRY_RUN,
                allow_recreate=_flag(
                    "Permit switching between auto and manual sequencing by deleting and re-creating the access list"
                ),
            ),
        ),
        Tool(
            name="acl_read",
            description="Refresh a managed access list from the router. Filters that disappeared are dropped from the snapshot.",
            inputSchema=_schema("device_id", "table", "name", table=TABLE, name=_string("Access list name")),
        ),
        Tool(
            name="acl_delete",
            description="Unbind a managed access list from its interfaces and delete its filters",
            inputSchema=_schema("device_id", "table", "name", table=TABLE, name=_string("Access list name")),
        ),
        Tool(
            name="acl_import",
            description="""Adopt filters that already exist on the router as a managed access list.

Identity format: "<table>:<name>[:<n1>,<n2>,...]", e.g. "ip:web-in:100,110,120".
Without numbers, every filter of the table is imported.
Pass sequence_start (and sequence_step) to manage the numbers in auto mode.""",
            inputSchema=_schema(
                "device_id", "identity",
                identity=_string("Import identity"),
                sequence_start=_integer("First number for auto mode (optional)"),
                sequence_step=_integer("Step for auto mode (default: 10)"),
            ),
        ),
        Tool(
            name="apply_binding_set",
            description="""Bind filter numbers to an interface slot, outside any access list.

Example config:
{
  "access_list": "web-in",
  "table": "ip",
  "interface": "lan2",
  "direction": "in",
  "filter_ids": [100, 110, 120],
  "dynamic_filter_ids": [10, 20]
}""",
            inputSchema=_schema("device_id", "config", config=_declaration("Binding declaration"), dry_run=DRY_RUN),
        ),
        Tool(
            name="apply_binding_read",
            description="Refresh a standalone binding from the router. Identity: \"<table>:<interface>:<direction>\"",
            inputSchema=_schema("device_id", "identity", identity=BINDING_IDENTITY),
        ),
        Tool(
            name="apply_binding_delete",
            description="Remove a standalone binding from its interface slot",
            inputSchema=_schema("device_id", "identity", identity=BINDING_IDENTITY),
        ),
        Tool(
            name="apply_binding_import",
            description="""Adopt an interface binding that already exists on the router.

Identity format: "<table>:<interface>:<direction>", e.g. "ip:lan2:in".""",
            inputSchema=_schema(
                "device_id", "identity",
                identity=BINDING_IDENTITY,
                access_list=_string("Access list the numbers belong to (optional)"),
            ),
        ),
        Tool(
            name="get_audit_log",
            description="Get recent access list changes from the audit log",
            inputSchema=_schema(
                device_id=_string("Filter by router ID (optional)"),
                identity=_string("Filter by identity (e.g., 'ip:web-in' or 'ip:lan2:in')"),
                operation=_string("Filter by operation (e.g., 'acl_update', 'apply_delete')"),
                limit=_integer("Maximum number of records to return (default: 20)", default=20),
            ),
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    device_id = arguments.get("device_id", "N/A")

    async with timed_section(f"tool:{name}", device_id=device_id):
        try:
            if name == "list_devices":
                return await handle_list_devices(get_inventory())

            elif name == "acl_plan":
                return _result(await get_engine().plan(
                    arguments["device_id"],
                    arguments["config"],
                    allow_recreate=arguments.get("allow_recreate", False)
                ))

            elif name == "acl_apply":
                return _result(await get_engine().apply(
                    arguments["device_id"],
                    arguments["config"],
                    dry_run=arguments.get("dry_run", False),
                    allow_recreate=arguments.get("allow_recreate", False)
                ))

            elif name == "acl_read":
                return _result(await get_engine().read(
                    arguments["device_id"],
                    arguments["table"],
                    arguments["name"]
                ))

            elif name == "acl_delete":
                return _result(await get_engine().delete(
                    arguments["device_id"],
                    arguments["table"],
                    arguments["name"]
                ))

            elif name == "acl_import":
                return _result(await get_engine().import_group(
                    arguments["device_id"],
                    arguments["identity"],
                    sequence_start=arguments.get("sequence_start"),
                    sequence_step=arguments.get("sequence_step")
                ))

            elif name == "apply_binding_set":
                return _result(await get_engine().set_binding(
                    arguments["device_id"],
                    arguments["config"],
                    dry_run=arguments.get("dry_run", False)
                ))

            elif name == "apply_binding_read":
                return _result(await get_engine().read_binding(
                    arguments["device_id"],
                    arguments["identity"]
                ))

            elif name == "apply_binding_delete":
                return _result(await get_engine().delete_binding(
                    arguments["device_id"],
                    arguments["identity"]
                ))

            elif name == "apply_binding_import":
                return _result(await get_engine().import_binding(
                    arguments["device_id"],
                    arguments["identity"],
                    access_list=arguments.get("access_list", "")
                ))

            elif name == "get_audit_log":
                return await handle_get_audit_log(
                    arguments.get("device_id"),
                    arguments.get("identity"),
                    arguments.get("limit", 20),
                    arguments.get("operation")
                )

            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return [TextContent(type="text", text=f"Error: {str(e)}")]


# === TOOL HANDLERS ===

def _result(result: OperationResult) -> list[TextContent]:
    return [TextContent(
        type="text",
        text=json.dumps(result.to_dict(), indent=2)
    )]


async def handle_list_devices(inv: RouterInventory) -> list[TextContent]:
    """List all configured routers."""
    acl_engine = get_engine()
    devices = []
    for device_id in inv.get_device_ids():
        config = inv.get_device_config(device_id)
        devices.append({
            "id": device_id,
            "name": config.get("name", device_id),
            "type": config.get("type"),
            "host": config.get("host"),
            "port": config.get("port"),
            "managed": acl_engine.list_managed(device_id),
        })

    return [TextContent(
        type="text",
        text=json.dumps({"devices": devices}, indent=2)
    )]


async def handle_get_audit_log(
    device_id: Optional[str] = None,
    identity: Optional[str] = None,
    limit: int = 20,
    operation: Optional[str] = None
) -> list[TextContent]:
    """Get recent changes from the audit log."""
    records = get_recent_changes(
        device_id=device_id,
        identity=identity,
        limit=limit,
        operation=operation
    )
    formatted_records = [r.summary() for r in records]

    return [TextContent(
        type="text",
        text=json.dumps({
            "total_records": len(formatted_records),
            "filters": {
                "device_id": device_id,
                "identity": identity,
                "operation": operation,
                "limit": limit,
            },
            "records": formatted_records,
        }, indent=2)
    )]


# === RESOURCES ===

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List managed access lists as resources."""
    inv = get_inventory()
    store = get_state_store()
    resources = []

    for device_id in inv.get_device_ids():
        for group in store.list_groups(device_id):
            resources.append(Resource(
                uri=AnyUrl(f"acl://{device_id}/{group.table.value}/{group.name}"),
                name=f"{device_id} {group.identity}",
                description=f"Snapshot of access list {group.identity} on {device_id}",
                mimeType="application/json",
            ))

    return resources


@server.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource."""
    # Parse URI: acl://device_id/table/name
    uri_str = str(uri)
    if uri_str.startswith("acl://"):
        parts = uri_str[6:].split("/")
        if len(parts) == 3:
            device_id, table, name = parts
            for group in get_state_store().list_groups(device_id):
                if group.table.value == table and group.name == name:
                    return json.dumps(group.to_dict(), indent=2)

    return json.dumps({"error": f"Unknown resource: {uri}"})


def main():
    """Run the MCP server."""

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
    finally:
        # Cleanup
        if inventory:
            asyncio.run(inventory.close_all())


if __name__ == "__main__":
    main()
