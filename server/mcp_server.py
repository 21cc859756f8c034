# docatlas MCP Server - JSON-RPC 2.0 over stdio
# Exposes the query engine as Model Context Protocol tools

import sys, json, asyncio, logging
from typing import Dict, Any, List, Optional, Union
from dataclasses import dataclass

from config.settings import IndexConfig
from indexer.errors import InvalidArgumentError
from indexer.query_engine import QueryEngine
from observability.logging import setup_logging

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


@dataclass
class JSONRPCRequest:
    jsonrpc: str
    id: Union[str, int, None]
    method: str
    params: Optional[Dict[str, Any]] = None


class MethodNotFoundError(Exception):
    pass


TOOLS: List[Dict[str, Any]] = [
    {
        "name": "search_docs",
        "description": "Search indexed documentation and API spec content by type name or keywords. "
                       "Returns name, path, snippet, section and line number for each result.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Type name or search keywords"},
                "limit": {"type": "integer", "description": "Maximum number of results", "default": 10, "minimum": 1},
                "includeFullContent": {"type": "boolean", "description": "Attach the full document", "default": False},
                "includeSchemaDefinition": {"type": "boolean", "description": "Attach serialized schemas", "default": False},
            },
            "required": ["query"],
        },
    },
    {
        "name": "search_api_files",
        "description": "Search indexed API operations and schemas only. Every matching line is returned "
                       "as its own snippet. Queries containing regex characters are tried as "
                       "case-insensitive regular expressions.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Type name or search keywords"},
                "linesContext": {"type": "integer", "description": "Lines of context around each match", "default": 16},
            },
            "required": ["query"],
        },
    },
    {
        "name": "get_doc",
        "description": "Get the raw content of a document by its path relative to the documentation root.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Document path, e.g. guides/overview.mdx"},
            },
            "required": ["path"],
        },
    },
    {
        "name": "get_api_file",
        "description": "Read an indexed API specification file. JSON specifications require a filter and "
                       "return a window of lines around its first match.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "filename": {"type": "string", "description": "Spec file name or path suffix"},
                "filter": {"type": "string", "description": "Text to locate inside the file"},
                "context": {"type": "integer", "description": "Lines of context around the filter match", "default": 12},
            },
            "required": ["filename"],
        },
    },
    {
        "name": "list_api_endpoints",
        "description": "List indexed API operations, optionally restricted to spec paths containing a category.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "category": {"type": "string", "description": "Substring of the spec file path"},
                "limit": {"type": "integer", "description": "Maximum number of endpoints", "default": 20, "minimum": 1},
            },
        },
    },
]


def _text_content(payload: Any) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(payload, indent=2, ensure_ascii=False)}]}


class MCPServer:
    def __init__(self, engine: Optional[QueryEngine] = None):
        self.engine = engine or QueryEngine()
        self.capabilities = {
            "tools": {
                "listChanged": False
            }
        }
        self.server_info = {
            "name": "docatlas-mcp-server",
            "version": "0.1.0"
        }
        self.session_initialized = False
        self.tool_handlers = {
            "search_docs": self._tool_search_docs,
            "search_api_files": self._tool_search_api_files,
            "get_doc": self._tool_get_doc,
            "get_api_file": self._tool_get_api_file,
            "list_api_endpoints": self._tool_list_api_endpoints,
        }

    async def handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle MCP initialize request"""
        client_info = params.get("clientInfo", {})
        logger.info(f"Initializing MCP session with client: {client_info.get('name', 'unknown')}")

        return {
            "protocolVersion": "2024-11-05",
            "capabilities": self.capabilities,
            "serverInfo": self.server_info
        }

    async def handle_initialized(self, params: Dict[str, Any]) -> None:
        """Handle MCP initialized notification"""
        self.session_initialized = True
        logger.info("MCP session initialized successfully")

    async def handle_tools_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"tools": TOOLS}

    async def handle_tools_call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute MCP tool calls"""
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidArgumentError("Tool arguments must be an object")

        handler = self.tool_handlers.get(name)
        if handler is None:
            raise InvalidArgumentError(f"Unknown tool: {name}")
        return await handler(arguments)

    async def _tool_search_docs(self, args: Dict[str, Any]) -> Dict[str, Any]:
        results = self.engine.query(
            args.get("query"),
            limit=args.get("limit"),
            include_full_content=bool(args.get("includeFullContent", False)),
            include_schema_definition=bool(args.get("includeSchemaDefinition", False)),
        )
        return _text_content({"results": [r.model_dump(exclude_none=True) for r in results]})

    async def _tool_search_api_files(self, args: Dict[str, Any]) -> Dict[str, Any]:
        results = self.engine.search_api_files(args.get("query"), context_lines=args.get("linesContext"))
        return _text_content({"results": [r.model_dump(exclude_none=True) for r in results]})

    async def _tool_get_doc(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return _text_content(self.engine.fetch_by_path(args.get("path")))

    async def _tool_get_api_file(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return _text_content(self.engine.get_api_file(
            args.get("filename"),
            filter=args.get("filter"),
            context=args.get("context"),
        ))

    async def _tool_list_api_endpoints(self, args: Dict[str, Any]) -> Dict[str, Any]:
        endpoints = self.engine.list_api_endpoints(category=args.get("category"), limit=args.get("limit", 20))
        return _text_content({"endpoints": endpoints})

    async def handle_request(self, request_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Main request handler following JSON-RPC 2.0 spec"""
        request_id = request_data.get("id") if isinstance(request_data, dict) else None
        try:
            if not isinstance(request_data, dict) or request_data.get("jsonrpc") != "2.0":
                raise InvalidArgumentError("Invalid JSON-RPC version")

            request = JSONRPCRequest(
                jsonrpc=request_data["jsonrpc"],
                id=request_id,
                method=request_data.get("method"),
                params=request_data.get("params") or {},
            )
            if not request.method:
                raise InvalidArgumentError("Missing method")

            if request.method == "initialize":
                result = await self.handle_initialize(request.params)
            elif request.method in ("initialized", "notifications/initialized"):
                await self.handle_initialized(request.params)
                return None  # Notification, no response
            elif request.method == "ping":
                result = {}
            elif request.method == "tools/list":
                result = await self.handle_tools_list(request.params)
            elif request.method == "tools/call":
                result = await self.handle_tools_call(request.params)
            else:
                raise MethodNotFoundError(f"Unknown method: {request.method}")

            return {
                "jsonrpc": "2.0",
                "id": request.id,
                "result": result
            }

        except InvalidArgumentError as e:
            logger.warning(f"Invalid request: {e}")
            return self._error(request_id, INVALID_PARAMS, str(e))
        except MethodNotFoundError as e:
            return self._error(request_id, METHOD_NOT_FOUND, str(e))
        except Exception as e:
            logger.error(f"Error handling request: {e}")
            return self._error(request_id, INTERNAL_ERROR, str(e))

    @staticmethod
    def _error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {
                "code": code,
                "message": message
            }
        }


async def serve_stdio(server: MCPServer, stdin=None, stdout=None):
    """Read newline-delimited JSON-RPC requests until EOF."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    logger.info("Starting MCP server in stdio mode")

    while True:
        line = stdin.readline()
        if not line:
            break
        if not line.strip():
            continue

        try:
            request_data = json.loads(line.strip())
        except json.JSONDecodeError as e:
            response = MCPServer._error(None, PARSE_ERROR, f"Parse error: {e}")
        else:
            response = await server.handle_request(request_data)

        if response:  # Don't send response for notifications
            stdout.write(json.dumps(response) + "\n")
            stdout.flush()


async def main():
    """Main entry point for MCP server"""
    config = IndexConfig.from_env()
    setup_logging(level=config.log_level, service_name="docatlas-mcp", log_file=config.log_file, use_json=config.log_json)
    server = MCPServer(QueryEngine(config))

    if len(sys.argv) > 1 and sys.argv[1] == "--stdio":
        await serve_stdio(server)
    else:
        print("docatlas MCP Server", file=sys.stderr)
        print("Usage: docatlas-mcp --stdio", file=sys.stderr)
        print("\nAvailable tools:", file=sys.stderr)
        for tool in TOOLS:
            print(f"  - {tool['name']}", file=sys.stderr)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
