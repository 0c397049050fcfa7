# routes

import base64
import binascii
import json
import logging
import math
import re


from   fastapi           import FastAPI, Request
from   fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from   fastapi.routing   import APIRoute
from   limits            import RateLimitItem, RateLimitItemPerSecond
from   limits.storage    import MemoryStorage
from   limits.strategies import FixedWindowRateLimiter
from   typing            import Any, Dict, List, Optional, Set, Tuple


from   .engine           import FlowEngine
from   .manager          import FlowManager, FlowNotFoundError
from   .nodes            import is_truthy
from   .schema           import ExecutionStatus, Flow, RateLimitConfig
from   .utils            import log_print


SUPPORTED_METHODS   = ("GET", "POST", "PUT", "DELETE", "PATCH")
RATE_LIMIT_MESSAGE  = "Too many requests from this IP, please try again later."
EXPRESS_PARAM       = re.compile(r":(\w+)")


def to_route_path(route: str) -> str:
	"""Accept both /items/:id and /items/{id}"""
	path = EXPRESS_PARAM.sub(r"{\1}", route.strip())
	if not path.startswith("/"):
		path = "/" + path
	return path


def result_text(results: Any) -> str:
	if isinstance(results, str):
		return results
	return json.dumps(results, ensure_ascii=False)


def rate_limit_item(config: RateLimitConfig) -> RateLimitItem:
	"""maxRequests per windowMs, rounded up to whole seconds"""
	seconds = max(1, math.ceil(config.window_ms / 1000))
	return RateLimitItemPerSecond(max(config.max_requests, 0), seconds)


class DynamicRouteRegistrar:
	"""Exposes flows with an apiConfig.route as HTTP endpoints of the app"""

	def __init__(self, app: FastAPI, engine: FlowEngine, manager: FlowManager, api_keys: Optional[Set[str]] = None):
		self.app      : FastAPI                                   = app
		self.engine   : FlowEngine                                = engine
		self.manager  : FlowManager                               = manager
		self.api_keys : Set[str]                                  = set(api_keys or [])
		self._routes  : Dict[Tuple[str, str], str]                = {}
		self._limits  : Dict[Tuple[str, str], RateLimitItem]       = {}
		self._limiter : FixedWindowRateLimiter                    = FixedWindowRateLimiter(MemoryStorage())


	async def register_all(self) -> int:
		count = 0
		for flow in await self.manager.list():
			if self.register(flow):
				count += 1
		return count


	def register(self, flow: Flow) -> bool:
		"""(Re)register the route of a flow, dropping any route it had before"""
		self.unregister(flow.id)

		config = flow.api_config
		if not flow.is_active or config is None or not config.route:
			return False

		method = config.method.upper()
		if method not in SUPPORTED_METHODS:
			log_print(f"Unsupported method {config.method} for flow {flow.id}", level=logging.WARNING)
			return False

		path = to_route_path(config.route)
		key  = (method, path)
		if key in self._routes:
			log_print(f"Updating route: {method} {path}")
		self._remove_route(method, path)

		if config.rate_limit is not None:
			self._limits[key] = rate_limit_item(config.rate_limit)

		flow_id = flow.id

		async def endpoint(request: Request):
			return await self.handle(flow_id, key, request)

		self.app.add_api_route(path, endpoint, methods=[method], include_in_schema=False, name=f"flow-{flow_id}")
		self._routes[key] = flow_id
		log_print(f"Registered flow route: {method} {path} -> Flow {flow_id}")
		return True


	def unregister(self, flow_id: str):
		for key in [k for k, v in self._routes.items() if v == flow_id]:
			self._remove_route(*key)
			self._routes.pop(key, None)
			self._limits.pop(key, None)


	def _remove_route(self, method: str, path: str):
		self.app.router.routes = [
			route for route in self.app.router.routes
			if not (isinstance(route, APIRoute) and route.path == path and method in route.methods)
		]


	def registered_routes(self) -> List[Dict[str, str]]:
		return [
			{"method": method, "route": path, "flowId": flow_id}
			for (method, path), flow_id in self._routes.items()
		]


	def _check_auth(self, request: Request) -> Optional[JSONResponse]:
		api_key = request.headers.get("x-api-key") or request.query_params.get("apiKey")
		if not api_key:
			return JSONResponse({"error": "API key is required"}, status_code=401)
		if self.api_keys and api_key not in self.api_keys:
			return JSONResponse({"error": "Invalid API key"}, status_code=403)
		return None


	async def _bind_parameters(self, flow: Flow, request: Request) -> Dict[str, Any]:
		body = {}
		if any(param.type == "body" for param in flow.api_config.parameters):
			try:
				body = await request.json()
			except ValueError:
				body = {}
			if not isinstance(body, dict):
				body = {}

		variables = {}
		for param in flow.api_config.parameters:
			if param.type == "query":
				value = request.query_params.get(param.name)
			elif param.type == "body":
				value = body.get(param.name)
			else:
				value = request.path_params.get(param.name)

			if param.required and not is_truthy(value):
				raise MissingParameterError(param.name)
			variables[param.name] = value if is_truthy(value) else param.default_value
		return variables


	async def handle(self, flow_id: str, key: Tuple[str, str], request: Request) -> Response:
		try:
			flow = await self.manager.get(flow_id)
		except FlowNotFoundError as e:
			return JSONResponse({"error": str(e)}, status_code=404)

		if flow.api_config.requires_auth:
			denied = self._check_auth(request)
			if denied is not None:
				return denied

		limit = self._limits.get(key)
		if limit is not None:
			client = request.client.host if request.client else "unknown"
			if not self._limiter.hit(limit, *key, client):
				return JSONResponse({"error": RATE_LIMIT_MESSAGE}, status_code=429)

		try:
			variables = await self._bind_parameters(flow, request)
		except MissingParameterError as e:
			return JSONResponse({"error": str(e)}, status_code=400)

		execution = await self.manager.create_execution(flow.id, variables)
		execution = await self.engine.execute(flow, execution, variables)

		if execution.status != ExecutionStatus.COMPLETED:
			log_print(f"Error executing flow {flow.id}: {execution.error}", level=logging.ERROR)
			return JSONResponse({"error": "Flow execution failed", "message": execution.error}, status_code=500)

		results       = execution.results
		response_type = flow.api_config.response.type if flow.api_config.response else "json"

		if response_type == "text":
			return PlainTextResponse(result_text(results))
		if response_type == "html":
			return HTMLResponse(result_text(results))
		if response_type == "binary":
			data = results if isinstance(results, dict) else {}
			try:
				content = base64.b64decode(data.get("data") or "", validate=True)
			except binascii.Error as e:
				return JSONResponse({"error": "Flow execution failed", "message": f"Invalid binary payload: {e}"}, status_code=500)
			return Response(content, media_type=data.get("mimeType") or "application/octet-stream")

		return JSONResponse({
			"success"     : True,
			"data"        : results,
			"executionId" : execution.id,
		})


class MissingParameterError(ValueError):
	def __init__(self, name: str):
		super().__init__(f"Missing required parameter: {name}")
		self.name = name
