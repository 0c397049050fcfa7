# api

import json


from   fastapi   import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from   fastapi.responses import JSONResponse
from   pydantic  import Field, ValidationError
from   typing    import Any, Dict, List, Optional


from   .engine    import FlowEngine
from   .event_bus import EventBus
from   .manager   import FlowManager, FlowNotFoundError
from   .routes    import DynamicRouteRegistrar
from   .schema    import ApiConfig, BrowserSettings, Edge, Node, WireModel
from   .utils     import get_now_str, log_print, serialize_result


API_PREFIX : str = "/api/v1"


class FlowCreateRequest(WireModel):
	name             : str
	description      : Optional[str]             = None
	nodes            : List[Node]                = Field(default_factory=list)
	edges            : List[Edge]                = Field(default_factory=list)
	variables        : Dict[str, Any]            = Field(default_factory=dict)
	browser_settings : Optional[BrowserSettings] = None
	api_config       : Optional[ApiConfig]       = None
	is_active        : bool                      = True


class FlowUpdateRequest(WireModel):
	name             : Optional[str]             = None
	description      : Optional[str]             = None
	nodes            : Optional[List[Node]]      = None
	edges            : Optional[List[Edge]]      = None
	variables        : Optional[Dict[str, Any]]  = None
	browser_settings : Optional[BrowserSettings] = None
	api_config       : Optional[ApiConfig]       = None
	is_active        : Optional[bool]            = None


class ExecuteFlowRequest(WireModel):
	variables : Dict[str, Any] = Field(default_factory=dict)


def _validation_detail(e: ValidationError) -> str:
	return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


def setup_api(app: FastAPI, event_bus: EventBus, manager: FlowManager, engine: FlowEngine, registrar: DynamicRouteRegistrar):

	@app.exception_handler(FlowNotFoundError)
	async def not_found_handler(request: Request, exc: FlowNotFoundError):
		return JSONResponse({"detail": str(exc)}, status_code=404)


	@app.get(API_PREFIX + "/health")
	async def health():
		return {
			"status"            : "ok",
			"timestamp"         : get_now_str(),
			"runningExecutions" : len(engine.registry.running_ids()),
		}


	@app.post(API_PREFIX + "/flows")
	async def create_flow(request: FlowCreateRequest):
		try:
			flow = await manager.create(request.model_dump(by_alias=True))
		except ValidationError as e:
			raise HTTPException(status_code=422, detail=_validation_detail(e))
		registrar.register(flow)
		return serialize_result(flow)


	@app.get(API_PREFIX + "/flows")
	async def list_flows():
		return serialize_result(await manager.list())


	@app.get(API_PREFIX + "/flows/registered-routes")
	async def registered_routes():
		return registrar.registered_routes()


	@app.get(API_PREFIX + "/flows/executions/{execution_id}")
	async def get_execution(execution_id: str):
		return serialize_result(await manager.get_execution(execution_id))


	@app.post(API_PREFIX + "/flows/executions/{execution_id}/stop")
	async def stop_execution(execution_id: str):
		execution = await manager.get_execution(execution_id)
		stopped   = await engine.stop_execution(execution.id)
		return {
			"executionId" : execution.id,
			"stopped"     : stopped,
			"status"      : execution.status.value,
		}


	@app.get(API_PREFIX + "/flows/{flow_id}")
	async def get_flow(flow_id: str):
		return serialize_result(await manager.get(flow_id))


	@app.patch(API_PREFIX + "/flows/{flow_id}")
	async def update_flow(flow_id: str, request: FlowUpdateRequest):
		try:
			flow = await manager.update(flow_id, request.model_dump(by_alias=True, exclude_unset=True))
		except ValidationError as e:
			raise HTTPException(status_code=422, detail=_validation_detail(e))
		registrar.register(flow)
		return serialize_result(flow)


	@app.delete(API_PREFIX + "/flows/{flow_id}")
	async def delete_flow(flow_id: str):
		flow = await manager.remove(flow_id)
		registrar.unregister(flow.id)
		return {"id": flow.id, "deleted": True}


	@app.post(API_PREFIX + "/flows/{flow_id}/execute")
	async def execute_flow(flow_id: str, request: Optional[ExecuteFlowRequest] = None):
		flow = await manager.get(flow_id)
		if not flow.is_active:
			raise HTTPException(status_code=400, detail=f"Flow {flow_id} is not active")

		variables = request.variables if request else {}
		execution = await manager.create_execution(flow.id, variables)
		engine.start(flow, execution, variables)
		log_print(f"Execution {execution.id} started for flow {flow.id}")
		return serialize_result(execution)


	@app.get(API_PREFIX + "/flows/{flow_id}/executions")
	async def list_executions(flow_id: str):
		return serialize_result(await manager.list_executions(flow_id))


	@app.websocket("/ws")
	async def execution_events(websocket: WebSocket):
		await event_bus.connect(websocket)
		try:
			while True:
				message = await websocket.receive_text()
				try:
					payload = json.loads(message)
				except ValueError:
					log_print(f"Ignoring malformed WebSocket message: {message}")
					continue

				if not isinstance(payload, dict):
					continue
				event = payload.get("event")
				data  = payload.get("data") or {}
				if event == "join-flow-execution" and data.get("executionId"):
					room = await event_bus.join(websocket, data.get("flowId"), data.get("executionId"))
					await websocket.send_text(json.dumps({"type": "joined", "room": room}))
				elif event == "leave-flow-execution":
					event_bus.leave(websocket, data.get("flowId"), data.get("executionId"))
				else:
					log_print(f"Received WebSocket message: {message}")
		except WebSocketDisconnect:
			log_print("WebSocket client disconnected")
		finally:
			event_bus.disconnect(websocket)
