# event_bus

import asyncio
import json
import logging


from   enum     import Enum
from   fastapi  import WebSocket
from   inspect  import iscoroutinefunction
from   pydantic import Field
from   typing   import Any, Callable, Dict, List, Optional, Set


from   .schema  import WireModel, generate_id
from   .utils   import get_now_str, log_print, serialize_result


DEFAULT_MAX_HISTORY     : int = 1000
DEFAULT_HISTORY_REPLAY  : int = 50


class EventType(str, Enum):
	EXECUTION_STATUS   = "execution-status"
	NODE_EXECUTION     = "node-execution"
	NODE_COMPLETION    = "node-completion"
	NODE_ERROR         = "node-error"
	VARIABLE_UPDATE    = "variable-update"
	LOG_MESSAGE        = "log-message"
	EXECUTION_COMPLETE = "execution-complete"
	EXECUTION_ERROR    = "execution-error"


class ExecutionEvent(WireModel):
	event_id     : str
	type         : EventType
	execution_id : str
	flow_id      : Optional[str]  = None
	timestamp    : str
	data         : Dict[str, Any] = Field(default_factory=dict)


def room_name(flow_id: Optional[str], execution_id: str) -> str:
	return f"flow-{flow_id}-execution-{execution_id}"


class EventBus:
	"""
	Publishes execution events to local subscribers and WebSocket rooms.
	Publication is serialized so that events of one execution keep their order.
	Subscribers run while the bus is locked and must not emit on it themselves.
	"""

	def __init__(self, max_history: int = DEFAULT_MAX_HISTORY):
		self._subscribers   : Dict[EventType, List[Callable]] = {}
		self._rooms         : Dict[str, Set[WebSocket]]       = {}
		self._unscoped      : Set[WebSocket]                  = set()
		self._event_history : List[ExecutionEvent]            = []
		self._max_history   : int                             = max_history
		self._lock          : asyncio.Lock                    = asyncio.Lock()


	def subscribe(self, event_type: EventType, callback: Callable):
		"""Subscribe to specific event type"""
		if event_type not in self._subscribers:
			self._subscribers[event_type] = []
		self._subscribers[event_type].append(callback)


	def unsubscribe(self, event_type: EventType, callback: Callable):
		"""Unsubscribe from specific event type"""
		if event_type in self._subscribers and callback in self._subscribers[event_type]:
			self._subscribers[event_type].remove(callback)


	async def publish(self, event: ExecutionEvent):
		"""Publish event to all subscribers and WebSocket rooms"""
		async with self._lock:
			self._event_history.append(event)
			if len(self._event_history) > self._max_history:
				self._event_history.pop(0)

			for callback in list(self._subscribers.get(event.type, [])):
				try:
					if iscoroutinefunction(callback):
						await callback(event)
					else:
						callback(event)
				except Exception as e:
					log_print(f"Error in event subscriber: {e}", level=logging.WARNING)

			await self._broadcast(event)


	async def _broadcast(self, event: ExecutionEvent):
		"""Send event to its execution room and to clients that joined no room"""
		room    = room_name(event.flow_id, event.execution_id)
		clients = self._rooms.get(room, set()) | self._unscoped
		if not clients:
			return

		message = json.dumps({
			"type"  : event.type.value,
			"event" : serialize_result(event),
		})

		dead_clients = set()
		for client in clients:
			try:
				await client.send_text(message)
			except Exception:
				dead_clients.add(client)

		for client in dead_clients:
			self.disconnect(client)


	async def connect(self, websocket: WebSocket):
		await websocket.accept()
		self._unscoped.add(websocket)


	async def join(self, websocket: WebSocket, flow_id: Optional[str], execution_id: str):
		"""Add a client to the room of one execution and replay its recent events"""
		room = room_name(flow_id, execution_id)
		self._unscoped.discard(websocket)
		self._rooms.setdefault(room, set()).add(websocket)

		history = self.get_event_history(execution_id=execution_id, limit=DEFAULT_HISTORY_REPLAY)
		if history:
			await websocket.send_text(json.dumps({
				"type"   : "event-history",
				"events" : [serialize_result(e) for e in history],
			}))
		return room


	def leave(self, websocket: WebSocket, flow_id: Optional[str], execution_id: str):
		room    = room_name(flow_id, execution_id)
		clients = self._rooms.get(room)
		if clients is None:
			return
		clients.discard(websocket)
		if not clients:
			del self._rooms[room]


	def disconnect(self, websocket: WebSocket):
		"""Remove a client from every room"""
		self._unscoped.discard(websocket)
		for room in list(self._rooms.keys()):
			clients = self._rooms[room]
			clients.discard(websocket)
			if not clients:
				del self._rooms[room]


	def room_members(self, flow_id: Optional[str], execution_id: str) -> Set[WebSocket]:
		return set(self._rooms.get(room_name(flow_id, execution_id), set()))


	def get_event_history(self,
		flow_id      : Optional[str]       = None,
		execution_id : Optional[str]       = None,
		event_type   : Optional[EventType] = None,
		limit        : int                 = 100
	) -> List[ExecutionEvent]:
		"""Get filtered event history"""
		events = self._event_history

		if flow_id:
			events = [e for e in events if e.flow_id == flow_id]
		if execution_id:
			events = [e for e in events if e.execution_id == execution_id]
		if event_type:
			events = [e for e in events if e.type == event_type]

		return events[-limit:]


	def clear_history(self):
		self._event_history.clear()


	async def emit(self,
		event_type   : EventType,
		execution_id : str,
		flow_id      : Optional[str]            = None,
		data         : Optional[Dict[str, Any]] = None,
	):
		"""Helper to create and publish event"""
		event = ExecutionEvent(
			event_id     = generate_id(),
			type         = event_type,
			execution_id = execution_id,
			flow_id      = flow_id,
			timestamp    = get_now_str(),
			data         = serialize_result(data or {}),
		)
		await self.publish(event)
		return event


	# Convenience emitters, one per event kind

	async def execution_status(self, execution_id: str, flow_id: Optional[str], status: str, **extra: Any):
		return await self.emit(EventType.EXECUTION_STATUS, execution_id, flow_id, {"status": status, **extra})


	async def node_execution(self, execution_id: str, flow_id: Optional[str], node_id: str, node_name: str, action: str, **extra: Any):
		return await self.emit(EventType.NODE_EXECUTION, execution_id, flow_id, {
			"nodeId"   : node_id,
			"nodeName" : node_name,
			"action"   : action,
			"status"   : "executing",
			**extra,
		})


	async def node_completion(self, execution_id: str, flow_id: Optional[str], node_id: str, node_name: str, action: str, result: Dict[str, Any]):
		return await self.emit(EventType.NODE_COMPLETION, execution_id, flow_id, {
			"nodeId"   : node_id,
			"nodeName" : node_name,
			"action"   : action,
			"status"   : "completed",
			"result"   : result,
		})


	async def node_error(self, execution_id: str, flow_id: Optional[str], node_id: str, node_name: str, action: str, error: str):
		return await self.emit(EventType.NODE_ERROR, execution_id, flow_id, {
			"nodeId"   : node_id,
			"nodeName" : node_name,
			"action"   : action,
			"status"   : "error",
			"error"    : error,
		})


	async def variable_update(self, execution_id: str, flow_id: Optional[str], name: str, value: Any):
		return await self.emit(EventType.VARIABLE_UPDATE, execution_id, flow_id, {
			"name"  : name,
			"value" : value,
		})


	async def log_message(self, execution_id: str, flow_id: Optional[str], message: str, level: str = "info", **extra: Any):
		return await self.emit(EventType.LOG_MESSAGE, execution_id, flow_id, {
			"level"   : level,
			"message" : message,
			**extra,
		})


	async def execution_complete(self, execution_id: str, flow_id: Optional[str], **extra: Any):
		return await self.emit(EventType.EXECUTION_COMPLETE, execution_id, flow_id, {"status": "completed", **extra})


	async def execution_error(self, execution_id: str, flow_id: Optional[str], error: str, status: str = "failed", **extra: Any):
		return await self.emit(EventType.EXECUTION_ERROR, execution_id, flow_id, {"status": status, "error": error, **extra})
