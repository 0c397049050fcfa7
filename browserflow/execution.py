# execution

import logging


from   typing    import Any, Dict, Optional, Protocol


from   .event_bus import EventBus
from   .schema    import CANCELLED_MESSAGE, ExecutionLogEntry, ExecutionStatus, FlowExecution, Node, utc_now
from   .utils     import log_print, serialize_result


class ExecutionStateError(RuntimeError):
	pass


class ExecutionStore(Protocol):
	def save_execution(self, execution: FlowExecution) -> Any:
		...


_TRANSITIONS = {
	ExecutionStatus.PENDING : {ExecutionStatus.RUNNING, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED},
	ExecutionStatus.RUNNING : {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED},
}


class ExecutionRecorder:
	"""
	Owns the status of one execution record.
	Every change goes through here and becomes an event.
	Status changes are also written to the store (best effort).
	"""

	def __init__(self, execution: FlowExecution, event_bus: EventBus, store: Optional[ExecutionStore] = None):
		self.execution = execution
		self.event_bus = event_bus
		self.store     = store


	@property
	def execution_id(self) -> str:
		return self.execution.id


	@property
	def flow_id(self) -> Optional[str]:
		return self.execution.flow_id


	def save(self):
		if self.store is None:
			return
		try:
			self.store.save_execution(self.execution)
		except Exception as e:
			log_print(f"Failed to persist execution {self.execution_id}: {e}", level=logging.ERROR)


	def _transition(self, status: ExecutionStatus):
		current = self.execution.status
		if status not in _TRANSITIONS.get(current, set()):
			raise ExecutionStateError(f"Cannot move execution {self.execution_id} from {current.value} to {status.value}")
		self.execution.status = status
		if self.execution.is_terminal:
			self.execution.completed_at = utc_now()


	async def start(self):
		self._transition(ExecutionStatus.RUNNING)
		self.execution.started_at = utc_now()
		self.save()
		await self.event_bus.execution_status(
			self.execution_id, self.flow_id, ExecutionStatus.RUNNING.value,
			startedAt = self.execution.started_at,
		)


	async def enter_node(self, node: Node):
		self.execution.current_node = node.id
		await self.event_bus.node_execution(self.execution_id, self.flow_id, node.id, node.name, node.action, config=node.config)


	def append_log(self, node_id: str, node_name: str, action: str, result: Dict[str, Any]) -> ExecutionLogEntry:
		entry = ExecutionLogEntry(node_id=node_id, node_name=node_name, action=action, result=result)
		self.execution.execution_log.append(entry)
		return entry


	async def node_failed(self, node: Node, error: str):
		await self.event_bus.node_error(self.execution_id, self.flow_id, node.id, node.name, node.action, error)


	async def node_completed(self, node: Node, result: Dict[str, Any]):
		await self.event_bus.node_completion(self.execution_id, self.flow_id, node.id, node.name, node.action, result)
		await self.event_bus.log_message(
			self.execution_id, self.flow_id, f"Node {node.name} completed",
			nodeId = node.id,
			action = node.action,
			result = result,
		)


	async def variable_updated(self, name: str, value: Any):
		await self.event_bus.variable_update(self.execution_id, self.flow_id, name, value)


	async def complete(self, results: Any):
		self._transition(ExecutionStatus.COMPLETED)
		self.execution.results = serialize_result(results)
		self.save()
		await self.event_bus.execution_status(self.execution_id, self.flow_id, ExecutionStatus.COMPLETED.value)
		await self.event_bus.execution_complete(
			self.execution_id, self.flow_id,
			results      = self.execution.results,
			completedAt  = self.execution.completed_at,
			executionLog = self.execution.execution_log,
		)


	async def fail(self, error: str):
		self._transition(ExecutionStatus.FAILED)
		self.execution.error = error
		self.save()
		log_print(f"Flow execution failed: {error}", level=logging.ERROR)
		await self.event_bus.execution_status(self.execution_id, self.flow_id, ExecutionStatus.FAILED.value)
		await self.event_bus.execution_error(
			self.execution_id, self.flow_id, error,
			completedAt  = self.execution.completed_at,
			executionLog = self.execution.execution_log,
		)


	async def cancel(self):
		self._transition(ExecutionStatus.CANCELLED)
		self.execution.error = CANCELLED_MESSAGE
		self.save()
		log_print(f"Execution {self.execution_id} cancelled")
		await self.event_bus.execution_status(self.execution_id, self.flow_id, ExecutionStatus.CANCELLED.value)
		await self.event_bus.execution_error(
			self.execution_id, self.flow_id, CANCELLED_MESSAGE,
			status       = ExecutionStatus.CANCELLED.value,
			completedAt  = self.execution.completed_at,
			executionLog = self.execution.execution_log,
		)
