# manager

import copy
import logging


from   pathlib   import Path
from   pydantic  import ValidationError
from   typing    import Any, Dict, List, Optional


from   .schema   import Flow, FlowExecution, utc_now
from   .utils    import log_print


FLOWS_DIR      : str = "flows"
EXECUTIONS_DIR : str = "executions"


class FlowNotFoundError(KeyError):
	def __init__(self, kind: str, item_id: str):
		super().__init__(f"{kind} {item_id} not found")
		self.kind    = kind
		self.item_id = item_id

	def __str__(self):
		return self.args[0]


class FlowManager:
	"""
	Keeps flow definitions and execution records in memory.
	With a storage directory each record is also written to flows/<id>.json or executions/<id>.json.
	"""

	def __init__(self, storage_dir: Optional[str] = None):
		self._storage_dir : Optional[Path]           = Path(storage_dir) if storage_dir else None
		self._flows       : Dict[str, Flow]          = {}
		self._executions  : Dict[str, FlowExecution] = {}

		if self._storage_dir is not None:
			(self._storage_dir / FLOWS_DIR     ).mkdir(parents=True, exist_ok=True)
			(self._storage_dir / EXECUTIONS_DIR).mkdir(parents=True, exist_ok=True)


	@property
	def storage_dir(self) -> Optional[Path]:
		return self._storage_dir


	def load(self) -> int:
		"""Read persisted records back, returning the number of flows loaded"""
		if self._storage_dir is None:
			return 0

		for path in sorted((self._storage_dir / FLOWS_DIR).glob("*.json")):
			try:
				flow = Flow.model_validate_json(path.read_text(encoding="utf-8"))
			except (OSError, ValidationError) as e:
				log_print(f"Skipping unreadable flow file {path}: {e}", level=logging.WARNING)
				continue
			self._flows[flow.id] = flow

		for path in sorted((self._storage_dir / EXECUTIONS_DIR).glob("*.json")):
			try:
				execution = FlowExecution.model_validate_json(path.read_text(encoding="utf-8"))
			except (OSError, ValidationError) as e:
				log_print(f"Skipping unreadable execution file {path}: {e}", level=logging.WARNING)
				continue
			self._executions[execution.id] = execution

		log_print(f"Loaded {len(self._flows)} flows and {len(self._executions)} executions from {self._storage_dir}")
		return len(self._flows)


	def _write(self, folder: str, item_id: str, content: str):
		if self._storage_dir is None:
			return
		(self._storage_dir / folder / f"{item_id}.json").write_text(content, encoding="utf-8")


	def _delete(self, folder: str, item_id: str):
		if self._storage_dir is None:
			return
		(self._storage_dir / folder / f"{item_id}.json").unlink(missing_ok=True)


	def _persist_flow(self, flow: Flow):
		self._write(FLOWS_DIR, flow.id, flow.model_dump_json(by_alias=True, indent=2))


	async def create(self, data: Dict[str, Any]) -> Flow:
		flow = Flow.model_validate(data)
		self._flows[flow.id] = flow
		self._persist_flow(flow)
		log_print(f"Flow created: {flow.id} ({flow.name})")
		return flow


	async def list(self) -> List[Flow]:
		return sorted(self._flows.values(), key=lambda f: f.created_at, reverse=True)


	async def get(self, flow_id: str) -> Flow:
		flow = self._flows.get(flow_id)
		if flow is None:
			raise FlowNotFoundError("Flow", flow_id)
		return flow


	async def update(self, flow_id: str, changes: Dict[str, Any]) -> Flow:
		flow = await self.get(flow_id)
		data = flow.model_dump(by_alias=True)
		data.update(copy.deepcopy(changes))
		data["id"]        = flow.id
		data["createdAt"] = flow.created_at
		data["updatedAt"] = utc_now()

		updated = Flow.model_validate(data)
		self._flows[flow_id] = updated
		self._persist_flow(updated)
		return updated


	async def remove(self, flow_id: str) -> Flow:
		flow = await self.get(flow_id)
		del self._flows[flow_id]
		self._delete(FLOWS_DIR, flow_id)
		for execution in [e for e in self._executions.values() if e.flow_id == flow_id]:
			del self._executions[execution.id]
			self._delete(EXECUTIONS_DIR, execution.id)
		log_print(f"Flow removed: {flow_id}")
		return flow


	async def create_execution(self, flow_id: str, variables: Optional[Dict[str, Any]] = None) -> FlowExecution:
		await self.get(flow_id)
		execution = FlowExecution(flow_id=flow_id, variables=dict(variables or {}))
		self.save_execution(execution)
		return execution


	def save_execution(self, execution: FlowExecution):
		self._executions[execution.id] = execution
		self._write(EXECUTIONS_DIR, execution.id, execution.model_dump_json(by_alias=True, indent=2))


	async def get_execution(self, execution_id: str) -> FlowExecution:
		execution = self._executions.get(execution_id)
		if execution is None:
			raise FlowNotFoundError("Execution", execution_id)
		return execution


	async def list_executions(self, flow_id: str) -> List[FlowExecution]:
		await self.get(flow_id)
		executions = [e for e in self._executions.values() if e.flow_id == flow_id]
		return sorted(executions, key=lambda e: e.started_at, reverse=True)
