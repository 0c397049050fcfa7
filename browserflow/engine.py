# engine

import asyncio
import logging


from   typing       import Any, Dict, List, Optional


from   .browser      import BrowserSessionProvider
from   .cancellation import CancellationRegistry
from   .event_bus    import EventBus
from   .execution    import ExecutionRecorder, ExecutionStore
from   .nodes        import NodeExecutionContext, NodeExecutionResult, execute_node
from   .schema       import DEFAULT_MAX_STEPS, DEFAULT_START_NODE_ID, Edge, Flow, FlowExecution, LoopBinding, Node
from   .utils        import log_print


class NodeExecutionError(RuntimeError):
	def __init__(self, node_id: str, message: str):
		super().__init__(f"Node {node_id} failed: {message}")
		self.node_id = node_id
		self.reason  = message


class StepBudgetExceeded(NodeExecutionError):
	def __init__(self, node_id: str, max_steps: int):
		super().__init__(node_id, f"Step budget of {max_steps} exceeded (possible cycle in flow graph)")
		self.max_steps = max_steps


class FlowGraph:
	"""Read-only index over the nodes and edges of a flow"""

	def __init__(self, nodes: List[Node], edges: List[Edge]):
		self.nodes    : List[Node]            = nodes
		self.edges    : List[Edge]            = edges
		self.node_map : Dict[str, Node]       = {node.id: node for node in nodes}
		self.outgoing : Dict[str, List[Edge]] = {}
		for edge in edges:
			self.outgoing.setdefault(edge.source, []).append(edge)


	def start_node(self) -> Optional[Node]:
		for node in self.nodes:
			if node.id == DEFAULT_START_NODE_ID or node.action == "start":
				return node
		targets = {edge.target for edge in self.edges}
		for node in self.nodes:
			if node.id not in targets:
				return node
		return None


	def targets(self, edges: List[Edge]) -> List[Node]:
		# Dangling edges are skipped
		return [self.node_map[edge.target] for edge in edges if edge.target in self.node_map]


	def successors(self, node_id: str, handle: Optional[str] = None) -> List[Node]:
		edges = self.outgoing.get(node_id, [])
		if handle is None:
			return self.targets(edges)
		selected = [edge for edge in edges if edge.source_handle == handle]
		if not selected:
			selected = [edge for edge in edges if not edge.source_handle]
		return self.targets(selected)


	def loop_successors(self, node_id: str):
		edges  = self.outgoing.get(node_id, [])
		body   = self.targets([edge for edge in edges if edge.source_handle == "loop"])
		legacy = self.targets([edge for edge in edges if not edge.source_handle])
		after  = self.targets([edge for edge in edges if edge.source_handle == "after"])
		return body + legacy, after


class _Missing:
	pass


MISSING = _Missing()


class LoopFrame:
	"""Pending iterations of a loop node on the work stack"""

	def __init__(self, node: Node, items: List[Any], binding: LoopBinding, body: List[Node], after: List[Node], variables: Dict[str, Any]):
		self.node    = node
		self.items   = items
		self.binding = binding
		self.body    = body
		self.after   = after
		self.index   = 0
		self.saved   = {
			name: variables.get(name, MISSING)
			for name in (binding.item_variable, binding.index_variable) if name
		}


	def restore(self, variables: Dict[str, Any]):
		for name, value in self.saved.items():
			if value is MISSING:
				variables.pop(name, None)
			else:
				variables[name] = value


class FlowRun:
	"""One depth-first walk over a flow graph"""

	def __init__(self,
		graph        : FlowGraph,
		page         : Any,
		variables    : Dict[str, Any],
		recorder     : ExecutionRecorder,
		registry     : CancellationRegistry,
		max_steps    : int           = DEFAULT_MAX_STEPS,
		download_dir : Optional[str] = None,
	):
		self.graph        = graph
		self.page         = page
		self.variables    = variables
		self.recorder     = recorder
		self.registry     = registry
		self.max_steps    = max_steps
		self.download_dir = download_dir
		self.steps        = 0
		self.response     = None
		self.terminated   = False


	@property
	def execution_id(self) -> str:
		return self.recorder.execution_id


	def is_running(self) -> bool:
		return self.registry.is_running(self.execution_id)


	async def traverse(self):
		start = self.graph.start_node()
		if start is None:
			raise RuntimeError("No starting node found in flow")

		stack : List[Any] = [start]
		while stack:
			item = stack.pop()

			if isinstance(item, LoopFrame):
				self._advance_loop(item, stack)
				continue

			if not self.is_running():
				log_print(f"Execution {self.execution_id} was stopped, skipping node {item.id}")
				return

			result = await self._visit(item)
			if result.is_terminal_node:
				self.response   = result.response
				self.terminated = True
				return

			if result.is_array_loop:
				body, after = self.graph.loop_successors(item.id)
				frame = LoopFrame(item, result.array_data or [], result.loop_config or LoopBinding(), body, after, self.variables)
				stack.append(frame)
				continue

			successors = self.graph.successors(item.id, result.next_handle)
			log_print(f"Found {len(successors)} next nodes for {item.id}", level=logging.DEBUG)
			stack.extend(reversed(successors))


	def _advance_loop(self, frame: LoopFrame, stack: List[Any]):
		binding = frame.binding
		if frame.body and frame.index < len(frame.items):
			index = frame.index
			item  = frame.items[index]
			frame.index += 1

			if binding.item_variable:
				self.variables[binding.item_variable] = item
			if binding.index_variable:
				self.variables[binding.index_variable] = index

			self.recorder.append_log(
				frame.node.id,
				f"{frame.node.name} (iteration {index + 1})",
				"loop_iteration",
				{
					"success"     : True,
					"currentItem" : item,
					"index"       : index,
					"totalItems"  : len(frame.items),
				},
			)

			stack.append(frame)
			stack.extend(reversed(frame.body))
			return

		frame.restore(self.variables)
		if frame.after:
			log_print(f"Loop {frame.node.id} completed, executing {len(frame.after)} after-loop nodes", level=logging.DEBUG)
		stack.extend(reversed(frame.after))


	async def _visit(self, node: Node) -> NodeExecutionResult:
		self.steps += 1
		if self.steps > self.max_steps:
			raise StepBudgetExceeded(node.id, self.max_steps)

		await self.recorder.enter_node(node)

		context = NodeExecutionContext(
			page         = self.page,
			variables    = self.variables,
			node         = node,
			execution_id = self.execution_id,
			flow_id      = self.recorder.flow_id,
			is_running   = self.is_running,
			download_dir = self.download_dir,
		)
		result = await execute_node(node, context)
		data   = result.to_dict()
		self.recorder.append_log(node.id, node.name, node.action, data)

		if not result.success:
			await self.recorder.node_failed(node, result.error or "")
			raise NodeExecutionError(node.id, result.error or "")

		if result.variable is not None:
			name  = result.variable.get("name")
			value = result.variable.get("value")
			if name:
				self.variables[name] = value
				await self.recorder.variable_updated(name, value)
			if value is not None:
				self._pass_data(node, value)

		await self.recorder.node_completed(node, data)
		return result


	def _pass_data(self, node: Node, value: Any):
		"""Expose a node's output to the nodes it feeds"""
		for target in self.graph.successors(node.id):
			self.variables[f"{node.id}_output"] = value
			self.variables["currentInput"]      = value
			if node.action == "extractUrls" and target.action == "loop":
				self.variables["extractedUrls"] = value
			if node.action == "extractText" and target.action == "navigate":
				self.variables["extractedText"] = value


class FlowEngine:
	"""Runs flows against browser pages and tracks running executions"""

	def __init__(self,
		event_bus    : EventBus,
		sessions     : BrowserSessionProvider,
		registry     : Optional[CancellationRegistry] = None,
		store        : Optional[ExecutionStore]       = None,
		max_steps    : int                            = DEFAULT_MAX_STEPS,
		download_dir : Optional[str]                  = None,
	):
		self.event_bus    = event_bus
		self.sessions     = sessions
		self.registry     = registry or CancellationRegistry()
		self.store        = store
		self.max_steps    = max_steps
		self.download_dir = download_dir
		self.tasks        : Dict[str, asyncio.Task] = {}


	async def execute(self, flow: Flow, execution: Optional[FlowExecution] = None, variables: Optional[Dict[str, Any]] = None) -> FlowExecution:
		"""Run a flow to a terminal status and return its execution record"""
		if execution is None:
			execution = FlowExecution(flow_id=flow.id, variables=dict(variables or {}))
		if execution.flow_id is None:
			execution.flow_id = flow.id

		recorder   = ExecutionRecorder(execution, self.event_bus, self.store)
		settings   = flow.browser_settings
		keep_open  = bool(settings and settings.keep_open)
		max_steps  = (settings.max_steps if settings and settings.max_steps else None) or self.max_steps
		scope      = {**flow.variables, **(variables or {})}

		if not self.registry.is_registered(execution.id):
			self.registry.register(execution.id)

		try:
			if not self.registry.is_running(execution.id):
				await recorder.cancel()
				return execution

			await recorder.start()

			handle = await self.sessions.create_page(settings)
			self.registry.attach(execution.id, handle)
			if not self.registry.is_running(execution.id):
				# stopped while the browser was starting
				await self.registry.release(execution.id)

			run = FlowRun(
				graph        = FlowGraph(flow.nodes, flow.edges),
				page         = handle.page,
				variables    = scope,
				recorder     = recorder,
				registry     = self.registry,
				max_steps    = max_steps,
				download_dir = self.download_dir,
			)
			await run.traverse()

			if not self.registry.is_running(execution.id):
				await recorder.cancel()
			else:
				await recorder.complete(run.response if run.terminated else dict(scope))

		except Exception as e:
			if execution.is_terminal:
				raise
			if not self.registry.is_running(execution.id):
				await recorder.cancel()
			else:
				await recorder.fail(str(e))

		finally:
			self.registry.finish(execution.id)
			await self.registry.release(execution.id, keep_open)

		return execution


	def start(self, flow: Flow, execution: FlowExecution, variables: Optional[Dict[str, Any]] = None) -> asyncio.Task:
		"""Run a flow in the background"""
		self.registry.register(execution.id)
		task = asyncio.create_task(self.execute(flow, execution, variables))
		self.tasks[execution.id] = task
		task.add_done_callback(lambda _: self.tasks.pop(execution.id, None))
		return task


	async def stop_execution(self, execution_id: str) -> bool:
		return await self.registry.stop(execution_id)


	def is_running(self, execution_id: str) -> bool:
		return self.registry.is_running(execution_id)


	async def shutdown(self):
		for execution_id in self.registry.running_ids():
			await self.stop_execution(execution_id)
		if self.tasks:
			await asyncio.gather(*self.tasks.values(), return_exceptions=True)
		await self.sessions.close()
