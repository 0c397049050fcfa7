"""
Tests for flow traversal and the execution lifecycle
"""

import pytest


from   browserflow.engine    import FlowEngine, FlowGraph
from   browserflow.event_bus import EventType
from   browserflow.execution import ExecutionStateError
from   browserflow.schema    import CANCELLED_MESSAGE, Edge, ExecutionStatus, FlowExecution, Node


from   conftest import FakeElement, FakePage, FakeSessionProvider, make_edge, make_flow, make_node


def actions(execution):
	return [entry.action for entry in execution.execution_log]


def event_types(event_bus, execution):
	return [e.type for e in event_bus.get_event_history(execution_id=execution.id, limit=1000)]


class TestFlowGraph:

	def test_start_node_falls_back_to_node_without_incoming_edges(self):
		nodes = [Node(id="b", action="click"), Node(id="a", action="navigate")]
		graph = FlowGraph(nodes, [Edge(source="a", target="b")])
		assert graph.start_node().id == "a"

	def test_handle_selection_falls_back_to_plain_edges(self):
		nodes = [Node(id="c", action="condition"), Node(id="x", action="click"), Node(id="y", action="click")]
		edges = [Edge(source="c", target="x", source_handle="true"), Edge(source="c", target="y")]
		graph = FlowGraph(nodes, edges)
		assert [n.id for n in graph.successors("c", "true")] == ["x"]
		assert [n.id for n in graph.successors("c", "false")] == ["y"]

	def test_dangling_edges_are_ignored(self):
		graph = FlowGraph([Node(id="a", action="start")], [Edge(source="a", target="ghost")])
		assert graph.successors("a") == []


class TestTraversal:

	@pytest.mark.asyncio
	async def test_linear_flow_runs_in_order(self, engine, sessions):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("go", "navigate", url="https://a.test/{{path}}"),
				make_node("title", "setVariable", name="title", value="done"),
			],
			[make_edge("start", "go"), make_edge("go", "title")],
			variables={"path": "home"},
		)
		execution = await engine.execute(flow)

		assert execution.status == ExecutionStatus.COMPLETED
		assert actions(execution) == ["start", "navigate", "setVariable"]
		assert sessions.pages[0].visits == ["https://a.test/home"]
		assert execution.results == {"path": "home", "title": "done"}
		assert execution.completed_at is not None

	@pytest.mark.asyncio
	async def test_condition_takes_matching_branch(self, engine):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("check", "condition", type="equals", variable="mode", value="fast"),
				make_node("yes", "setVariable", name="branch", value="true-branch"),
				make_node("no", "setVariable", name="branch", value="false-branch"),
			],
			[
				make_edge("start", "check"),
				make_edge("check", "yes", "true"),
				make_edge("check", "no", "false"),
			],
		)
		fast = await engine.execute(flow, variables={"mode": "fast"})
		slow = await engine.execute(flow, variables={"mode": "slow"})
		assert fast.results["branch"] == "true-branch"
		assert slow.results["branch"] == "false-branch"

	@pytest.mark.asyncio
	async def test_condition_without_matching_handle_follows_plain_edges(self, engine):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("check", "condition", type="truthy", variable="flag"),
				make_node("next", "setVariable", name="reached", value="yes"),
			],
			[make_edge("start", "check"), make_edge("check", "next")],
		)
		execution = await engine.execute(flow, variables={"flag": ""})
		assert execution.results["reached"] == "yes"

	@pytest.mark.asyncio
	async def test_response_node_halts_the_run(self, engine):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("reply", "response", variablesToInclude=["greeting"]),
				make_node("late", "setVariable", name="late", value="1"),
			],
			[make_edge("start", "reply"), make_edge("reply", "late")],
			variables={"greeting": "hi"},
		)
		execution = await engine.execute(flow)
		assert execution.results == {"greeting": "hi"}
		assert actions(execution) == ["start", "response"]

	@pytest.mark.asyncio
	async def test_results_fall_back_to_variable_snapshot(self, engine):
		flow = make_flow(
			[make_node("start", "start"), make_node("set", "setVariable", name="x", value="1")],
			[make_edge("start", "set")],
		)
		execution = await engine.execute(flow)
		assert execution.results == {"x": "1"}

	@pytest.mark.asyncio
	async def test_dangling_edge_does_not_break_the_run(self, engine):
		flow = make_flow(
			[make_node("start", "start"), make_node("set", "setVariable", name="x", value="1")],
			[make_edge("start", "ghost"), make_edge("start", "set")],
		)
		execution = await engine.execute(flow)
		assert execution.status == ExecutionStatus.COMPLETED
		assert actions(execution) == ["start", "setVariable"]

	@pytest.mark.asyncio
	async def test_output_is_passed_to_successors(self, engine):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("first", "setVariable", name="a", value="payload"),
				make_node("second", "setVariable", name="b", value="{{currentInput}}"),
			],
			[make_edge("start", "first"), make_edge("first", "second")],
		)
		execution = await engine.execute(flow)
		assert execution.results["first_output"] == "payload"
		assert execution.results["second_input"] == "payload"
		assert execution.results["b"] == "payload"


class TestLoops:

	@pytest.mark.asyncio
	async def test_array_loop_runs_body_per_item_and_restores_variables(self, engine):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("loop", "loop", type="array", arrayVariable="items", itemVariable="item", indexVariable="i"),
				make_node("body", "setVariable", name="seen", value="{{seen}}{{item}}{{i}}"),
			],
			[make_edge("start", "loop"), make_edge("loop", "body", "loop")],
			variables={"items": ["x", "y"], "seen": "", "item": "original"},
		)
		execution = await engine.execute(flow)

		assert execution.status == ExecutionStatus.COMPLETED
		assert execution.results["seen"] == "x0y1"
		assert execution.results["item"] == "original"
		assert "i" not in execution.results
		assert actions(execution).count("setVariable") == 2

	@pytest.mark.asyncio
	async def test_times_loop_then_after_branch(self, engine):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("loop", "loop", type="times", times=3, itemVariable="n"),
				make_node("body", "setVariable", name="acc", value="{{acc}}{{n}}"),
				make_node("after", "setVariable", name="finished", value="{{acc}}"),
			],
			[make_edge("start", "loop"), make_edge("loop", "body", "loop"), make_edge("loop", "after", "after")],
			variables={"acc": ""},
		)
		execution = await engine.execute(flow)
		assert execution.results["acc"] == "123"
		assert execution.results["finished"] == "123"
		assert actions(execution)[-1] == "setVariable"

	@pytest.mark.asyncio
	async def test_loop_without_body_still_runs_after_nodes(self, engine):
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("loop", "loop", type="times", times=5),
				make_node("after", "setVariable", name="done", value="yes"),
			],
			[make_edge("start", "loop"), make_edge("loop", "after", "after")],
		)
		execution = await engine.execute(flow)
		assert execution.results["done"] == "yes"
		assert "loop_iteration" not in actions(execution)

	@pytest.mark.asyncio
	async def test_extract_urls_loop_navigate_response(self, event_bus, registry):
		links = [FakeElement(attrs={"href": "/a"}), FakeElement(attrs={"href": "/b"})]
		provider = FakeSessionProvider(lambda: FakePage(elements={"body": [FakeElement()], "body a[href]": links}))
		engine   = FlowEngine(event_bus=event_bus, sessions=provider, registry=registry)

		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("urls", "extractUrls"),
				make_node("each", "loop", type="array", arrayVariable="extractedUrls", itemVariable="url"),
				make_node("visit", "navigate", url="{{url}}"),
				make_node("reply", "response", variablesToInclude=["extractedUrls"]),
			],
			[
				make_edge("start", "urls"),
				make_edge("urls", "each"),
				make_edge("each", "visit", "loop"),
				make_edge("each", "reply", "after"),
			],
		)
		execution = await engine.execute(flow)

		assert execution.status == ExecutionStatus.COMPLETED
		assert provider.pages[0].visits == ["/a", "/b"]
		assert actions(execution) == [
			"start", "extractUrls", "loop",
			"loop_iteration", "navigate",
			"loop_iteration", "navigate",
			"response",
		]
		assert execution.execution_log[3].node_name == "each (iteration 1)"
		assert execution.results == {"extractedUrls": ["/a", "/b"]}

	@pytest.mark.asyncio
	async def test_while_loop_fails_the_execution(self, engine):
		flow = make_flow(
			[make_node("start", "start"), make_node("loop", "loop", type="while", condition="x")],
			[make_edge("start", "loop")],
		)
		execution = await engine.execute(flow)
		assert execution.status == ExecutionStatus.FAILED
		assert execution.error == "Node loop failed: Loop type 'while' is not supported"


class TestFailures:

	@pytest.mark.asyncio
	async def test_unknown_action(self, engine):
		flow = make_flow(
			[make_node("start", "start"), make_node("bad", "teleport")],
			[make_edge("start", "bad")],
		)
		execution = await engine.execute(flow)
		assert execution.status == ExecutionStatus.FAILED
		assert "Unknown action" in execution.error
		assert execution.error.startswith("Node bad failed:")

	@pytest.mark.asyncio
	async def test_node_error_emits_node_error_event(self, engine, event_bus):
		flow = make_flow(
			[make_node("start", "start"), make_node("read", "extractText", selector="#missing", variableName="x")],
			[make_edge("start", "read")],
		)
		execution = await engine.execute(flow)
		types     = event_types(event_bus, execution)
		assert EventType.NODE_ERROR in types
		assert types[-1] == EventType.EXECUTION_ERROR
		assert execution.execution_log[-1].result["success"] is False

	@pytest.mark.asyncio
	async def test_step_budget_stops_cycles(self, event_bus, sessions, registry):
		engine = FlowEngine(event_bus=event_bus, sessions=sessions, registry=registry, max_steps=5)
		flow   = make_flow(
			[
				make_node("start", "start"),
				make_node("a", "setVariable", name="v", value="a"),
				make_node("b", "setVariable", name="v", value="b"),
			],
			[make_edge("start", "a"), make_edge("a", "b"), make_edge("b", "a")],
		)
		execution = await engine.execute(flow)
		assert execution.status == ExecutionStatus.FAILED
		assert execution.error == "Node a failed: Step budget of 5 exceeded (possible cycle in flow graph)"
		assert len(execution.execution_log) == 5

	@pytest.mark.asyncio
	async def test_flow_without_start_node(self, engine):
		flow = make_flow(
			[make_node("a", "setVariable", name="v", value="1"), make_node("b", "setVariable", name="v", value="2")],
			[make_edge("a", "b"), make_edge("b", "a")],
		)
		execution = await engine.execute(flow)
		assert execution.status == ExecutionStatus.FAILED
		assert execution.error == "No starting node found in flow"

	@pytest.mark.asyncio
	async def test_store_errors_do_not_fail_the_run(self, event_bus, sessions, registry):
		class BrokenStore:
			def save_execution(self, execution):
				raise OSError("disk full")

		engine    = FlowEngine(event_bus=event_bus, sessions=sessions, registry=registry, store=BrokenStore())
		flow      = make_flow([make_node("start", "start")], [])
		execution = await engine.execute(flow)
		assert execution.status == ExecutionStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_terminal_execution_cannot_be_rerun(self, engine):
		flow      = make_flow([make_node("start", "start")], [])
		execution = await engine.execute(flow)
		with pytest.raises(ExecutionStateError):
			await engine.execute(flow, execution)


class TestLifecycle:

	@pytest.mark.asyncio
	async def test_event_order_of_a_successful_run(self, engine, event_bus):
		flow = make_flow(
			[make_node("start", "start"), make_node("set", "setVariable", name="x", value="1")],
			[make_edge("start", "set")],
		)
		execution = await engine.execute(flow)
		assert event_types(event_bus, execution) == [
			EventType.EXECUTION_STATUS,
			EventType.NODE_EXECUTION,
			EventType.NODE_COMPLETION,
			EventType.LOG_MESSAGE,
			EventType.NODE_EXECUTION,
			EventType.VARIABLE_UPDATE,
			EventType.NODE_COMPLETION,
			EventType.LOG_MESSAGE,
			EventType.EXECUTION_STATUS,
			EventType.EXECUTION_COMPLETE,
		]

	@pytest.mark.asyncio
	async def test_page_is_closed_and_registry_forgets_the_run(self, engine, sessions, registry):
		flow      = make_flow([make_node("start", "start")], [])
		execution = await engine.execute(flow)
		assert sessions.pages[0].close_count == 1
		assert not registry.is_registered(execution.id)
		assert registry.get_handle(execution.id) is None

	@pytest.mark.asyncio
	async def test_keep_open_leaves_the_page_alone(self, engine, sessions):
		flow = make_flow([make_node("start", "start")], [], browserSettings={"keepOpen": True})
		await engine.execute(flow)
		assert sessions.pages[0].close_count == 0
		assert sessions.settings[0].keep_open is True

	@pytest.mark.asyncio
	async def test_stop_during_first_node(self, engine, event_bus, sessions):
		outcomes = []

		async def stop_on_completion(event):
			outcomes.append(await engine.stop_execution(event.execution_id))
			outcomes.append(await engine.stop_execution(event.execution_id))

		event_bus.subscribe(EventType.NODE_COMPLETION, stop_on_completion)
		flow = make_flow(
			[
				make_node("start", "start"),
				make_node("go", "navigate", url="https://a.test"),
			],
			[make_edge("start", "go")],
		)
		execution = await engine.execute(flow)

		assert outcomes == [True, True]
		assert execution.status == ExecutionStatus.CANCELLED
		assert execution.error == CANCELLED_MESSAGE
		assert execution.completed_at is not None
		assert actions(execution) == ["start"]
		assert sessions.pages[0].close_count == 1
		assert sessions.pages[0].visits == []

	@pytest.mark.asyncio
	async def test_stop_unknown_execution(self, engine):
		assert await engine.stop_execution("no-such-execution") is False

	@pytest.mark.asyncio
	async def test_stop_before_background_run_starts(self, engine, sessions):
		flow      = make_flow([make_node("start", "start")], [])
		execution = FlowExecution(flow_id=flow.id)
		task      = engine.start(flow, execution)

		assert await engine.stop_execution(execution.id) is True
		await task
		assert execution.status == ExecutionStatus.CANCELLED
		assert sessions.pages == []

	@pytest.mark.asyncio
	async def test_shutdown_closes_sessions(self, engine, sessions):
		await engine.shutdown()
		assert sessions.closed
