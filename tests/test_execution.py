"""
Tests for the execution recorder state machine
"""

import pytest


from   browserflow.execution import ExecutionRecorder, ExecutionStateError
from   browserflow.schema    import CANCELLED_MESSAGE, ExecutionStatus, FlowExecution, Node


class MemoryStore:
	def __init__(self):
		self.saved = []

	def save_execution(self, execution):
		self.saved.append(execution.status)


@pytest.fixture
def store():
	return MemoryStore()


@pytest.fixture
def recorder(event_bus, store):
	return ExecutionRecorder(FlowExecution(flow_id="f1"), event_bus, store)


class TestExecutionRecorder:

	@pytest.mark.asyncio
	async def test_complete_path(self, recorder, store):
		await recorder.start()
		await recorder.complete({"value": b"\x01"})

		execution = recorder.execution
		assert execution.status == ExecutionStatus.COMPLETED
		assert execution.results == {"value": "AQ=="}
		assert execution.completed_at is not None
		assert store.saved == [ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED]

	@pytest.mark.asyncio
	async def test_entering_a_node_is_not_written_to_the_store(self, recorder, store):
		await recorder.start()
		await recorder.enter_node(Node(id="go", action="navigate"))
		await recorder.enter_node(Node(id="click", action="click"))

		assert recorder.execution.current_node == "click"
		assert store.saved == [ExecutionStatus.RUNNING]

	@pytest.mark.asyncio
	async def test_fail_sets_error(self, recorder, event_bus):
		await recorder.start()
		await recorder.fail("Node x failed: boom")

		assert recorder.execution.status == ExecutionStatus.FAILED
		assert recorder.execution.error == "Node x failed: boom"
		last = event_bus.get_event_history(execution_id=recorder.execution_id)[-1]
		assert last.data == {
			"status"       : "failed",
			"error"        : "Node x failed: boom",
			"completedAt"  : recorder.execution.completed_at.isoformat(),
			"executionLog" : [],
		}

	@pytest.mark.asyncio
	async def test_pending_execution_can_be_cancelled(self, recorder):
		await recorder.cancel()
		assert recorder.execution.status == ExecutionStatus.CANCELLED
		assert recorder.execution.error == CANCELLED_MESSAGE

	@pytest.mark.asyncio
	async def test_terminal_status_is_final(self, recorder):
		await recorder.start()
		await recorder.complete({})
		with pytest.raises(ExecutionStateError):
			await recorder.fail("late")
		with pytest.raises(ExecutionStateError):
			await recorder.start()
		assert recorder.execution.status == ExecutionStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_cannot_complete_before_start(self, recorder):
		with pytest.raises(ExecutionStateError):
			await recorder.complete({})

	def test_append_log(self, recorder):
		entry = recorder.append_log("n1", "Open page", "navigate", {"success": True})
		assert recorder.execution.execution_log == [entry]
		assert entry.model_dump(by_alias=True)["nodeName"] == "Open page"
