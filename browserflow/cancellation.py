# cancellation

import asyncio
import logging


from   typing   import Dict, List, Optional


from   .browser import PageHandle
from   .utils   import log_print


class CancellationRegistry:
	"""
	Running flags and browser handles of live executions, keyed by execution id.
	One instance is created by the application and shared by every engine run.
	"""

	def __init__(self):
		self._running : Dict[str, bool]       = {}
		self._handles : Dict[str, PageHandle] = {}
		self._lock    : asyncio.Lock          = asyncio.Lock()


	def register(self, execution_id: str):
		self._running[execution_id] = True


	def is_registered(self, execution_id: str) -> bool:
		return execution_id in self._running


	def is_running(self, execution_id: str) -> bool:
		return self._running.get(execution_id, False)


	def attach(self, execution_id: str, handle: PageHandle):
		self._handles[execution_id] = handle


	def get_handle(self, execution_id: str) -> Optional[PageHandle]:
		return self._handles.get(execution_id)


	def running_ids(self) -> List[str]:
		return [key for key, value in self._running.items() if value]


	async def stop(self, execution_id: str) -> bool:
		"""Clear the running flag and release the browser right away"""
		if execution_id not in self._running:
			return False
		log_print(f"Stopping execution: {execution_id}")
		self._running[execution_id] = False
		await self.release(execution_id)
		return True


	async def release(self, execution_id: str, keep_open: bool = False):
		async with self._lock:
			handle = self._handles.pop(execution_id, None)
		if handle is None:
			return
		if keep_open:
			log_print(f"Keeping browser open for execution {execution_id}")
			return
		try:
			await handle.close()
		except Exception as e:
			log_print(f"Error cleaning up browser for execution {execution_id}: {e}", level=logging.ERROR)


	def finish(self, execution_id: str):
		"""Forget an execution that reached a terminal status"""
		self._running.pop(execution_id, None)
