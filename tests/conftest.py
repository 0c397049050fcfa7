"""
Pytest fixtures: an in-memory stand-in for a Playwright page and the engine wiring around it
"""

import contextlib
import pytest


from   playwright.async_api import Error as PlaywrightError
from   typing   import Any, Callable, Dict, List, Optional


from   browserflow.browser      import PageHandle
from   browserflow.cancellation import CancellationRegistry
from   browserflow.engine       import FlowEngine
from   browserflow.event_bus    import EventBus
from   browserflow.nodes        import NodeExecutionContext
from   browserflow.schema       import Flow, Node


CLOSED_ERROR = "Target page, context or browser has been closed"


class FakeElement:
	def __init__(self, text: str = "", html: str = "", attrs: Optional[Dict[str, str]] = None, frame: Any = None):
		self.text      = text
		self.html      = html
		self.attrs     = attrs or {}
		self.frame     = frame
		self.scrolled  = False

	async def text_content(self):
		return self.text

	async def inner_html(self):
		return self.html

	async def get_attribute(self, name):
		return self.attrs.get(name)

	async def screenshot(self):
		return b"element-png"

	async def scroll_into_view_if_needed(self):
		self.scrolled = True

	async def content_frame(self):
		return self.frame


class FakeDialog:
	def __init__(self, message: str):
		self.message   = message
		self.accepted  = None
		self.dismissed = False

	async def accept(self, prompt_text: str = ""):
		self.accepted = prompt_text

	async def dismiss(self):
		self.dismissed = True


class FakeKeyboard:
	def __init__(self, page):
		self.page = page

	async def press(self, combo):
		self.page.record("press", combo)


class FakeContext:
	def __init__(self):
		self.cookies        = []
		self.cleared_domain = "<never>"

	async def clear_cookies(self, domain=None):
		self.cleared_domain = domain
		self.cookies        = [c for c in self.cookies if domain and c["domain"] != domain]

	async def add_cookies(self, cookies):
		self.cookies.extend(cookies)


class FakeDownload:
	def __init__(self, suggested_filename: str, content: bytes = b"data"):
		self.suggested_filename = suggested_filename
		self.content            = content

	async def save_as(self, path):
		with open(path, "wb") as f:
			f.write(self.content)


class FakeDownloadInfo:
	def __init__(self, download):
		self._download = download

	@property
	def value(self):
		async def _value():
			return self._download
		return _value()


class FakePage:
	"""
	Implements the slice of the Playwright Page API the dispatcher uses.
	elements maps a selector to the elements it matches; visible lists the
	selectors considered visible (every other known selector is attached but hidden).
	"""

	def __init__(self,
		elements : Optional[Dict[str, List[FakeElement]]] = None,
		visible  : Optional[List[str]]                    = None,
		url      : str                                    = "https://example.com/start",
	):
		self.elements        = elements or {}
		self.visible         = set(visible or [])
		self.url             = url
		self.calls           = []
		self.visits          = []
		self.context         = FakeContext()
		self.keyboard        = FakeKeyboard(self)
		self.checked         = set()
		self.dialog_triggers = {}
		self.download        = None
		self.close_count     = 0
		self.fail_on         = {}
		self._dialog_handler = None

	def record(self, name, *args):
		if self.close_count and name != "close":
			raise PlaywrightError(CLOSED_ERROR)
		if name in self.fail_on:
			raise self.fail_on[name]
		self.calls.append((name, *args))

	def called(self, name):
		return [c for c in self.calls if c[0] == name]

	def is_closed(self):
		return self.close_count > 0

	async def close(self):
		self.close_count += 1

	async def set_extra_http_headers(self, headers):
		self.record("set_extra_http_headers", headers)

	async def goto(self, url, wait_until=None):
		self.record("goto", url, wait_until)
		self.visits.append(url)
		self.url = url

	async def click(self, selector):
		self.record("click", selector)
		if selector in self.dialog_triggers and self._dialog_handler is not None:
			handler, self._dialog_handler = self._dialog_handler, None
			await handler(self.dialog_triggers[selector])

	async def fill(self, selector, value):
		self.record("fill", selector, value)

	async def type(self, selector, text, delay=0):
		self.record("type", selector, text, delay)

	async def wait_for_selector(self, selector, state="visible", timeout=30000):
		self.record("wait_for_selector", selector, state, timeout)
		if state == "visible" and selector in self.visible:
			return FakeElement()
		if state == "attached" and selector in self.elements:
			return FakeElement()
		raise PlaywrightError(f"Timeout {timeout}ms exceeded waiting for {selector}")

	async def query_selector(self, selector):
		self.record("query_selector", selector)
		matches = self.elements.get(selector) or []
		return matches[0] if matches else None

	async def query_selector_all(self, selector):
		self.record("query_selector_all", selector)
		return list(self.elements.get(selector) or [])

	async def evaluate(self, script, arg=None):
		self.record("evaluate", script, arg)

	async def screenshot(self, full_page=False):
		self.record("screenshot", full_page)
		return b"page-png"

	async def wait_for_timeout(self, ms):
		self.record("wait_for_timeout", ms)

	async def hover(self, selector):
		self.record("hover", selector)

	async def select_option(self, selector, value=None, label=None):
		self.record("select_option", selector, value, label)

	async def check(self, selector):
		self.record("check", selector)
		self.checked.add(selector)

	async def uncheck(self, selector):
		self.record("uncheck", selector)
		self.checked.discard(selector)

	async def is_checked(self, selector):
		return selector in self.checked

	async def set_input_files(self, selector, files):
		self.record("set_input_files", selector, files)

	def once(self, event, handler):
		if event == "dialog":
			self._dialog_handler = handler

	@contextlib.asynccontextmanager
	async def expect_download(self):
		yield FakeDownloadInfo(self.download)


class FakeSessionProvider:
	def __init__(self, page_factory: Callable[[], FakePage] = FakePage):
		self.page_factory = page_factory
		self.pages        = []
		self.settings     = []
		self.closed       = False

	async def create_page(self, settings=None):
		page = self.page_factory()
		self.pages.append(page)
		self.settings.append(settings)
		return PageHandle(page)

	async def close(self):
		self.closed = True


def make_node(node_id: str, action: str, label: Optional[str] = None, **config) -> Dict[str, Any]:
	return {"id": node_id, "action": action, "label": label or node_id, "config": config}


def make_edge(source: str, target: str, handle: Optional[str] = None) -> Dict[str, Any]:
	edge = {"id": f"{source}-{target}", "source": source, "target": target}
	if handle is not None:
		edge["sourceHandle"] = handle
	return edge


def make_flow(nodes, edges, **extra) -> Flow:
	return Flow.model_validate({"name": "test flow", "nodes": nodes, "edges": edges, **extra})


def make_context(page=None, variables=None, node=None, running=True) -> NodeExecutionContext:
	return NodeExecutionContext(
		page       = page if page is not None else FakePage(),
		variables  = variables if variables is not None else {},
		node       = node or Node(id="n", action="start"),
		is_running = lambda: running,
	)


@pytest.fixture
def page():
	return FakePage()


@pytest.fixture
def event_bus():
	return EventBus()


@pytest.fixture
def registry():
	return CancellationRegistry()


@pytest.fixture
def sessions():
	return FakeSessionProvider()


@pytest.fixture
def engine(event_bus, sessions, registry):
	return FlowEngine(event_bus=event_bus, sessions=sessions, registry=registry)
