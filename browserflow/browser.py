# browser

import asyncio
import logging


from   playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Page, Playwright, async_playwright
from   typing   import Any, Awaitable, Callable, List, Optional


from   .schema  import DEFAULT_BROWSER_SLOW_MO, DEFAULT_USER_AGENT, DEFAULT_VIEWPORT_HEIGHT, DEFAULT_VIEWPORT_WIDTH, BrowserSettings
from   .utils   import log_print


BASE_LAUNCH_ARGS = [
	"--no-sandbox",
	"--disable-setuid-sandbox",
	"--disable-dev-shm-usage",
	"--no-first-run",
	"--no-zygote",
	"--disable-gpu",
]

STEALTH_LAUNCH_ARGS = [
	"--disable-blink-features=AutomationControlled",
	"--disable-features=VizDisplayCompositor",
	"--disable-extensions",
	"--disable-plugins",
	"--disable-component-extensions-with-background-pages",
]

STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins',   { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""

EXTRA_HTTP_HEADERS = {
	"Accept-Language" : "en-US,en;q=0.9",
	"Accept"          : "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
}

# Fragments of driver errors raised when a page is torn down under a running node
CLOSED_TARGET_ERRORS = (
	"Target page, context or browser has been closed",
	"Browser has been closed",
	"Page has been closed",
	"Context has been closed",
	"Target closed",
	"Protocol error",
)


def is_closed_target_error(message: str) -> bool:
	return any(fragment in message for fragment in CLOSED_TARGET_ERRORS)


def launch_args(stealth: bool) -> List[str]:
	args = list(BASE_LAUNCH_ARGS)
	if stealth:
		args.extend(STEALTH_LAUNCH_ARGS)
		args.append(f"--user-agent={DEFAULT_USER_AGENT}")
	return args


async def close_quietly(name: str, close: Callable[[], Awaitable[None]]):
	try:
		await close()
	except PlaywrightError as e:
		log_print(f"Error closing {name}: {e}", level=logging.ERROR)


class PageHandle:
	"""
	A page plus whatever browser objects were created for it.
	close() releases them exactly once, however many times it is called.
	"""

	def __init__(self, page: Any, context: Optional[BrowserContext] = None, browser: Optional[Browser] = None):
		self.page     = page
		self.context  = context
		self.browser  = browser
		self._closed  = False
		self._lock    = asyncio.Lock()


	@property
	def closed(self) -> bool:
		return self._closed


	async def close(self) -> bool:
		async with self._lock:
			if self._closed:
				return False
			self._closed = True

			try:
				if not self.page.is_closed():
					await close_quietly("page", self.page.close)
			finally:
				try:
					if self.context is not None:
						await close_quietly("context", self.context.close)
				finally:
					if self.browser is not None:
						await close_quietly("browser", self.browser.close)

			return True


class BrowserSessionProvider:
	"""
	Creates pages for flow executions.
	Flows with their own browser settings get a dedicated Chromium instance,
	the others share one lazily started browser context.
	"""

	def __init__(self, headless: bool = True):
		self.headless    : bool                     = headless
		self._playwright : Optional[Playwright]     = None
		self._browser    : Optional[Browser]        = None
		self._context    : Optional[BrowserContext] = None
		self._lock       : asyncio.Lock             = asyncio.Lock()


	async def _ensure_playwright(self) -> Playwright:
		if self._playwright is None:
			self._playwright = await async_playwright().start()
		return self._playwright


	async def _shared_context(self) -> BrowserContext:
		async with self._lock:
			if self._context is None:
				playwright     = await self._ensure_playwright()
				self._browser  = await playwright.chromium.launch(
					headless = self.headless,
					slow_mo  = DEFAULT_BROWSER_SLOW_MO,
					args     = launch_args(stealth=True),
				)
				self._context  = await self._browser.new_context(
					viewport            = {"width": DEFAULT_VIEWPORT_WIDTH, "height": DEFAULT_VIEWPORT_HEIGHT},
					user_agent          = DEFAULT_USER_AGENT,
					java_script_enabled = True,
					ignore_https_errors = True,
				)
				await self._context.add_init_script(STEALTH_INIT_SCRIPT)
				log_print(f"Shared browser started - Headless: {self.headless}")
			return self._context


	async def create_page(self, settings: Optional[BrowserSettings] = None) -> PageHandle:
		if settings is None or not settings.is_custom:
			context = await self._shared_context()
			page    = await context.new_page()
			await page.set_extra_http_headers(EXTRA_HTTP_HEADERS)
			return PageHandle(page)

		playwright = await self._ensure_playwright()
		headless   = self.headless if settings.headless is None else settings.headless
		browser    = await playwright.chromium.launch(
			headless = headless,
			slow_mo  = settings.slow_mo,
			args     = launch_args(settings.stealth),
		)

		try:
			viewport = settings.viewport
			context  = await browser.new_context(
				viewport            = {
					"width"  : viewport.width  if viewport else DEFAULT_VIEWPORT_WIDTH,
					"height" : viewport.height if viewport else DEFAULT_VIEWPORT_HEIGHT,
				},
				user_agent          = settings.user_agent or DEFAULT_USER_AGENT,
				java_script_enabled = True,
				ignore_https_errors = True,
			)
			if settings.stealth:
				await context.add_init_script(STEALTH_INIT_SCRIPT)

			page = await context.new_page()
			await page.set_extra_http_headers(EXTRA_HTTP_HEADERS)
		except BaseException:
			await close_quietly("browser", browser.close)
			raise

		log_print(f"Dedicated browser started - Headless: {headless}, Stealth: {settings.stealth}")
		return PageHandle(page, context, browser)


	async def close(self):
		async with self._lock:
			if self._context is not None:
				await self._context.close()
				self._context = None
			if self._browser is not None:
				await self._browser.close()
				self._browser = None
			if self._playwright is not None:
				await self._playwright.stop()
				self._playwright = None


# =============================================================================
# ELEMENT LOOKUPS
# =============================================================================
# Absence is a value here: these answer None/False instead of raising.

async def wait_for_state(page: Page, selector: str, state: str, timeout: int) -> bool:
	try:
		await page.wait_for_selector(selector, state=state, timeout=timeout)
	except PlaywrightError:
		return False
	return True


async def element_text(page: Page, selector: str) -> Optional[str]:
	element = await page.query_selector(selector)
	if element is None:
		return None
	return (await element.text_content()) or ""


async def lookup_text(page: Page, selector: str) -> Optional[str]:
	"""element_text that reports driver errors as a missing element"""
	try:
		return await element_text(page, selector)
	except PlaywrightError:
		return None


async def element_texts(page: Page, selector: str) -> List[str]:
	texts = []
	for element in await page.query_selector_all(selector):
		texts.append(((await element.text_content()) or "").strip())
	return texts


async def element_html(page: Page, selector: str) -> Optional[str]:
	element = await page.query_selector(selector)
	if element is None:
		return None
	return await element.inner_html()


async def element_attribute(page: Page, selector: str, attribute: str) -> Optional[str]:
	element = await page.query_selector(selector)
	if element is None:
		return None
	return await element.get_attribute(attribute)


async def element_attributes(page: Page, selector: str, attribute: str) -> List[Optional[str]]:
	return [await element.get_attribute(attribute) for element in await page.query_selector_all(selector)]


async def count_elements(page: Page, selector: str) -> int:
	return len(await page.query_selector_all(selector))
