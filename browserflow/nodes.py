# nodes

import asyncio
import base64
import json
import logging
import math
import os
import re
import tempfile


from   jinja2   import Environment
from   pydantic import ValidationError
from   typing   import Any, Callable, Dict, List, Optional
from   urllib.parse import urljoin, urlparse


from   .browser import count_elements, element_attribute, element_attributes, element_html, element_text, element_texts, is_closed_target_error, lookup_text, wait_for_state
from   .schema  import (
	DEFAULT_ALERT_TIMEOUT, DEFAULT_ATTACHED_TIMEOUT, DEFAULT_CONDITION_TIMEOUT, DEFAULT_EXTRACT_URLS_VARIABLE,
	DEFAULT_REGEX_OUTPUT_VARIABLE, DEFAULT_SCROLL_AMOUNT, DEFAULT_VISIBLE_TIMEOUT, DEFAULT_WAIT_FOR_TIMEOUT,
	DEFAULT_WAIT_TIME_DURATION, ActionConfig, LoopBinding, Node, UnknownActionError,
)
from   .utils   import get_now_str, log_print, serialize_result


VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")
JS_NAMED_GROUP   = re.compile(r"\(\?<(?![=!])")

_HTML_TEMPLATE = Environment(autoescape=True).from_string("<pre>{{ payload }}</pre>")


class NodeFailure(Exception):
	"""Raised inside a node to report a node-level error"""
	pass


def to_js_string(value: Any) -> str:
	"""Stringify a variable the way it reads inside a browser script"""
	if value is None:
		return "null"
	if isinstance(value, bool):
		return "true" if value else "false"
	if isinstance(value, float) and value.is_integer():
		return str(int(value))
	if isinstance(value, (list, tuple)):
		return ",".join("" if v is None else to_js_string(v) for v in value)
	if isinstance(value, dict):
		return json.dumps(serialize_result(value))
	return str(value)


def is_truthy(value: Any) -> bool:
	if value is None or value is False:
		return False
	if isinstance(value, (int, float)) and (value == 0 or (isinstance(value, float) and math.isnan(value))):
		return False
	if isinstance(value, str) and value == "":
		return False
	return True


def interpolate(text: Optional[str], variables: Dict[str, Any]) -> str:
	"""Replace every {{name}} with the current value of that variable"""
	if not text:
		return ""

	def _replace(match: re.Match) -> str:
		name = match.group(1)
		if name not in variables:
			return match.group(0)
		value = variables[name]
		if isinstance(value, (list, tuple)):
			log_print(f"Interpolating array variable '{name}' with {len(value)} items as string. This might be unintended.", level=logging.WARNING)
		return to_js_string(value)

	return VARIABLE_PATTERN.sub(_replace, text)


def compile_pattern(pattern: str, flags: str = "") -> re.Pattern:
	"""Compile a pattern written with browser-style flags (i, m, s, g)"""
	value = 0
	if "i" in flags:
		value |= re.IGNORECASE
	if "m" in flags:
		value |= re.MULTILINE
	if "s" in flags:
		value |= re.DOTALL
	return re.compile(JS_NAMED_GROUP.sub("(?P<", pattern), value)


def js_replacement(replacement: str) -> str:
	"""Translate $1, $& and $$ into their re.sub equivalents"""
	result = replacement.replace("\\", "\\\\")
	result = result.replace("$$", "\x00")
	result = result.replace("$&", r"\g<0>")
	result = re.sub(r"\$(\d+)", r"\\g<\1>", result)
	return result.replace("\x00", "$")


class NodeExecutionContext:
	def __init__(self,
		page         : Any,
		variables    : Dict[str, Any],
		node         : Node,
		execution_id : str                        = "",
		flow_id      : Optional[str]              = None,
		is_running   : Optional[Callable[[], bool]] = None,
		download_dir : Optional[str]              = None,
	):
		self.page         = page
		self.variables    = variables
		self.node         = node
		self.execution_id = execution_id
		self.flow_id      = flow_id
		self.is_running   = is_running or (lambda: True)
		self.download_dir = download_dir or tempfile.gettempdir()


class NodeExecutionResult:
	def __init__(self, success: bool = True, error: Optional[str] = None, **details: Any):
		self.success          : bool                   = success
		self.error            : Optional[str]          = error
		self.variable         : Optional[Dict]         = None
		self.condition        : Optional[bool]         = None
		self.next_handle      : Optional[str]          = None
		self.is_array_loop    : bool                   = False
		self.array_data       : Optional[List[Any]]    = None
		self.loop_config      : Optional[LoopBinding]  = None
		self.is_terminal_node : bool                   = False
		self.response         : Any                    = None
		self.cancelled        : bool                   = False
		self.details          : Dict[str, Any]         = details


	def set_variable(self, name: Optional[str], value: Any):
		self.variable = {"name": name, "value": value}


	def set_condition(self, value: bool):
		self.condition   = value
		self.next_handle = "true" if value else "false"


	def to_dict(self) -> Dict[str, Any]:
		data = {"success": self.success}
		data.update(self.details)
		if self.error is not None:
			data["error"] = self.error
		if self.variable is not None:
			data["variable"] = self.variable
		if self.condition is not None:
			data["condition"] = self.condition
		if self.next_handle is not None:
			data["nextHandle"] = self.next_handle
		if self.is_array_loop:
			data["isArrayLoop"] = True
			data["arrayData"]   = self.array_data
			data["loopConfig"]  = self.loop_config.model_dump(by_alias=True) if self.loop_config else None
		if self.is_terminal_node:
			data["isTerminalNode"] = True
			data["response"]       = self.response
		if self.cancelled:
			data["cancelled"] = True
		return serialize_result(data)


class WFBaseType:
	def __init__(self, config: ActionConfig, **kwargs):
		self.config = config

	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		return NodeExecutionResult()

	def text(self, value: Optional[str], context: NodeExecutionContext) -> str:
		return interpolate(value, context.variables)


class WFStart(WFBaseType):
	pass


class WFNavigate(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config    = self.config
		variables = context.variables
		if config.url_variable and is_truthy(variables.get(config.url_variable)):
			value = variables[config.url_variable]
			url   = to_js_string(value[0]) if isinstance(value, (list, tuple)) else to_js_string(value)
		else:
			url = self.text(config.url, context)

		log_print(f"Navigate node going to: {url}", level=logging.DEBUG)
		await context.page.goto(url, wait_until=config.wait_until)
		return NodeExecutionResult(url=url, waitUntil=config.wait_until)


class WFClick(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		if self.config.wait_before:
			await context.page.wait_for_timeout(self.config.wait_before)
		await context.page.click(selector)
		return NodeExecutionResult(selector=selector)


class WFType(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config    = self.config
		variables = context.variables
		selector  = self.text(config.selector, context)
		if config.text_variable and is_truthy(variables.get(config.text_variable)):
			text = to_js_string(variables[config.text_variable])
		else:
			text = self.text(config.text, context)

		if config.clear:
			await context.page.fill(selector, "")
		await context.page.type(selector, text, delay=config.delay or 0)
		return NodeExecutionResult(selector=selector, text=text)


class WFWaitFor(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		await context.page.wait_for_selector(
			selector,
			state   = self.config.state,
			timeout = self.config.timeout or DEFAULT_WAIT_FOR_TIMEOUT,
		)
		return NodeExecutionResult(selector=selector)


class WFScroll(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config = self.config
		if config.selector:
			selector = self.text(config.selector, context)
			element  = await context.page.query_selector(selector)
			if element is not None:
				await element.scroll_into_view_if_needed()
			return NodeExecutionResult(selector=selector, found=element is not None)

		amount   = config.amount or DEFAULT_SCROLL_AMOUNT
		scroll_y = amount if config.direction == "down" else -amount
		await context.page.evaluate("y => window.scrollBy(0, y)", scroll_y)
		return NodeExecutionResult(amount=amount, direction=config.direction)


class WFExtractText(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		if self.config.multiple:
			value = await element_texts(context.page, selector)
		else:
			value = await element_text(context.page, selector)
			if value is None:
				raise NodeFailure(f"Element not found: {selector}")
			value = value.strip()

		result = NodeExecutionResult()
		result.set_variable(self.config.variable_name, value)
		return result


class WFExtractHtml(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		value    = await element_html(context.page, selector)
		if value is None:
			raise NodeFailure(f"Element not found: {selector}")

		result = NodeExecutionResult()
		result.set_variable(self.config.variable_name, value)
		return result


class WFExtractAttribute(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		if await count_elements(context.page, selector) == 0:
			raise NodeFailure(f"Element not found: {selector}")
		value = await element_attribute(context.page, selector, self.config.attribute)

		result = NodeExecutionResult()
		result.set_variable(self.config.variable_name, value)
		return result


class WFScreenshot(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config = self.config
		if config.selector:
			selector = self.text(config.selector, context)
			element  = await context.page.query_selector(selector)
			if element is None:
				raise NodeFailure(f"Element not found: {selector}")
			image = await element.screenshot()
		else:
			image = await context.page.screenshot(full_page=config.full_page)

		result = NodeExecutionResult()
		result.set_variable(config.variable_name, base64.b64encode(image).decode("ascii"))
		return result


class WFWaitTime(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		duration = self.config.duration or DEFAULT_WAIT_TIME_DURATION
		await context.page.wait_for_timeout(duration)
		return NodeExecutionResult(duration=duration)


class WFSetVariable(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config    = self.config
		variables = context.variables
		if config.from_variable and is_truthy(variables.get(config.from_variable)):
			value = variables[config.from_variable]
		elif isinstance(config.value, str) or config.value is None:
			value = self.text(config.value, context)
		else:
			value = config.value

		result = NodeExecutionResult()
		result.set_variable(config.name, value)
		return result


class WFCondition(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config    = self.config
		variables = context.variables
		selector  = self.text(config.selector, context)
		expected  = self.text(config.value, context)
		outcome   = False

		if config.variable and config.variable in variables:
			actual = to_js_string(variables[config.variable])
			if config.type == "equals":
				outcome = actual == expected
			elif config.type == "contains":
				outcome = expected in actual
			elif config.type == "regex":
				outcome = compile_pattern(expected).search(actual) is not None
			else:
				outcome = is_truthy(variables[config.variable])
		elif selector:
			outcome = await self._element_condition(context, selector, expected)

		result = NodeExecutionResult(type=config.type)
		result.set_condition(outcome)
		return result


	async def _element_condition(self, context: NodeExecutionContext, selector: str, expected: str) -> bool:
		kind = self.config.type
		if kind == "exists":
			return await wait_for_state(context.page, selector, "visible", self.config.timeout or DEFAULT_CONDITION_TIMEOUT)
		if kind not in ("contains", "equals", "regex"):
			return False

		text = await lookup_text(context.page, selector)
		if text is None:
			return False
		if kind == "contains":
			return expected in text
		if kind == "equals":
			return text.strip() == expected
		try:
			return compile_pattern(expected).search(text) is not None
		except re.error:
			return False


class WFIsVisible(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config   = self.config
		selector = self.text(config.selector, context)
		timeout  = config.timeout or DEFAULT_VISIBLE_TIMEOUT

		visible = await wait_for_state(context.page, selector, "visible", timeout)
		if visible:
			state = "visible"
		elif await wait_for_state(context.page, selector, "attached", DEFAULT_ATTACHED_TIMEOUT):
			state = "hidden"
		else:
			state = "absent"

		result = NodeExecutionResult(selector=selector, state=state)
		result.set_condition(visible)
		if config.variable_name:
			result.set_variable(config.variable_name, visible)
		return result


class WFHover(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		await context.page.hover(selector)
		if self.config.duration:
			await context.page.wait_for_timeout(self.config.duration)
		return NodeExecutionResult(selector=selector)


class WFSelectOption(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config   = self.config
		selector = self.text(config.selector, context)
		if config.value:
			await context.page.select_option(selector, self.text(config.value, context))
		elif config.text:
			await context.page.select_option(selector, label=self.text(config.text, context))
		return NodeExecutionResult(selector=selector)


class WFCheckBox(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		action   = self.config.action
		page     = context.page

		if action == "check":
			await page.check(selector)
		elif action == "uncheck":
			await page.uncheck(selector)
		elif await page.is_checked(selector):
			await page.uncheck(selector)
		else:
			await page.check(selector)
		return NodeExecutionResult(selector=selector, action=action)


class WFKeyPress(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		keys      = self.config.keys
		modifiers = self.config.modifiers
		combo     = "+".join([*modifiers, keys]) if modifiers else keys
		await context.page.keyboard.press(combo)
		return NodeExecutionResult(keys=keys, modifiers=modifiers)


class WFIframe(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		if self.config.action == "exit":
			return NodeExecutionResult(action="exited")

		selector = self.text(self.config.selector, context)
		handle   = await context.page.query_selector(selector)
		frame    = await handle.content_frame() if handle is not None else None
		if frame is None:
			return NodeExecutionResult(action="enter", selector=selector, found=False)
		return NodeExecutionResult(action="entered", selector=selector)


class WFDownload(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector = self.text(self.config.selector, context)
		async with context.page.expect_download() as download_info:
			await context.page.click(selector)
		download = await download_info.value

		filename = os.path.basename(self.text(self.config.filename, context) or download.suggested_filename)
		path     = os.path.join(context.download_dir, filename)
		await download.save_as(path)

		result = NodeExecutionResult(selector=selector)
		result.set_variable(self.config.variable_name, path)
		return result


class WFUploadFile(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		selector  = self.text(self.config.selector, context)
		file_path = self.text(self.config.file_path, context)
		await context.page.set_input_files(selector, file_path)
		return NodeExecutionResult(selector=selector, filePath=file_path)


class WFClearCookies(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		domain = self.config.domain
		if domain:
			await context.page.context.clear_cookies(domain=domain)
		else:
			await context.page.context.clear_cookies()
		return NodeExecutionResult(domain=domain)


class WFSetCookie(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config = self.config
		value  = self.text(config.value, context)
		domain = config.domain or urlparse(context.page.url).hostname
		if not domain:
			raise NodeFailure("Cannot derive cookie domain from the current page")

		await context.page.context.add_cookies([{
			"name"   : config.name,
			"value"  : value,
			"domain" : domain,
			"path"   : config.path or "/",
		}])
		return NodeExecutionResult(name=config.name, value=value)


class WFAlert(WFBaseType):
	"""
	Handles the next dialog of the page.
	The handler resolves a future, so the dialog text reaches the result;
	waiting is bounded by the configured timeout.
	"""

	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config  = self.config
		timeout = config.timeout or DEFAULT_ALERT_TIMEOUT
		future  = asyncio.get_running_loop().create_future()

		async def on_dialog(dialog):
			try:
				message = dialog.message
				if config.action == "dismiss":
					await dialog.dismiss()
				elif config.action == "accept":
					await dialog.accept(self.text(config.text, context))
				else:
					await dialog.accept()
				if not future.done():
					future.set_result(message)
			except Exception as e:
				if not future.done():
					future.set_exception(e)

		context.page.once("dialog", on_dialog)
		if config.selector:
			await context.page.click(self.text(config.selector, context))

		try:
			message = await asyncio.wait_for(future, timeout / 1000)
		except asyncio.TimeoutError:
			raise NodeFailure(f"No dialog appeared within {timeout} ms")

		result = NodeExecutionResult(action=config.action, message=message)
		if config.action == "getText":
			result.set_variable(config.variable_name, message)
		return result


class WFRegex(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config = self.config

		if config.source == "variable":
			value = context.variables.get(config.variable_name or "")
			text  = value if isinstance(value, str) else ("" if value is None else to_js_string(value))
		elif config.source == "element":
			text = await lookup_text(context.page, self.text(config.selector, context)) or ""
		else:
			text = self.text(config.text, context)

		match_all = config.match_all or "g" in config.flags
		try:
			pattern = compile_pattern(config.pattern, config.flags)
			value   = self._apply(pattern, text, match_all)
		except re.error as e:
			return NodeExecutionResult(success=False, error=f"Regex error: {e}")

		result = NodeExecutionResult(operation=config.operation)
		result.set_variable(config.output_variable or DEFAULT_REGEX_OUTPUT_VARIABLE, value)
		return result


	def _apply(self, pattern: re.Pattern, text: str, match_all: bool) -> Any:
		operation = self.config.operation

		if operation == "match":
			if match_all:
				found = [m.group(0) for m in pattern.finditer(text)]
				return found or None
			m = pattern.search(text)
			return [m.group(0), *m.groups()] if m else None

		if operation == "extract":
			if match_all:
				return [list(m.groups()) for m in pattern.finditer(text)]
			m = pattern.search(text)
			return [list(m.groups())] if m else []

		if operation == "replace":
			return pattern.sub(js_replacement(self.config.replacement), text, count=0 if match_all else 1)

		return pattern.search(text) is not None


class WFExtractUrls(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config   = self.config
		selector = self.text(config.selector, context)
		name     = config.variable_name or DEFAULT_EXTRACT_URLS_VARIABLE
		result   = NodeExecutionResult(selector=selector)

		if await count_elements(context.page, selector) == 0:
			log_print(f"No elements found with selector: {selector}", level=logging.WARNING)
			result.set_variable(name, [])
			return result

		hrefs = await element_attributes(context.page, f"{selector} a[href]", "href")
		urls  = self.filter_urls(hrefs)
		log_print(f"Extracted {len(urls)} URLs from '{selector}'", level=logging.DEBUG)

		result.set_variable(name, urls)
		return result


	def filter_urls(self, hrefs: List[Optional[str]]) -> List[str]:
		config = self.config
		urls   = []
		for href in hrefs:
			if not href:
				continue
			if not config.include_empty and (href.strip() == "" or href == "#"):
				continue
			if href.startswith(("/", "./", "../")):
				if not config.include_relative:
					continue
				urls.append(urljoin(config.base_url, href) if config.base_url else href)
			else:
				urls.append(href)

		if config.filter_duplicates:
			urls = list(dict.fromkeys(urls))
		return urls


class WFLoop(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config = self.config

		if config.type == "while":
			raise NodeFailure("Loop type 'while' is not supported")

		if config.type == "array":
			value = context.variables.get(config.array_variable)
			items = list(value) if isinstance(value, (list, tuple)) else []
		elif config.type == "times":
			times = 1 if config.times is None else max(config.times, 0)
			items = list(range(1, times + 1))
		else:
			selector = self.text(config.selector, context)
			if not selector:
				raise NodeFailure("Loop type 'forEach' requires a selector")
			count = await count_elements(context.page, selector)
			items = [f"{selector} >> nth={i}" for i in range(count)]

		result               = NodeExecutionResult(type=config.type, totalItems=len(items))
		result.condition     = len(items) > 0
		result.is_array_loop = True
		result.array_data    = items
		result.loop_config   = LoopBinding(
			type           = config.type,
			array_variable = config.array_variable,
			item_variable  = config.item_variable,
			index_variable = config.index_variable,
		)
		return result


class WFResponse(WFBaseType):
	async def execute(self, context: NodeExecutionContext) -> NodeExecutionResult:
		config    = self.config
		variables = context.variables

		if config.variables_to_include:
			data = {name: variables[name] for name in config.variables_to_include if name in variables}
		else:
			data = dict(variables)

		if config.combine_arrays:
			arrays = [value for value in data.values() if isinstance(value, list)]
			if arrays:
				data["combinedArrays"] = [item for array in arrays for item in array]

		if config.include_metadata:
			data["_metadata"] = {
				"executedAt"    : get_now_str(),
				"format"        : config.format,
				"variableCount" : len(data),
			}

		data = serialize_result(data)
		if config.format == "text":
			payload = json.dumps(data, indent=2, ensure_ascii=False)
		elif config.format == "html":
			payload = _HTML_TEMPLATE.render(payload=json.dumps(data, indent=2, ensure_ascii=False))
		else:
			payload = data

		result = NodeExecutionResult(format=config.format)
		result.is_terminal_node = True
		result.response         = payload
		return result


_NODE_TYPES = {
	"start"            : WFStart,
	"navigate"         : WFNavigate,
	"click"            : WFClick,
	"type"             : WFType,
	"waitFor"          : WFWaitFor,
	"scroll"           : WFScroll,
	"extractText"      : WFExtractText,
	"extractHtml"      : WFExtractHtml,
	"extractAttribute" : WFExtractAttribute,
	"screenshot"       : WFScreenshot,
	"waitTime"         : WFWaitTime,
	"setVariable"      : WFSetVariable,
	"condition"        : WFCondition,
	"isVisible"        : WFIsVisible,
	"hover"            : WFHover,
	"selectOption"     : WFSelectOption,
	"checkBox"         : WFCheckBox,
	"keyPress"         : WFKeyPress,
	"iframe"           : WFIframe,
	"download"         : WFDownload,
	"uploadFile"       : WFUploadFile,
	"clearCookies"     : WFClearCookies,
	"setCookie"        : WFSetCookie,
	"alert"            : WFAlert,
	"regex"            : WFRegex,
	"extractUrls"      : WFExtractUrls,
	"loop"             : WFLoop,
	"response"         : WFResponse,
}


def create_node(node: Node, **kwargs) -> WFBaseType:
	node_class = _NODE_TYPES.get(node.action)
	if node_class is None:
		raise UnknownActionError(node.action)
	try:
		config = node.settings()
	except ValidationError as e:
		details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
		raise NodeFailure(f"Invalid configuration for {node.action}: {details}")
	return node_class(config, **kwargs)


async def execute_node(node: Node, context: NodeExecutionContext) -> NodeExecutionResult:
	"""Run one node and fold any error into its result"""
	current_input = context.variables.get("currentInput")
	if current_input is not None:
		context.variables[f"{node.id}_input"] = current_input

	try:
		executor = create_node(node)
		return await executor.execute(context)
	except Exception as e:
		message = str(e) or e.__class__.__name__
		if not context.is_running() and is_closed_target_error(message):
			log_print(f"Ignoring browser error after cancellation: {message}", level=logging.DEBUG)
			result = NodeExecutionResult()
			result.cancelled = True
			return result
		return NodeExecutionResult(success=False, error=message)
