# schema

from __future__ import annotations


from datetime   import datetime, timezone
from enum       import Enum
from pydantic   import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel
from typing     import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid       import uuid4


def generate_id():
	return str(uuid4())


def utc_now():
	return datetime.now(timezone.utc)


def _parse_int(value: Any) -> Optional[int]:
	# Editor forms send numbers as strings, and blanks for "use default".
	if value is None or isinstance(value, bool):
		return None
	if isinstance(value, (int, float)):
		return int(value)
	try:
		return int(str(value).strip())
	except ValueError:
		return None


Millis = Annotated[Optional[int], BeforeValidator(_parse_int)]


class WireModel(BaseModel):
	"""camelCase on the wire, snake_case in Python"""
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# =============================================================================
# NODE ACTION CONFIGURATION
# =============================================================================

DEFAULT_START_NODE_ID          : str = "start-node"
DEFAULT_NAVIGATE_WAIT_UNTIL    : str = "networkidle"
DEFAULT_WAIT_FOR_STATE         : str = "visible"
DEFAULT_WAIT_FOR_TIMEOUT       : int = 30000
DEFAULT_SCROLL_AMOUNT          : int = 300
DEFAULT_WAIT_TIME_DURATION     : int = 1000
DEFAULT_CONDITION_TIMEOUT      : int = 5000
DEFAULT_VISIBLE_TIMEOUT        : int = 5000
DEFAULT_ATTACHED_TIMEOUT       : int = 1000
DEFAULT_ALERT_TIMEOUT          : int = 5000
DEFAULT_REGEX_OUTPUT_VARIABLE  : str = "regexResult"
DEFAULT_EXTRACT_URLS_SELECTOR  : str = "body"
DEFAULT_EXTRACT_URLS_VARIABLE  : str = "extractedUrls"
DEFAULT_LOOP_TYPE              : str = "forEach"
DEFAULT_RESPONSE_FORMAT        : str = "json"
DEFAULT_MAX_STEPS              : int = 10000

CANCELLED_MESSAGE              : str = "Execution cancelled by user"


class ActionConfig(WireModel):
	kind : str


class StartConfig(ActionConfig):
	kind : Literal["start"] = "start"


class NavigateConfig(ActionConfig):
	kind         : Literal["navigate"] = "navigate"
	url          : str                 = ""
	url_variable : Optional[str]       = None
	wait_until   : str                 = DEFAULT_NAVIGATE_WAIT_UNTIL


class ClickConfig(ActionConfig):
	kind        : Literal["click"] = "click"
	selector    : str              = ""
	wait_before : Millis           = None


class TypeConfig(ActionConfig):
	kind          : Literal["type"] = "type"
	selector      : str             = ""
	text          : str             = ""
	text_variable : Optional[str]   = None
	clear         : bool            = False
	delay         : Millis          = None


class WaitForConfig(ActionConfig):
	kind     : Literal["waitFor"] = "waitFor"
	selector : str                = ""
	state    : str                = DEFAULT_WAIT_FOR_STATE
	timeout  : Millis             = None


class ScrollConfig(ActionConfig):
	kind      : Literal["scroll"]       = "scroll"
	selector  : Optional[str]           = None
	amount    : Millis                  = None
	direction : Literal["down", "up"]   = "down"


class ExtractTextConfig(ActionConfig):
	kind          : Literal["extractText"] = "extractText"
	selector      : str                    = ""
	multiple      : bool                   = False
	variable_name : Optional[str]          = None


class ExtractHtmlConfig(ActionConfig):
	kind          : Literal["extractHtml"] = "extractHtml"
	selector      : str                    = ""
	variable_name : Optional[str]          = None


class ExtractAttributeConfig(ActionConfig):
	kind          : Literal["extractAttribute"] = "extractAttribute"
	selector      : str                         = ""
	attribute     : str                         = ""
	variable_name : Optional[str]               = None


class ScreenshotConfig(ActionConfig):
	kind          : Literal["screenshot"] = "screenshot"
	selector      : Optional[str]         = None
	full_page     : bool                  = False
	variable_name : Optional[str]         = None


class WaitTimeConfig(ActionConfig):
	kind     : Literal["waitTime"] = "waitTime"
	duration : Millis              = None


class SetVariableConfig(ActionConfig):
	kind          : Literal["setVariable"] = "setVariable"
	name          : Optional[str]          = None
	value         : Any                    = ""
	from_variable : Optional[str]          = None


class ConditionConfig(ActionConfig):
	kind     : Literal["condition"] = "condition"
	type     : str                  = "exists"
	selector : str                  = ""
	value    : str                  = ""
	variable : Optional[str]        = None
	timeout  : Millis               = None


class IsVisibleConfig(ActionConfig):
	kind          : Literal["isVisible"] = "isVisible"
	selector      : str                  = ""
	timeout       : Millis               = None
	variable_name : Optional[str]        = None


class HoverConfig(ActionConfig):
	kind     : Literal["hover"] = "hover"
	selector : str              = ""
	duration : Millis           = None


class SelectOptionConfig(ActionConfig):
	kind     : Literal["selectOption"] = "selectOption"
	selector : str                     = ""
	value    : Optional[str]           = None
	text     : Optional[str]           = None


class CheckBoxConfig(ActionConfig):
	kind     : Literal["checkBox"]                   = "checkBox"
	selector : str                                   = ""
	action   : Literal["check", "uncheck", "toggle"] = "check"


class KeyPressConfig(ActionConfig):
	kind      : Literal["keyPress"] = "keyPress"
	keys      : str                 = ""
	modifiers : List[str]           = Field(default_factory=list)


class IframeConfig(ActionConfig):
	kind     : Literal["iframe"]          = "iframe"
	action   : Literal["enter", "exit"]   = "enter"
	selector : str                        = ""


class DownloadConfig(ActionConfig):
	kind          : Literal["download"] = "download"
	selector      : str                 = ""
	filename      : Optional[str]       = None
	variable_name : Optional[str]       = None


class UploadFileConfig(ActionConfig):
	kind      : Literal["uploadFile"] = "uploadFile"
	selector  : str                   = ""
	file_path : str                   = ""


class ClearCookiesConfig(ActionConfig):
	kind   : Literal["clearCookies"] = "clearCookies"
	domain : Optional[str]           = None


class SetCookieConfig(ActionConfig):
	kind   : Literal["setCookie"] = "setCookie"
	name   : str                  = ""
	value  : str                  = ""
	domain : Optional[str]        = None
	path   : Optional[str]        = None


class AlertConfig(ActionConfig):
	kind          : Literal["alert"]                         = "alert"
	action        : Literal["accept", "dismiss", "getText"]  = "accept"
	text          : Optional[str]                            = None
	variable_name : Optional[str]                            = None
	selector      : Optional[str]                            = None  # clicked to trigger the dialog
	timeout       : Millis                                   = None


class RegexConfig(ActionConfig):
	kind            : Literal["regex"]                                = "regex"
	source          : Literal["text", "variable", "element"]          = "text"
	text            : str                                             = ""
	variable_name   : Optional[str]                                   = None
	selector        : Optional[str]                                   = None
	pattern         : str                                             = ""
	flags           : str                                             = ""
	operation       : Literal["match", "extract", "replace", "test"]  = "match"
	match_all       : bool                                            = False
	replacement     : str                                             = ""
	output_variable : Optional[str]                                   = None


class ExtractUrlsConfig(ActionConfig):
	kind              : Literal["extractUrls"] = "extractUrls"
	selector          : str                    = DEFAULT_EXTRACT_URLS_SELECTOR
	include_relative  : bool                   = True
	include_empty     : bool                   = False
	filter_duplicates : bool                   = True
	base_url          : str                    = ""
	variable_name     : Optional[str]          = None


class LoopConfig(ActionConfig):
	kind           : Literal["loop"]                               = "loop"
	type           : Literal["array", "times", "forEach", "while"] = DEFAULT_LOOP_TYPE
	selector       : str                                           = ""
	times          : Millis                                        = None
	condition      : str                                           = ""
	array_variable : str                                           = ""
	item_variable  : str                                           = ""
	index_variable : str                                           = ""


class ResponseConfig(ActionConfig):
	kind                 : Literal["response"]           = "response"
	format               : Literal["json", "text", "html"] = DEFAULT_RESPONSE_FORMAT
	include_metadata     : bool                          = False
	combine_arrays       : bool                          = False
	variables_to_include : List[str]                     = Field(default_factory=list)


AnyActionConfig = Annotated[
	Union[
		StartConfig,
		NavigateConfig,
		ClickConfig,
		TypeConfig,
		WaitForConfig,
		ScrollConfig,
		ExtractTextConfig,
		ExtractHtmlConfig,
		ExtractAttributeConfig,
		ScreenshotConfig,
		WaitTimeConfig,
		SetVariableConfig,
		ConditionConfig,
		IsVisibleConfig,
		HoverConfig,
		SelectOptionConfig,
		CheckBoxConfig,
		KeyPressConfig,
		IframeConfig,
		DownloadConfig,
		UploadFileConfig,
		ClearCookiesConfig,
		SetCookieConfig,
		AlertConfig,
		RegexConfig,
		ExtractUrlsConfig,
		LoopConfig,
		ResponseConfig,
	],
	Field(discriminator="kind"),
]


ACTION_CONFIG_ADAPTER : TypeAdapter = TypeAdapter(AnyActionConfig)

ACTION_KINDS = frozenset(
	cls.model_fields["kind"].default
	for cls in ActionConfig.__subclasses__()
)


class UnknownActionError(ValueError):
	def __init__(self, action: str):
		super().__init__(f"Unknown action: {action}")
		self.action = action


# =============================================================================
# FLOW GRAPH
# =============================================================================

class Node(WireModel):
	id       : str
	action   : str                       = "start"
	label    : Optional[str]             = None
	config   : Dict[str, Any]            = Field(default_factory=dict)
	type     : Optional[str]             = None
	position : Optional[Dict[str, Any]]  = None

	@model_validator(mode="before")
	@classmethod
	def _lift_editor_data(cls, values: Any) -> Any:
		# Editor nodes carry {data: {label, action, config}}
		if isinstance(values, dict) and isinstance(values.get("data"), dict):
			values = dict(values)
			data   = values.pop("data")
			for key in ("action", "label", "config"):
				if key in data and values.get(key) is None:
					values[key] = data[key]
		if isinstance(values, dict) and values.get("config") is None:
			values = dict(values)
			values["config"] = {}
		return values

	@property
	def name(self) -> str:
		return self.label or self.id

	@property
	def is_start(self) -> bool:
		return self.id == DEFAULT_START_NODE_ID or self.action == "start"

	def settings(self) -> AnyActionConfig:
		"""Parse the per-action configuration into its typed variant"""
		if self.action not in ACTION_KINDS:
			raise UnknownActionError(self.action)
		nested = self.config.get(self.action)
		data   = dict(nested) if isinstance(nested, dict) else dict(self.config)
		data["kind"] = self.action
		return ACTION_CONFIG_ADAPTER.validate_python(data)


class Edge(WireModel):
	id            : Optional[str] = None
	source        : str
	target        : str
	source_handle : Optional[str] = None
	target_handle : Optional[str] = None


class LoopBinding(WireModel):
	type           : str = "array"
	array_variable : str = ""
	item_variable  : str = ""
	index_variable : str = ""


# =============================================================================
# FLOW DEFINITION
# =============================================================================

DEFAULT_VIEWPORT_WIDTH  : int = 1280
DEFAULT_VIEWPORT_HEIGHT : int = 720
DEFAULT_BROWSER_SLOW_MO : int = 50
DEFAULT_USER_AGENT      : str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"


class Viewport(WireModel):
	width  : int = DEFAULT_VIEWPORT_WIDTH
	height : int = DEFAULT_VIEWPORT_HEIGHT


class BrowserSettings(WireModel):
	headless   : Optional[bool]     = None
	stealth    : bool               = True
	keep_open  : bool               = False
	viewport   : Optional[Viewport] = None
	user_agent : Optional[str]      = None
	slow_mo    : int                = DEFAULT_BROWSER_SLOW_MO
	max_steps  : Optional[int]      = None

	@property
	def is_custom(self) -> bool:
		"""True when the flow asked for a browser unlike the shared one"""
		launch = {"headless", "stealth", "viewport", "user_agent", "slow_mo"}
		return self.model_dump(include=launch) != BrowserSettings().model_dump(include=launch)


class ApiParameter(WireModel):
	name          : str
	type          : Literal["query", "body", "param"] = "query"
	required      : bool                              = False
	default_value : Any                               = None


class RateLimitConfig(WireModel):
	window_ms    : int = 60000
	max_requests : int = 60


class ApiResponseConfig(WireModel):
	type : Literal["json", "text", "html", "binary"] = "json"


class ApiConfig(WireModel):
	route         : Optional[str]               = None
	method        : str                         = "GET"
	requires_auth : bool                        = False
	rate_limit    : Optional[RateLimitConfig]   = None
	parameters    : List[ApiParameter]          = Field(default_factory=list)
	response      : Optional[ApiResponseConfig] = None


class Flow(WireModel):
	id               : str                       = Field(default_factory=generate_id)
	name             : str
	description      : Optional[str]             = None
	nodes            : List[Node]                = Field(default_factory=list)
	edges            : List[Edge]                = Field(default_factory=list)
	variables        : Dict[str, Any]            = Field(default_factory=dict)
	browser_settings : Optional[BrowserSettings] = None
	api_config       : Optional[ApiConfig]       = None
	is_active        : bool                      = True
	created_at       : datetime                  = Field(default_factory=utc_now)
	updated_at       : datetime                  = Field(default_factory=utc_now)

	def get_node(self, node_id: str) -> Optional[Node]:
		for node in self.nodes:
			if node.id == node_id:
				return node
		return None


# =============================================================================
# EXECUTION RECORD
# =============================================================================

class ExecutionStatus(str, Enum):
	PENDING   = "pending"
	RUNNING   = "running"
	COMPLETED = "completed"
	FAILED    = "failed"
	CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
	ExecutionStatus.COMPLETED,
	ExecutionStatus.FAILED,
	ExecutionStatus.CANCELLED,
})


class ExecutionLogEntry(WireModel):
	node_id   : str
	node_name : str
	action    : str
	result    : Dict[str, Any] = Field(default_factory=dict)
	timestamp : datetime       = Field(default_factory=utc_now)


class FlowExecution(WireModel):
	id            : str                     = Field(default_factory=generate_id)
	flow_id       : Optional[str]           = None
	status        : ExecutionStatus         = ExecutionStatus.PENDING
	variables     : Dict[str, Any]          = Field(default_factory=dict)
	current_node  : Optional[str]           = None
	results       : Any                     = Field(default_factory=dict)
	error         : Optional[str]           = None
	execution_log : List[ExecutionLogEntry] = Field(default_factory=list)
	started_at    : datetime                = Field(default_factory=utc_now)
	completed_at  : Optional[datetime]      = None

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES
