# app

import argparse
import asyncio
import os
import tempfile
import uvicorn


from   contextlib    import asynccontextmanager
from   dotenv        import load_dotenv
from   fastapi       import FastAPI
from   typing        import Any, List, Optional, Set


from   .api          import setup_api
from   .browser      import BrowserSessionProvider
from   .cancellation import CancellationRegistry
from   .engine       import FlowEngine
from   .event_bus    import EventBus
from   .manager      import FlowManager
from   .routes       import DynamicRouteRegistrar
from   .schema       import DEFAULT_MAX_STEPS
from   .utils        import add_middleware, log_print, setup_logging


DEFAULT_APP_HOST : str = "0.0.0.0"
DEFAULT_APP_PORT : int = 3001


def _env_flag(name: str, default: bool) -> bool:
	value = os.getenv(name)
	if value is None or value.strip() == "":
		return default
	return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
	return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


def _env_int(name: str, default: int) -> int:
	value = os.getenv(name, "").strip()
	return int(value) if value else default


@asynccontextmanager
async def lifespan(app: FastAPI):
	count = await app.state.registrar.register_all()
	log_print(f"Registered {count} flow routes")
	yield
	await app.state.engine.shutdown()
	log_print("Engine shut down")


def create_app(
	storage_dir  : Optional[str]                    = None,
	download_dir : Optional[str]                    = None,
	headless     : bool                             = True,
	api_keys     : Optional[Set[str]]               = None,
	max_steps    : int                              = DEFAULT_MAX_STEPS,
	origins      : Optional[List[str]]              = None,
	sessions     : Optional[BrowserSessionProvider] = None,
) -> FastAPI:
	event_bus = EventBus()
	manager   = FlowManager(storage_dir)
	registry  = CancellationRegistry()
	engine    = FlowEngine(
		event_bus    = event_bus,
		sessions     = sessions or BrowserSessionProvider(headless=headless),
		registry     = registry,
		store        = manager,
		max_steps    = max_steps,
		download_dir = download_dir or tempfile.gettempdir(),
	)

	manager.load()

	app = FastAPI(title="BrowserFlow", lifespan=lifespan)
	add_middleware(app, origins)

	registrar = DynamicRouteRegistrar(app, engine, manager, api_keys)
	setup_api(app, event_bus, manager, engine, registrar)

	app.state.event_bus = event_bus
	app.state.manager   = manager
	app.state.engine    = engine
	app.state.registrar = registrar
	return app


async def run_server(args: Any):
	log_print("Server starting...")

	frontend = os.getenv("FRONTEND_URL")
	app      = create_app(
		storage_dir  = args.storage or os.getenv("BROWSERFLOW_STORAGE_DIR") or None,
		download_dir = os.getenv("BROWSERFLOW_DOWNLOAD_DIR") or None,
		headless     = _env_flag("BROWSERFLOW_HEADLESS", True),
		api_keys     = set(_env_list("BROWSERFLOW_API_KEYS")),
		max_steps    = _env_int("BROWSERFLOW_MAX_STEPS", DEFAULT_MAX_STEPS),
		origins      = [frontend] if frontend else None,
	)

	config = uvicorn.Config(app, host=args.host, port=args.port)
	server = uvicorn.Server(config)

	await server.serve()

	log_print("Server shut down.")


def main():
	load_dotenv()
	setup_logging()

	parser = argparse.ArgumentParser(description="BrowserFlow server")
	parser .add_argument("--port"   , type=int, default=_env_int("PORT", DEFAULT_APP_PORT)        , help="Listening port"                        )
	parser .add_argument("--host"   , type=str, default=os.getenv("HOST", DEFAULT_APP_HOST)      , help="Listening host"                        )
	parser .add_argument("--storage", type=str, default=None                                     , help="Directory for flow and execution files")
	args   = parser.parse_args()

	asyncio.run(run_server(args))


if __name__ == "__main__":
	main()
