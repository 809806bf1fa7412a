import logging
import contextlib
from typing import Any, AsyncIterator, Optional

import setproctitle
from starlette.applications import Starlette
from starlette.middleware import Middleware

from src.local.config import effective_settings
from src.local.supervisor import Supervisor
from src.web.middleware import SecurityHeadersMiddleware
from src.web.routes import routes

log = logging.getLogger("asgi_server")


def create_app(supervisor: Optional[Supervisor] = None, settings: Any = None) -> Starlette:
    """
    Builds the launcher API application.

    :param supervisor: The Supervisor to expose, created from `settings` if omitted.
    :param settings: Settings used when creating the Supervisor.
    :return: The Starlette application.
    """
    supervisor = supervisor or Supervisor(settings or effective_settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        setproctitle.setproctitle(supervisor.settings.PROCESS_TITLE)
        await supervisor.initialize()
        log.info("Launcher API ready.")
        yield
        await supervisor.close()
        log.info("Launcher API stopped.")

    app = Starlette(
        debug=False,
        routes=routes,
        middleware=[Middleware(SecurityHeadersMiddleware)],
        lifespan=lifespan,
    )
    app.state.supervisor = supervisor
    return app


# The main application object to be loaded by Hypercorn
app = create_app()
