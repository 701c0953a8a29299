"""HTTP server that runs Aquascope on submitted code inside sandboxed containers."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from aiohttp import web

from .container import Container, ContainerError
from .models import Config, SingleFileRequest

log = logging.getLogger(__name__)

ContainerFactory = Callable[[], Awaitable[Container]]
Analysis = Callable[[Container, SingleFileRequest], Awaitable]

_ALLOWED_METHODS = "GET, POST"
_ALLOWED_HEADERS = "content-type"


class ServeErrorKind(Enum):
    CONTAINER_CREATION = "Creating the container failed {}"
    PERMISSIONS = "Running permissions analysis failed  {}"
    INTERPRETER = "Running interpreter failed {}"
    UNKNOWN = "An Unknown error occurred: {}"


class ServeError(Exception):
    """A request could not be served; reported to the client with status 500."""

    def __init__(self, kind: ServeErrorKind, detail: object) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(kind.value.format(detail))


def _error_response(error: ServeError) -> web.Response:
    return web.Response(status=500, text=str(error))


@web.middleware
async def _cors_and_fallback(request: web.Request, handler):
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        response = web.Response(status=200)
        response.headers["Access-Control-Allow-Methods"] = _ALLOWED_METHODS
        response.headers["Access-Control-Allow-Headers"] = _ALLOWED_HEADERS
    else:
        try:
            response = await handler(request)
        except web.HTTPNotFound:
            response = web.Response(status=404, text=f"No route {request.rel_url}")
    response.headers["Access-Control-Allow-Origin"] = "*"
    return response


async def _read_request(request: web.Request) -> SingleFileRequest:
    """Decode the body, raising ValueError with a client-facing message."""
    if request.content_type != "application/json":
        raise ValueError(
            "Unable to deserialize request: "
            "Expected request with `Content-Type: application/json`"
        )
    return SingleFileRequest.from_json(await request.read())


async def _with_container(
    factory: ContainerFactory,
    request: SingleFileRequest,
    analysis: Analysis,
    kind: ServeErrorKind,
):
    try:
        container = await factory()
    except ContainerError as error:
        raise ServeError(ServeErrorKind.CONTAINER_CREATION, error) from error
    try:
        return await analysis(container, request)
    except ContainerError as error:
        raise ServeError(kind, error) from error
    finally:
        try:
            await container.cleanup()
        except ContainerError as error:
            log.warning("Error cleaning up container: %r", error)


def _single_file_endpoint(
    name: str,
    factory: ContainerFactory,
    analysis: Analysis,
    kind: ServeErrorKind,
):
    async def endpoint(request: web.Request) -> web.Response:
        log.debug("Received request for %s", name)
        try:
            body = await _read_request(request)
        except ValueError as error:
            return web.json_response({"error": str(error)})
        try:
            result = await _with_container(factory, body, analysis, kind)
        except ServeError as error:
            log.debug("returning error %s", error)
            return _error_response(error)
        payload = result.to_json()
        log.debug("returning JSON %r", payload)
        return web.json_response(payload)

    return endpoint


async def _hi(_request: web.Request) -> web.Response:
    log.info("Received Message")
    return web.Response(text="HELLO!")


async def _default_factory() -> Container:
    return await Container.create(use_docker=True)


def create_app(container_factory: ContainerFactory | None = None) -> web.Application:
    """Build the application; ``container_factory`` supplies a fresh container per request."""
    factory = container_factory or _default_factory
    app = web.Application(middlewares=[_cors_and_fallback])
    app.router.add_get("/hi", _hi)
    app.router.add_post(
        "/permissions",
        _single_file_endpoint(
            "permissions",
            factory,
            lambda container, req: container.permissions(req),
            ServeErrorKind.PERMISSIONS,
        ),
    )
    app.router.add_post(
        "/interpreter",
        _single_file_endpoint(
            "interpreter",
            factory,
            lambda container, req: container.interpreter(req),
            ServeErrorKind.INTERPRETER,
        ),
    )
    return app


def serve(config: Config) -> None:
    """Serve requests on the configured address until interrupted."""
    host, port = config.socket_address()
    use_docker = not config.no_docker
    if not use_docker:
        log.warning("Requests will be processed outside of docker")

    async def factory() -> Container:
        return await Container.create(use_docker=use_docker)

    log.info("Serving requests on %s:%s", config.address, config.port)
    web.run_app(create_app(factory), host=host, port=port, print=None)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="aquascope-serve",
        description=(
            "Serve Aquascope over HTTP. Configured by AQUASCOPE_SERVER_ADDRESS, "
            "AQUASCOPE_SERVER_PORT and AQUASCOPE_NO_DOCKER."
        ),
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    serve(Config.from_env())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())