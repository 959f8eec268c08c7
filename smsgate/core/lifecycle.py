"""Process lifecycle: provider setup, HTTP server and interrupt watcher."""
from __future__ import annotations

import asyncio
import contextlib
import math
import signal
import threading
from typing import Any, Callable, Iterable

import uvicorn

from smsgate.domain.errors import FatalStartupError
from smsgate.domain.models import ProviderStatus
from smsgate.observability.logging import get_logger
from smsgate.providers.base import Provider, RegistrationProvider, supports_registration

log = get_logger("lifecycle")


class GatewayServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the Lifecycle."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def make_server(app: Any, host: str, port: int, grace_s: float) -> GatewayServer:
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        timeout_graceful_shutdown=max(1, math.ceil(grace_s)),
    )
    return GatewayServer(config)


class Lifecycle:
    """Runs provider setup, the HTTP server and the interrupt watcher as three tasks.

    - A setup failure or a server that stops on its own is fatal:
      `run` raises FatalStartupError without draining or tearing down.
      Only `provider.abort()` runs, to drop local resources such as the
      instance lock.
    - On interrupt the server stops accepting connections, in-flight
      requests get `grace_s` seconds, a still-pending setup is cancelled,
      then the provider is shut down. `run` returns once all three tasks
      have finished.
    - With `register` set, a verification code is read through
      `code_reader` (on a daemon thread) before the server starts. An
      interrupt while waiting for the code cancels setup, shuts the
      provider down and returns without starting the server.
    """

    def __init__(
        self,
        provider: Provider,
        server: Any,
        *,
        grace_s: float = 5.0,
        register: bool = False,
        code_reader: Callable[[], str] | None = None,
        signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
    ):
        self.provider = provider
        self.server = server
        self.grace_s = grace_s
        self.register = register
        self.code_reader = code_reader
        self.signals = tuple(signals)
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self.signals:
            loop.add_signal_handler(sig, self.request_stop)
        tasks: set[asyncio.Task] = set()
        try:
            setup_task = asyncio.create_task(self._setup(), name="provider-setup")
            tasks.add(setup_task)
            if self.register and not await self._register(setup_task):
                log.info("gateway_stopped")
                return
            serve_task = asyncio.create_task(self._serve(), name="http-server")
            watch_task = asyncio.create_task(self._watch(setup_task, serve_task), name="interrupt-watcher")
            tasks.update((serve_task, watch_task))

            pending = set(tasks)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for t in done:
                    if t.cancelled() or t.exception() is None:
                        continue
                    exc = t.exception()
                    log.critical("fatal_error", task=t.get_name(), error=str(exc))
                    if isinstance(exc, FatalStartupError):
                        raise exc
                    raise FatalStartupError(f"{t.get_name()} failed: {exc}") from exc
            log.info("gateway_stopped")
        except FatalStartupError:
            # no drain, but locks and pollers must not outlive the attempt
            self.provider.abort()
            raise
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            for sig in self.signals:
                loop.remove_signal_handler(sig)

    async def _setup(self) -> None:
        self.provider.status = ProviderStatus.starting
        try:
            await self.provider.setup()
        except Exception as e:
            self.provider.status = ProviderStatus.error
            raise FatalStartupError(f"provider setup failed: {e}") from e
        # an interrupt may have arrived while setup was finishing
        if self.provider.status is ProviderStatus.starting:
            self.provider.status = ProviderStatus.ready
        log.info("provider_ready")

    async def _register(self, setup_task: asyncio.Task) -> bool:
        """Feed the verification code to the provider.

        Returns False when an interrupt arrived while waiting for the code;
        setup has then been cancelled and the provider shut down.
        """
        if not supports_registration(self.provider):
            raise FatalStartupError("provider does not support registration")
        if self.code_reader is None:
            raise FatalStartupError("registration requested without a code reader")
        code_task = asyncio.create_task(self._read_code(), name="verification-code")
        stop_task = asyncio.create_task(self._stop.wait(), name="registration-interrupt")
        try:
            while not (code_task.done() or stop_task.done()):
                waiting = {code_task, stop_task}
                if not setup_task.done():
                    waiting.add(setup_task)
                await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if setup_task.done() and not setup_task.cancelled() and setup_task.exception() is not None:
                    exc = setup_task.exception()
                    log.critical("fatal_error", task=setup_task.get_name(), error=str(exc))
                    raise exc
        finally:
            stop_task.cancel()
            if not code_task.done():
                code_task.cancel()

        if self._stop.is_set():
            log.info("shutdown_requested", during="registration")
            self.provider.status = ProviderStatus.stopping
            if not setup_task.done():
                setup_task.cancel()
            await asyncio.wait({setup_task})
            await self.provider.shutdown()
            self.provider.status = ProviderStatus.stopped
            log.info("provider_stopped")
            return False

        try:
            code = code_task.result()
        except Exception as e:
            raise FatalStartupError(f"verification code unavailable: {e}") from e
        provider: RegistrationProvider = self.provider  # type: ignore[assignment]
        provider.set_verification_code(code)
        log.info("verification_code_submitted")
        return True

    async def _read_code(self) -> str:
        # input() can't be cancelled; a daemon thread doesn't hold up exit
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[str] = loop.create_future()

        def _resolve(setter, value) -> None:
            if not fut.done():
                setter(value)

        def _worker() -> None:
            try:
                code = self.code_reader()
            except BaseException as e:
                setter, value = fut.set_exception, e
            else:
                setter, value = fut.set_result, code
            # the loop is gone if the gateway stopped while the prompt was open
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(_resolve, setter, value)

        threading.Thread(target=_worker, name="verification-code", daemon=True).start()
        return await fut

    async def _serve(self) -> None:
        try:
            await self.server.serve()
        except SystemExit as e:
            # uvicorn exits the interpreter when it cannot bind
            raise FatalStartupError(f"http server failed to start (exit {e.code})") from e
        if not self._stop.is_set():
            raise FatalStartupError("http server stopped unexpectedly")

    async def _watch(self, setup_task: asyncio.Task, serve_task: asyncio.Task) -> None:
        await self._stop.wait()
        log.info("shutdown_requested", grace_s=self.grace_s)
        self.provider.status = ProviderStatus.stopping
        self.server.should_exit = True
        done, _ = await asyncio.wait({serve_task}, timeout=self.grace_s)
        if not done:
            log.warning("drain_timeout", grace_s=self.grace_s)
            self.server.force_exit = True
            await asyncio.wait({serve_task})
        if not setup_task.done():
            setup_task.cancel()
        await asyncio.wait({setup_task})
        await self.provider.shutdown()
        self.provider.status = ProviderStatus.stopped
        log.info("provider_stopped")
