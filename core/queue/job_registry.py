import asyncio
import importlib
import inspect
import logging
import pkgutil
from typing import Any, Callable, Dict, Optional, Union

from core.exceptions import UnknownJobTypeError
from core.job import JobHandler

Handler = Union[JobHandler, Callable[[Any], Any]]


class JobRegistry:
    """
    Maps job type strings to handlers.
    Handlers are JobHandler instances or plain callables taking the payload;
    coroutine functions are awaited, regular functions run in a thread.
    """

    def __init__(self):
        self.logger = logging.getLogger("WorkQueue.JobRegistry")
        self._handlers: Dict[str, Handler] = {}

    def register(self, job_type: str, handler: Handler) -> None:
        """
        Register the handler for a job type.

        Args:
            job_type: Job type string used at enqueue time
            handler: JobHandler instance or callable taking the payload
        """
        if not job_type:
            raise ValueError("job_type must be a non-empty string")
        if not isinstance(handler, JobHandler) and not callable(handler):
            raise TypeError(f"Handler for '{job_type}' is not callable")
        if job_type in self._handlers:
            self.logger.warning(f"Replacing handler for job type '{job_type}'")

        self._handlers[job_type] = handler
        self.logger.debug(f"Registered handler for job type '{job_type}'")

    def handler(self, job_type: str):
        """Decorator form of ``register``."""
        def decorator(func):
            self.register(job_type, func)
            return func
        return decorator

    def resolve(self, job_type: str) -> Handler:
        """
        Get the handler for a job type.

        Raises:
            UnknownJobTypeError: If no handler is registered
        """
        try:
            return self._handlers[job_type]
        except KeyError:
            raise UnknownJobTypeError(job_type) from None

    def get_handler_instance(self, job_type: str) -> Optional[JobHandler]:
        """Return the handler if it is a JobHandler, else None."""
        handler = self._handlers.get(job_type)
        return handler if isinstance(handler, JobHandler) else None

    def timeout_for(self, job_type: str) -> Optional[float]:
        handler = self.get_handler_instance(job_type)
        return handler.timeout if handler else None

    async def dispatch(self, job_type: str, payload: Any) -> Any:
        """
        Run the handler for a job type.

        Regular functions run in a worker thread so they can be timed out
        and do not block the event loop.

        Returns:
            Whatever the handler returns

        Raises:
            UnknownJobTypeError: If no handler is registered
        """
        handler = self.resolve(job_type)

        if isinstance(handler, JobHandler):
            return await handler.handle(payload)

        if inspect.iscoroutinefunction(handler):
            return await handler(payload)

        result = await asyncio.to_thread(handler, payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    @property
    def job_types(self):
        return sorted(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def discover(self, package: str = "app.jobs") -> "JobRegistry":
        """
        Import every module in a package and register its JobHandler subclasses.

        Args:
            package: Dotted name of the package holding handler modules

        Returns:
            This registry
        """
        try:
            jobs_package = importlib.import_module(package)
        except ImportError as e:
            self.logger.error(f"Could not import job handler package '{package}': {e}")
            return self

        handler_modules = []
        for finder, name, ispkg in pkgutil.iter_modules(jobs_package.__path__):
            if not ispkg and not name.startswith("_"):  # Skip packages and private modules
                handler_modules.append(f"{package}.{name}")

        self.logger.info(f"Discovered job handler modules: {handler_modules}")

        for module_name in handler_modules:
            self._load_handler_module(module_name)

        self.logger.info(
            f"Registered {len(self._handlers)} job type(s) from {len(handler_modules)} modules"
        )
        return self

    def _load_handler_module(self, module_name: str) -> None:
        """
        Register the concrete JobHandler subclasses defined in a module.

        Args:
            module_name: Full module name (e.g., 'app.jobs.send_email_job')
        """
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            self.logger.error(f"Could not import job handler module '{module_name}': {e}")
            return

        found = 0
        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(obj, JobHandler)
                and obj is not JobHandler
                and obj.__module__ == module_name
                and not inspect.isabstract(obj)
                and obj.job_type
            ):
                self.register(obj.job_type, obj())
                found += 1

        if not found:
            self.logger.warning(f"Module {module_name} does not define any JobHandler")

