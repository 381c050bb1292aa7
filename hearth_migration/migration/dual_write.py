"""
Dual-write capability for the Prisma-to-Supabase transition period.

`DualWriteDecorator` wraps two implementations of the same repository
interface (store A, the legacy relational store, and store B, Supabase)
and routes each call according to the current feature flags:

1. target-only: methods that only exist on store B go straight there
2. single-write: dual-write off, call the primary store only
3. dual-write: mutating methods run on both stores concurrently
4. shadow-read: reads return the primary result, the other store is
   queried in the background for comparison

Callers get the primary store's result (or its exception) and cannot tell
the repository is wrapped.
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    Optional,
    Tuple,
    Type,
    TypeVar,
    cast,
)

from hearth_migration.config import get_config
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.background import BackgroundTaskRunner
from hearth_migration.migration.errors import (
    DualWriteConfigurationError,
    RepositoryMethodNotFoundError,
)
from hearth_migration.migration.feature_flags import FeatureFlagManager, FeatureFlags
from hearth_migration.migration.result_verifier import (
    AlertEvent,
    Outcome,
    ResultVerifier,
    Severity,
)

logger = get_logger(__name__)

T = TypeVar("T")

MUTATING_PREFIXES: Tuple[str, ...] = ("create", "update", "delete")

STORE_A = "store A"
STORE_B = "Supabase"


class ExecutionMode(str, Enum):
    TARGET_ONLY = "target_only"
    SINGLE_WRITE = "single_write"
    DUAL_WRITE = "dual_write"
    SHADOW_READ = "shadow_read"


def is_mutating(method_name: str, prefixes: Iterable[str] = MUTATING_PREFIXES) -> bool:
    return method_name.startswith(tuple(prefixes))


def classify_call(
    method_name: str,
    flags: FeatureFlags,
    target_only_methods: Iterable[str],
    prefixes: Iterable[str] = MUTATING_PREFIXES,
) -> ExecutionMode:
    """Pick exactly one execution path from a single flags snapshot."""
    if method_name in target_only_methods:
        return ExecutionMode.TARGET_ONLY
    if not flags.enable_dual_write:
        return ExecutionMode.SINGLE_WRITE
    if is_mutating(method_name, prefixes):
        return ExecutionMode.DUAL_WRITE
    return ExecutionMode.SHADOW_READ


def interface_methods(interface: type) -> Tuple[str, ...]:
    """Public coroutine methods declared by a repository interface."""
    names = []
    for name, member in inspect.getmembers(interface):
        if name.startswith("_"):
            continue
        if inspect.iscoroutinefunction(member):
            names.append(name)
    return tuple(sorted(names))


def extract_record_id(value: Any) -> Any:
    """Identifier of a freshly created record, from a dict or an object."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def _payload_of(args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Any:
    # Usually the first argument is the input data
    if len(args) == 1 and not kwargs:
        return args[0]
    if not args and not kwargs:
        return None
    return {"args": list(args), "kwargs": kwargs}


async def _settle(awaitable: Awaitable[Any]) -> Outcome:
    try:
        return Outcome(value=await awaitable)
    except Exception as e:  # noqa: BLE001
        return Outcome(error=e)


class DualWriteDecorator(Generic[T]):
    """
    Decorates a repository interface with dual-write / shadow-read behaviour.

    Every public coroutine method of `interface` is exposed as an attribute
    of the decorator with the same signature. Both stores are checked for
    those methods up front; store A may be None when it is not configured.
    """

    def __init__(
        self,
        interface: Type[T],
        store_a: Optional[T],
        store_b: T,
        *,
        flag_manager: FeatureFlagManager,
        verifier: ResultVerifier,
        api_endpoint: str,
        target_only_methods: Optional[Iterable[str]] = None,
        mutating_prefixes: Iterable[str] = MUTATING_PREFIXES,
        ignored_fields: Optional[Iterable[str]] = None,
        compensation_method: str = "delete",
        await_compensation: bool = True,
        request_id_provider: Optional[Callable[[], Optional[str]]] = None,
        runner: Optional[BackgroundTaskRunner] = None,
    ):
        if store_b is None:
            raise DualWriteConfigurationError("Supabase repository is required")

        cfg = get_config().dual_write
        self.interface = interface
        self.store_a = store_a
        self.store_b = store_b
        self.flag_manager = flag_manager
        self.verifier = verifier
        self.api_endpoint = api_endpoint
        self.target_only_methods = frozenset(
            cfg.target_only_methods if target_only_methods is None else target_only_methods
        )
        self.mutating_prefixes = tuple(mutating_prefixes)
        self.ignored_fields = frozenset(ignored_fields or ())
        self.compensation_method = compensation_method
        self.await_compensation = await_compensation
        self._request_id_provider = request_id_provider
        self.runner = runner or verifier.runner

        self.method_names = interface_methods(interface)
        self._bound_a = self._bind(store_a, STORE_A, required=self._shared_methods())
        self._bound_b = self._bind(store_b, STORE_B, required=self.method_names)
        self._methods: Dict[str, Callable[..., Awaitable[Any]]] = {
            name: self._make_method(name) for name in self.method_names
        }

    # ---------------------------------------------------------
    #  Interface plumbing
    # ---------------------------------------------------------

    def _shared_methods(self) -> Tuple[str, ...]:
        return tuple(n for n in self.method_names if n not in self.target_only_methods)

    def _bind(
        self,
        store: Optional[Any],
        label: str,
        *,
        required: Iterable[str],
    ) -> Dict[str, Callable[..., Awaitable[Any]]]:
        if store is None:
            return {}
        bound: Dict[str, Callable[..., Awaitable[Any]]] = {}
        for name in required:
            method = getattr(store, name, None)
            if not callable(method):
                raise RepositoryMethodNotFoundError(
                    f"Method {name} not found on {label} repository {type(store).__name__}"
                )
            bound[name] = method
        return bound

    def _make_method(self, name: str) -> Callable[..., Awaitable[Any]]:
        async def method(*args: Any, **kwargs: Any) -> Any:
            return await self.invoke(name, *args, **kwargs)

        method.__name__ = name
        method.__qualname__ = f"{type(self).__name__}.{name}"
        method.__doc__ = getattr(getattr(self.interface, name, None), "__doc__", None)
        return method

    def __getattr__(self, name: str) -> Callable[..., Awaitable[Any]]:
        methods = self.__dict__.get("_methods")
        if methods is not None and name in methods:
            return methods[name]
        raise AttributeError(f"{type(self).__name__} for {self.__dict__.get('interface')!r} has no method {name!r}")

    def as_repository(self) -> T:
        """The decorator typed as the interface it wraps."""
        return cast(T, self)

    # ---------------------------------------------------------
    #  Dispatch
    # ---------------------------------------------------------

    async def current_mode(self, method_name: str) -> ExecutionMode:
        if method_name in self.target_only_methods:
            return ExecutionMode.TARGET_ONLY
        flags = await self.flag_manager.get_flags()
        return classify_call(method_name, flags, self.target_only_methods, self.mutating_prefixes)

    async def invoke(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        if method_name not in self._methods:
            raise RepositoryMethodNotFoundError(
                f"Method {method_name} is not part of {self.interface.__name__}"
            )

        # Stored-procedure methods bypass flag logic entirely
        if method_name in self.target_only_methods:
            return await self._bound_b[method_name](*args, **kwargs)

        flags = await self.flag_manager.get_flags()
        mode = classify_call(method_name, flags, self.target_only_methods, self.mutating_prefixes)
        use_b = flags.enable_supabase_primary

        if mode is ExecutionMode.SINGLE_WRITE:
            return await self._single_write(method_name, use_b, args, kwargs)
        if mode is ExecutionMode.DUAL_WRITE:
            return await self._dual_write(method_name, use_b, args, kwargs)
        return await self._shadow_read(method_name, use_b, args, kwargs)

    def _methods_for(self, use_b: bool) -> Dict[str, Callable[..., Awaitable[Any]]]:
        return self._bound_b if use_b else self._bound_a

    def _request_id(self) -> Optional[str]:
        if self._request_id_provider is None:
            return None
        try:
            return self._request_id_provider()
        except Exception as e:  # noqa: BLE001
            logger.debug("[MIGRATION][DUAL-WRITE] request id provider failed: %r", e)
            return None

    async def _single_write(
        self,
        method_name: str,
        use_b: bool,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ) -> Any:
        methods = self._methods_for(use_b)
        if not methods:
            raise DualWriteConfigurationError(
                f"{STORE_B if use_b else STORE_A} repository not available for single write mode"
            )
        return await methods[method_name](*args, **kwargs)

    async def _dual_write(
        self,
        method_name: str,
        use_b: bool,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ) -> Any:
        if self.store_a is None:
            logger.warning(
                "[MIGRATION][DUAL-WRITE] %s repository not available, falling back to single write on %s",
                STORE_A,
                STORE_B,
            )
            return await self._single_write(method_name, True, args, kwargs)

        # Both calls are started before either is awaited
        raw_a, raw_b = await asyncio.gather(
            self._bound_a[method_name](*args, **kwargs),
            self._bound_b[method_name](*args, **kwargs),
            return_exceptions=True,
        )
        outcome_a, outcome_b = Outcome.of(raw_a), Outcome.of(raw_b)

        self.verifier.record_diff(
            api_endpoint=self.api_endpoint,
            operation=method_name,
            payload=_payload_of(args, kwargs),
            request_id=self._request_id(),
            result_a=outcome_a,
            result_b=outcome_b,
            ignored_fields=self.ignored_fields,
        )

        if use_b:
            primary, secondary = outcome_b, outcome_a
            primary_label, secondary_label = STORE_B, STORE_A
            secondary_methods = self._bound_a
        else:
            primary, secondary = outcome_a, outcome_b
            primary_label, secondary_label = STORE_A, STORE_B
            secondary_methods = self._bound_b

        if not primary.ok:
            logger.error(
                "[MIGRATION][DUAL-WRITE] %s %s failed: %r",
                primary_label,
                method_name,
                primary.error,
            )
            if secondary.ok:
                compensation = self._compensate(
                    method_name, secondary_label, secondary_methods, secondary.value
                )
                # A shut-down runner cannot take the undo, so it runs inline
                if self.await_compensation or self.runner.closed:
                    await compensation
                else:
                    self.runner.spawn(compensation, label=f"compensate:{method_name}")
            raise cast(BaseException, primary.error)

        if not secondary.ok:
            logger.error(
                "[MIGRATION][DUAL-WRITE] %s %s failed: %r",
                secondary_label,
                method_name,
                secondary.error,
            )
            self.verifier.dispatch_alert(
                AlertEvent(
                    severity=Severity.WARNING,
                    message=f"{secondary_label} write failed during dual write: {method_name}",
                    error=repr(secondary.error),
                    api_endpoint=self.api_endpoint,
                    operation=method_name,
                )
            )

        return primary.value

    async def _shadow_read(
        self,
        method_name: str,
        use_b: bool,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ) -> Any:
        primary_methods = self._methods_for(use_b)
        shadow_methods = self._methods_for(not use_b)

        if not primary_methods:
            raise DualWriteConfigurationError(
                f"Primary repository ({STORE_B if use_b else STORE_A}) not available"
            )

        shadow_task: Optional[asyncio.Task] = None
        if shadow_methods and not self.runner.closed:
            shadow_task = self.runner.spawn(
                _settle(shadow_methods[method_name](*args, **kwargs)),
                label=f"shadow:{method_name}",
            )

        primary_value = await primary_methods[method_name](*args, **kwargs)

        if shadow_task is not None:
            self.runner.try_spawn(
                self._compare_shadow(
                    method_name,
                    use_b,
                    _payload_of(args, kwargs),
                    self._request_id(),
                    primary_value,
                    shadow_task,
                ),
                label=f"shadow-compare:{method_name}",
            )

        return primary_value

    async def _compare_shadow(
        self,
        method_name: str,
        use_b: bool,
        payload: Any,
        request_id: Optional[str],
        primary_value: Any,
        shadow_task: "asyncio.Task[Outcome]",
    ) -> None:
        shadow = await shadow_task
        if not shadow.ok:
            logger.warning(
                "[MIGRATION][DUAL-WRITE] Shadow read %s failed: %r", method_name, shadow.error
            )
        self.verifier.record_diff(
            api_endpoint=self.api_endpoint,
            operation=method_name,
            payload=payload,
            request_id=request_id,
            primary_result=Outcome(value=primary_value),
            shadow_result=shadow,
            supabase_primary=use_b,
            ignored_fields=self.ignored_fields,
        )

    async def _compensate(
        self,
        method_name: str,
        label: str,
        methods: Dict[str, Callable[..., Awaitable[Any]]],
        created: Any,
    ) -> None:
        """Undo the secondary store's write after the primary failed."""
        if not method_name.startswith("create"):
            # No generic inverse for update/delete; leave it to reconciliation
            self.verifier.dispatch_alert(
                AlertEvent(
                    severity=Severity.ERROR,
                    message=(
                        f"{label} applied {method_name} but the primary store failed; "
                        "manual reconciliation required"
                    ),
                    api_endpoint=self.api_endpoint,
                    operation=method_name,
                )
            )
            return

        record_id = extract_record_id(created)
        try:
            if record_id is None:
                raise ValueError(f"{method_name} result on {label} has no id to compensate")
            delete = methods.get(self.compensation_method)
            if delete is None:
                raise RepositoryMethodNotFoundError(
                    f"Method {self.compensation_method} not found on {label} repository"
                )
            await delete(record_id)
            logger.info("[MIGRATION][DUAL-WRITE] Compensated %s write: %s", label, record_id)
        except Exception as e:  # noqa: BLE001
            logger.error("[MIGRATION][DUAL-WRITE] Failed to compensate %s write: %r", label, e)
            self.verifier.dispatch_alert(
                AlertEvent(
                    severity=Severity.ERROR,
                    message=f"Failed to compensate {label} write: {method_name}",
                    error=repr(e),
                    api_endpoint=self.api_endpoint,
                    operation=method_name,
                )
            )


def create_dual_write_decorator(
    interface: Type[T],
    store_a: Optional[T],
    store_b: T,
    *,
    flag_manager: FeatureFlagManager,
    verifier: ResultVerifier,
    api_endpoint: str,
    **kwargs: Any,
) -> DualWriteDecorator[T]:
    """Convenience constructor mirroring DualWriteDecorator's arguments."""
    return DualWriteDecorator(
        interface,
        store_a,
        store_b,
        flag_manager=flag_manager,
        verifier=verifier,
        api_endpoint=api_endpoint,
        **kwargs,
    )


__all__ = [
    "ExecutionMode",
    "MUTATING_PREFIXES",
    "DualWriteDecorator",
    "classify_call",
    "create_dual_write_decorator",
    "extract_record_id",
    "interface_methods",
    "is_mutating",
]
