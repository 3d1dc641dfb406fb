"""Litestar plugin for flow integration.

This module provides the FlowPlugin, which gives a Litestar application a
shared :class:`~litestar_flows.engine.system.FlowSystem` and makes it (and its
registry) available to route handlers through dependency injection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.di import Provide
from litestar.plugins import InitPluginProtocol
from litestar.status_codes import HTTP_404_NOT_FOUND, HTTP_422_UNPROCESSABLE_ENTITY

from litestar_flows.config import FlowEngineConfig
from litestar_flows.engine.registry import FlowRegistry
from litestar_flows.engine.system import FlowSystem
from litestar_flows.exceptions import FlowInstanceNotFoundError, FlowNotFoundError, FlowsError, NoVisibleStepsError
from litestar_flows.log import configure_logging

if TYPE_CHECKING:
    from litestar import Request
    from litestar.config.app import AppConfig

    from litestar_flows.core.definition import Flow, FlowTemplate

__all__ = ["FlowPlugin", "FlowPluginConfig", "flow_error_handler"]


@dataclass
class FlowPluginConfig:
    """Configuration for the FlowPlugin.

    Attributes:
        system: Optional pre-configured FlowSystem. If not provided, one is
            created from ``registry`` and ``engine_config``.
        registry: Optional pre-configured FlowRegistry, used when ``system`` is
            not provided.
        engine_config: Engine configuration for a newly created FlowSystem.
        auto_register_flows: Flows registered on app init.
        auto_register_templates: Templates registered on app init.
        dependency_key_system: The key used for dependency injection of the
            FlowSystem. Defaults to "flow_system".
        dependency_key_registry: The key used for dependency injection of the
            FlowRegistry. Defaults to "flow_registry".
        configure_logging: Whether to set up structlog output for the
            ``litestar_flows`` logger using ``engine_config.log_level`` and
            ``engine_config.json_logs``.
        register_exception_handlers: Whether to translate flow errors raised in
            route handlers into JSON error responses.
    """

    system: FlowSystem | None = None
    registry: FlowRegistry | None = None
    engine_config: FlowEngineConfig = field(default_factory=FlowEngineConfig)
    auto_register_flows: list[Flow] = field(default_factory=list)
    auto_register_templates: list[FlowTemplate] = field(default_factory=list)
    dependency_key_system: str = "flow_system"
    dependency_key_registry: str = "flow_registry"
    configure_logging: bool = False
    register_exception_handlers: bool = True


def flow_error_handler(request: Request[Any, Any, Any], exc: FlowsError) -> Response[dict[str, Any]]:
    """Render a flow error as a JSON response.

    Unknown flows and instances map to 404, flows that cannot start to 422.
    """
    if isinstance(exc, (FlowNotFoundError, FlowInstanceNotFoundError)):
        status_code = HTTP_404_NOT_FOUND
    else:
        status_code = HTTP_422_UNPROCESSABLE_ENTITY
    return Response(
        content={"status_code": status_code, "detail": str(exc), "error": type(exc).__name__},
        status_code=status_code,
    )


class FlowPlugin(InitPluginProtocol):
    """Litestar plugin for flow management.

    Example:
        Basic usage with auto-registration::

            from litestar import Litestar, post
            from litestar_flows import Flow, FlowPlugin, FlowPluginConfig, FlowStep, FlowSystem

            onboarding = Flow(id="onboarding", steps=[FlowStep(id="welcome"), FlowStep(id="profile")])


            @post("/flows/{flow_id:str}/start")
            async def start(flow_id: str, flow_system: FlowSystem) -> dict[str, str]:
                return {"instance_id": await flow_system.start_flow(flow_id)}


            app = Litestar(
                route_handlers=[start],
                plugins=[FlowPlugin(config=FlowPluginConfig(auto_register_flows=[onboarding]))],
            )
    """

    __slots__ = ("_config", "_system")

    def __init__(self, config: FlowPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or FlowPluginConfig()
        self._system: FlowSystem | None = None

    @property
    def system(self) -> FlowSystem:
        """Get the flow system.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._system is None:
            msg = "FlowPlugin has not been initialized. Access system after app startup."
            raise RuntimeError(msg)
        return self._system

    @property
    def registry(self) -> FlowRegistry:
        """Get the flow registry of the system.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        return self.system.registry

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        config = self._config

        if config.configure_logging:
            configure_logging(config.engine_config.log_level, json_logs=config.engine_config.json_logs)

        # Initialize system
        self._system = config.system or FlowSystem(registry=config.registry, config=config.engine_config)

        # Auto-register flows and templates
        for flow in config.auto_register_flows:
            self._system.register_flow(flow)
        for template in config.auto_register_templates:
            self._system.register_template(template)

        def provide_system() -> FlowSystem:
            return self._system  # type: ignore[return-value]

        def provide_registry() -> FlowRegistry:
            return self._system.registry  # type: ignore[union-attr]

        app_config.dependencies[config.dependency_key_system] = Provide(provide_system, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_registry] = Provide(provide_registry, sync_to_thread=False)

        if config.register_exception_handlers:
            for exc_type in (FlowNotFoundError, FlowInstanceNotFoundError, NoVisibleStepsError):
                app_config.exception_handlers.setdefault(exc_type, flow_error_handler)  # type: ignore[arg-type]

        return app_config
