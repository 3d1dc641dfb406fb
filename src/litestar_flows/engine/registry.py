"""Flow registry for managing flow definitions and templates.

This module provides a registry for storing and retrieving flow definitions,
and for producing new flows from reusable templates.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import fields, replace
from typing import Any

from litestar_flows.core.definition import Flow, FlowTemplate
from litestar_flows.exceptions import FlowValidationError
from litestar_flows.log import get_logger

__all__ = ["FlowRegistry"]

logger = get_logger(__name__)

_FLOW_FIELDS = frozenset(f.name for f in fields(Flow))


class FlowRegistry:
    """Registry for storing and retrieving flow definitions and templates.

    Registering a flow under an existing id replaces the definition for
    future starts only; running instances keep the definition they were
    started with.

    Attributes:
        strict: Raise ``FlowValidationError`` for structurally invalid flows
            instead of logging the problems.
        _flows: Map of flow ids to their definitions.
        _templates: Map of template ids to templates.
    """

    def __init__(self, strict: bool = False) -> None:
        """Initialize an empty flow registry.

        Args:
            strict: Refuse to register flows whose ``validate()`` reports problems.
        """
        self.strict = strict
        self._flows: dict[str, Flow] = {}
        self._templates: dict[str, FlowTemplate] = {}

    def register_flow(self, flow: Flow) -> None:
        """Register (or replace) a flow definition.

        Args:
            flow: The flow to register.

        Raises:
            FlowValidationError: If ``strict`` is set and the flow is invalid.

        Example:
            >>> registry = FlowRegistry()
            >>> registry.register_flow(Flow(id="onboarding", steps=[FlowStep(id="welcome")]))
        """
        errors = flow.validate()
        if errors:
            if self.strict:
                raise FlowValidationError(errors)
            logger.warning("Registered flow has validation problems", flow_id=flow.id, errors=errors)

        if flow.id in self._flows:
            logger.debug("Replacing flow definition", flow_id=flow.id)
        self._flows[flow.id] = flow

    def get_flow(self, flow_id: str) -> Flow | None:
        """Return the flow registered under ``flow_id``, or None."""
        return self._flows.get(flow_id)

    def has_flow(self, flow_id: str) -> bool:
        return flow_id in self._flows

    def unregister_flow(self, flow_id: str) -> bool:
        """Remove a flow definition.

        Running instances of the flow are unaffected.

        Args:
            flow_id: The flow id.

        Returns:
            True if a flow was removed.
        """
        return self._flows.pop(flow_id, None) is not None

    def get_all_flows(self) -> list[Flow]:
        """Return every registered flow in registration order."""
        return list(self._flows.values())

    def register_template(self, template: FlowTemplate) -> None:
        """Register (or replace) a flow template."""
        self._templates[template.id] = template

    def get_template(self, template_id: str) -> FlowTemplate | None:
        return self._templates.get(template_id)

    def get_all_templates(self, category: str | None = None) -> list[FlowTemplate]:
        """Return registered templates, optionally filtered by category.

        Args:
            category: Only return templates in this category. None returns all.

        Returns:
            List of templates in registration order.
        """
        templates = list(self._templates.values())
        if category:
            return [template for template in templates if template.category == category]
        return templates

    def create_flow_from_template(
        self,
        template_id: str,
        overrides: Mapping[str, Any] | None = None,
    ) -> Flow | None:
        """Create a new flow from a registered template.

        The new flow is not registered. Its ``id`` defaults to
        ``"<template-id>-<millis>"``; ``name``, ``description`` and the
        ``on_complete``/``on_cancel`` callbacks default to the template flow's.
        Every key in ``overrides`` naming a ``Flow`` field replaces the template
        value. Steps, branches and initial data are copied, so mutating the new
        flow never touches the template.

        Args:
            template_id: The template id.
            overrides: ``Flow`` field values to apply.

        Returns:
            The new flow, or None if the template is not registered.

        Example:
            >>> flow = registry.create_flow_from_template("wizard", {"id": "signup", "name": "Sign up"})
            >>> registry.register_flow(flow)
        """
        template = self._templates.get(template_id)
        if template is None:
            logger.error("Flow template not found", template_id=template_id)
            return None

        overrides = dict(overrides or {})
        unknown = sorted(set(overrides) - _FLOW_FIELDS)
        if unknown:
            logger.warning("Ignoring unknown template overrides", template_id=template_id, keys=unknown)

        base = template.template
        flow = replace(
            base,
            id=overrides.get("id") or f"{template.id}-{int(time.time() * 1000)}",
            name=overrides.get("name") or base.name,
            description=overrides.get("description") or base.description,
            steps=list(base.steps),
            branches=list(base.branches),
            initial_data=dict(base.initial_data),
        )

        remaining = {
            key: value for key, value in overrides.items() if key in _FLOW_FIELDS and key not in {"id", "name", "description"}
        }
        return replace(flow, **remaining) if remaining else flow
