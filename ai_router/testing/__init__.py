"""Offline stand-ins for backend models."""

from __future__ import annotations

from ai_router.testing.scripted import DEFAULT_REPLY, ScriptedBuilder, ScriptedClient, Step, StepKind

__all__ = ["DEFAULT_REPLY", "ScriptedBuilder", "ScriptedClient", "Step", "StepKind"]
