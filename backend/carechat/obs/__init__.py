"""Logging and metrics wiring for the API process."""

from __future__ import annotations

from fastapi import FastAPI

from carechat.obs import logging as obs_logging
from carechat.obs.middleware import ObservabilityMiddleware
from carechat.settings import settings


def init(app: FastAPI) -> None:
	"""Configure JSON logging and instrument ``app``; a no-op when disabled or repeated."""
	if not settings.obs_enabled or getattr(app.state, "obs_installed", False):
		return
	obs_logging.configure_logging()
	app.add_middleware(ObservabilityMiddleware)
	app.state.obs_installed = True


__all__ = ["init"]
