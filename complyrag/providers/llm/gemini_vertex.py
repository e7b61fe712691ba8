from __future__ import annotations

import asyncio
import logging

from complyrag.core.config import get_settings
from complyrag.core.errors import ProviderConfigError, UpstreamServiceError

logger = logging.getLogger(__name__)


class GeminiVertexProvider:
    def __init__(self) -> None:
        self._settings = get_settings()

    def _validate_config(self) -> tuple[str, str, str]:
        # Fail fast to avoid confusing downstream SDK errors.
        project = self._settings.google_cloud_project
        location = self._settings.google_cloud_location
        model = self._settings.gemini_model
        missing = []
        if not project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not location:
            missing.append("GOOGLE_CLOUD_LOCATION")
        if not model:
            missing.append("GEMINI_MODEL")
        if missing:
            raise ProviderConfigError(f"Vertex config missing: set {', '.join(missing)} in .env.")
        return project, location, model

    async def complete(self, prompt: str) -> str:
        project, location, model_name = self._validate_config()

        try:
            from vertexai import init
            from vertexai.generative_models import GenerativeModel
            from google.auth.exceptions import DefaultCredentialsError, RefreshError
            from google.api_core.exceptions import PermissionDenied, Unauthenticated
        except Exception as exc:  # pragma: no cover - import errors are environment-specific
            raise ProviderConfigError(
                "Vertex AI SDK not available. Install the vertex extra (google-cloud-aiplatform)."
            ) from exc

        def _generate() -> str:
            init(project=project, location=location)
            model = GenerativeModel(model_name)
            response = model.generate_content(prompt)
            return getattr(response, "text", "") or ""

        logger.info("vertex_complete_start model=%s", model_name)
        try:
            # The SDK call blocks; run it off the event loop so caller timeouts apply.
            return await asyncio.to_thread(_generate)
        except (DefaultCredentialsError, RefreshError, PermissionDenied, Unauthenticated) as exc:
            logger.warning("vertex_complete_auth_error model=%s", model_name)
            raise UpstreamServiceError(
                "Vertex auth error: run `gcloud auth application-default login`.",
                service="completion",
                retryable=False,
            ) from exc
        except UpstreamServiceError:
            raise
        except Exception as exc:  # noqa: BLE001 - SDK errors are mapped to one upstream failure
            logger.error("vertex_complete_error model=%s", model_name)
            raise UpstreamServiceError(
                "Vertex AI request failed. Check credentials and model access.",
                service="completion",
            ) from exc
