import contextlib
import time

import httpx
from loguru import logger

from ..config import Config


class ServiceBootstrapper:
    """Handles model service availability checks."""

    @staticmethod
    def wait_for_http_service(url: str, timeout: int = 240, poll_interval: float = 2.0):
        """Wait for HTTP service to become available."""
        logger.info(f"[bootstrap] Waiting for HTTP service: {url}")
        start_time = time.time()

        while time.time() - start_time < timeout:
            with contextlib.suppress(httpx.HTTPError):
                with httpx.Client(timeout=5) as client:
                    response = client.get(url)
                    if 200 <= response.status_code < 500:
                        logger.info(f"[bootstrap] Available: {url}")
                        return
            time.sleep(poll_interval)

        raise RuntimeError(f"Service not available: {url}")

    @classmethod
    def bootstrap_model_service(cls, timeout: int = None):
        """Block until the model server answers its tag listing."""
        cls.wait_for_http_service(
            f"{Config.OLLAMA_URL.rstrip('/')}/api/tags",
            timeout=Config.BOOTSTRAP_TIMEOUT if timeout is None else timeout,
        )
        logger.info("[bootstrap] Model service ready.")
