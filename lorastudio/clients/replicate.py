"""HTTP client for the Replicate training and prediction APIs."""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from lorastudio.config import Settings, get_settings
from lorastudio.errors import SynthesisJobFailed, TrainingServiceError

logger = logging.getLogger(__name__)

# Replicate job statuses
SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELED = "canceled"
TERMINAL_STATUSES = frozenset({SUCCEEDED, FAILED, CANCELED})


@dataclass
class TrainingSnapshot:
    """State of a training job as reported by Replicate."""

    id: str
    status: str
    progress: Optional[float] = None
    error: Optional[str] = None
    version: Optional[str] = None


@dataclass
class PredictionResult:
    """Outcome of a finished prediction."""

    id: str
    status: str
    outputs: list[Any] = field(default_factory=list)
    error: Optional[str] = None


_PROGRESS_RE = re.compile(r"(\d{1,3}(?:\.\d+)?)%")


def _parse_progress(logs: Optional[str]) -> Optional[float]:
    """Extract the last ``NN%`` figure the trainer printed, if any."""
    if not logs:
        return None
    matches = _PROGRESS_RE.findall(logs)
    if not matches:
        return None
    return min(100.0, float(matches[-1]))


class ReplicateClient:
    """Thin async wrapper around the Replicate REST API.

    Training calls raise ``TrainingServiceError`` and prediction calls raise
    ``SynthesisJobFailed`` so that callers see one error kind per external
    system.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or get_settings()
        token = self._settings.replicate_api_token.get_secret_value()
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = http_client or httpx.AsyncClient(
            base_url=self._settings.replicate_api_url.rstrip("/"),
            timeout=httpx.Timeout(self._settings.replicate_timeout_seconds),
            headers=headers,
        )

    async def close(self):
        await self._client.aclose()

    # -- Training -----------------------------------------------------------

    async def submit_training(
        self,
        images: list[str],
        trigger_word: str,
        hyperparameters: dict[str, Any],
    ) -> str:
        """
        Start a training job.

        Args:
            images: URLs of the reference photos
            trigger_word: Token the trained model will respond to
            hyperparameters: Trainer input parameters

        Returns:
            The external training job id
        """
        trainer, _, version = self._settings.replicate_trainer_version.partition(":")
        payload = {
            "destination": self._settings.replicate_training_destination,
            "input": {
                "input_images": images,
                "trigger_word": trigger_word,
                **hyperparameters,
            },
        }
        try:
            response = await self._client.post(
                f"/models/{trainer}/versions/{version}/trainings", json=payload
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Training submission failed: {e}")
            raise TrainingServiceError(str(e)) from e

        training_id = data.get("id")
        if not training_id:
            raise TrainingServiceError("Training service returned no job id")
        return training_id

    async def get_training(self, training_id: str) -> TrainingSnapshot:
        """Fetch the current state of a training job."""
        try:
            response = await self._client.get(f"/trainings/{training_id}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Training status lookup failed for {training_id}: {e}")
            raise TrainingServiceError(str(e)) from e

        output = data.get("output") or {}
        return TrainingSnapshot(
            id=data.get("id", training_id),
            status=data.get("status", "unknown"),
            progress=_parse_progress(data.get("logs")),
            error=data.get("error"),
            version=output.get("version") if isinstance(output, dict) else None,
        )

    # -- Predictions --------------------------------------------------------

    async def submit_prediction(self, version: str, inputs: dict[str, Any]) -> str:
        """Start a prediction and return its id."""
        try:
            response = await self._client.post(
                "/predictions", json={"version": version, "input": inputs}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Prediction submission failed: {e}")
            raise SynthesisJobFailed(str(e)) from e

        prediction_id = data.get("id")
        if not prediction_id:
            raise SynthesisJobFailed("Synthesis service returned no job id")
        return prediction_id

    async def get_prediction(self, prediction_id: str) -> PredictionResult:
        try:
            response = await self._client.get(f"/predictions/{prediction_id}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise SynthesisJobFailed(str(e)) from e

        output = data.get("output")
        if output is None:
            outputs = []
        elif isinstance(output, list):
            outputs = output
        else:
            outputs = [output]

        return PredictionResult(
            id=data.get("id", prediction_id),
            status=data.get("status", "unknown"),
            outputs=outputs,
            error=data.get("error"),
        )

    async def wait_prediction(
        self,
        prediction_id: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> PredictionResult:
        """
        Poll a prediction until it reaches a terminal state.

        Raises:
            SynthesisJobFailed: the job failed, was canceled or did not
                finish within ``timeout`` seconds
        """
        timeout = timeout if timeout is not None else self._settings.synthesis_timeout_seconds
        interval = (
            poll_interval
            if poll_interval is not None
            else self._settings.synthesis_poll_interval_seconds
        )

        async def _poll() -> PredictionResult:
            while True:
                result = await self.get_prediction(prediction_id)
                if result.status in TERMINAL_STATUSES:
                    return result
                await asyncio.sleep(interval)

        try:
            result = await asyncio.wait_for(_poll(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Prediction {prediction_id} did not finish within {timeout}s")
            raise SynthesisJobFailed(
                f"Synthesis job timed out after {timeout:.0f}s", job_id=prediction_id
            ) from e

        if result.status != SUCCEEDED:
            raise SynthesisJobFailed(
                result.error or f"Synthesis job {result.status}", job_id=prediction_id
            )
        return result


_client: Optional[ReplicateClient] = None


def get_replicate_client() -> ReplicateClient:
    """Process-wide client sharing one connection pool."""
    global _client
    if _client is None:
        _client = ReplicateClient()
    return _client


async def close_replicate_client():
    """Close the shared client, if one was created."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
