"""Remote background removal via the OpenAI image generation tool.

The image is sent base64-encoded together with a fixed prompt; the service
answers with a transparent PNG which is returned as a data URI.

Every failure is raised as a ClearCutError subclass carrying a message that
can be shown to the user:
  - ConfigurationError     no API key configured (raised before any request)
                           or the key was rejected
  - RemoteProcessingError  the response contained no image
  - TransportError         connection, timeout or API status errors

No retries happen here. A single call is a single attempt.
"""
import base64
import binascii
import logging

import openai
from openai import AsyncOpenAI

from pipeline.errors import ConfigurationError, RemoteProcessingError, TransportError
from utils.data_uri import to_data_uri

logger = logging.getLogger(__name__)

_BACKGROUND_REMOVAL_PROMPT = """\
Remove the background from this image completely while preserving:
1. Main subject details and edges
2. Fine details like hair, fur, or transparent objects
3. Original image quality and resolution
4. All foreground elements intact

Output requirements:
- Transparent background (PNG format)
- No background artifacts or remnants
- Clean, sharp edges around the subject
- Maintain original image dimensions
- Return ONLY the image, nothing else.
"""

_IMAGE_TOOL = {
    "type": "image_generation",
    "background": "transparent",
    "output_format": "png",
}


class BackgroundRemovalClient:
    """Async client for the remote background removal service.

    `client` may be passed in (tests use a mock); otherwise an AsyncOpenAI
    instance is created on first use, so a missing key only fails the call.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gpt-4.1-mini",
        client: AsyncOpenAI | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError()
            kwargs = {"api_key": self.api_key, "max_retries": 0}
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def remove_background_bytes(self, data: bytes, mime_type: str) -> str:
        b64 = base64.standard_b64encode(data).decode()
        return await self.remove_background(b64, mime_type)

    async def remove_background(self, image_b64: str, mime_type: str) -> str:
        """Return a `data:image/png;base64,...` URI of the cut-out image."""
        if not self.api_key:
            raise ConfigurationError()
        client = self._get_client()

        try:
            response = await client.responses.create(
                model=self.model,
                input=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": _BACKGROUND_REMOVAL_PROMPT},
                            {
                                "type": "input_image",
                                "image_url": f"data:{mime_type};base64,{image_b64}",
                            },
                        ],
                    }
                ],
                tools=[_IMAGE_TOOL],
                tool_choice={"type": "image_generation"},
            )
        except openai.AuthenticationError as exc:
            logger.warning("Background removal rejected the API key: %s", exc)
            raise ConfigurationError(f"API key was rejected: {exc.message}") from exc
        except openai.APIError as exc:
            logger.warning("Background removal request failed: %s", exc)
            raise TransportError(getattr(exc, "message", None) or str(exc)) from exc

        return _extract_image(response)


def _extract_image(response) -> str:
    outputs = getattr(response, "output", None) or []
    if not outputs:
        raise RemoteProcessingError("No output returned from the image service.")

    for output in outputs:
        if getattr(output, "type", None) == "image_generation_call" and output.result:
            try:
                png = base64.b64decode(output.result, validate=True)
            except binascii.Error as exc:
                raise RemoteProcessingError("Image data in the response is not valid base64.") from exc
            return to_data_uri(png, "image/png")

    raise RemoteProcessingError()
