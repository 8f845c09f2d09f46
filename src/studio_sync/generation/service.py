"""
Generation service boundary.

GenerationService is the contract the client consumes; HttpGenerationService
implements it against a Gemini-style REST API with httpx.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from studio_sync.core.exceptions import (
    CredentialError,
    GenerationError,
    InvalidRequestError,
    TRANSIENT_STATUS_CODES,
    TransientGenerationError,
)
from studio_sync.core.models import (
    ArtifactDescriptor,
    GenerationResult,
    OperationHandle,
    RequestPayload,
    RequestType,
)


class GenerationService(ABC):
    """
    Remote prompt-to-artifact service.

    Implementations raise TransientGenerationError (or httpx transport
    errors) for overload and temporary unavailability, CredentialError for
    rejected credentials and InvalidRequestError for rejected parameters.
    """

    @abstractmethod
    async def submit(
        self, request_type: RequestType, payload: RequestPayload, credential: str
    ) -> GenerationResult | OperationHandle:
        """Submit a request; asynchronous types return an operation handle."""

    @abstractmethod
    async def get_operation_status(
        self, handle: OperationHandle, credential: str
    ) -> OperationHandle:
        """Return a refreshed handle for an in-progress operation."""

    @abstractmethod
    async def download_artifact(self, descriptor: ArtifactDescriptor, credential: str) -> bytes:
        """Fetch the bytes of a finished artifact."""

    async def aclose(self) -> None:
        """Release any held resources."""


MAX_REDIRECTS = 5


class HttpGenerationService(GenerationService):
    """
    Gemini-style REST implementation.

    Endpoints:
    - images: POST models/{model}:predict
    - image edits and scripts: POST models/{model}:generateContent
    - videos: POST models/{model}:predictLongRunning, then GET {operation}
    """

    def __init__(
        self,
        *,
        base_url: str,
        image_model: str,
        edit_model: str,
        video_model: str,
        script_model: str,
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._models = {
            RequestType.GENERATE_IMAGE: image_model,
            RequestType.EDIT_IMAGE: edit_model,
            RequestType.GENERATE_VIDEO: video_model,
            RequestType.EXTEND_VIDEO: video_model,
            RequestType.GENERATE_SCRIPT: script_model,
        }
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit(
        self, request_type: RequestType, payload: RequestPayload, credential: str
    ) -> GenerationResult | OperationHandle:
        model = self._models[request_type]
        match request_type:
            case RequestType.GENERATE_IMAGE:
                data = await self._post(f"models/{model}:predict", _image_body(payload), credential, request_type)
                return _parse_image_prediction(data, request_type)
            case RequestType.EDIT_IMAGE:
                data = await self._post(f"models/{model}:generateContent", _edit_body(payload), credential, request_type)
                return _parse_inline_image(data, request_type)
            case RequestType.GENERATE_SCRIPT:
                data = await self._post(f"models/{model}:generateContent", _script_body(payload), credential, request_type)
                return _parse_text(data, request_type)
            case RequestType.GENERATE_VIDEO | RequestType.EXTEND_VIDEO:
                data = await self._post(
                    f"models/{model}:predictLongRunning", _video_body(request_type, payload), credential, request_type
                )
                return _parse_operation(data, request_type)
        raise InvalidRequestError(f"Unsupported request type: {request_type}")

    async def get_operation_status(self, handle: OperationHandle, credential: str) -> OperationHandle:
        response = await self._client.get(
            f"{self._base_url}/{handle.name}", headers=self._headers(credential)
        )
        _raise_for_status(response, handle.request_type)
        return _parse_operation(_json_body(response, handle.request_type), handle.request_type)

    async def download_artifact(self, descriptor: ArtifactDescriptor, credential: str) -> bytes:
        """
        Fetch artifact bytes, following redirects by hand.

        The API key header is only sent to the origin of the descriptor
        URI; once a redirect leaves that origin the key is dropped for the
        rest of the chain.
        """
        url = httpx.URL(descriptor.uri)
        origin = _origin(url)
        headers = self._headers(credential)

        for _ in range(MAX_REDIRECTS + 1):
            response = await self._client.get(url, headers=headers, follow_redirects=False)
            if not response.is_redirect:
                _raise_for_status(response, None)
                return response.content

            url = url.join(response.headers["location"])
            if _origin(url) != origin:
                headers = {}

        raise GenerationError(
            f"Too many redirects while downloading {descriptor.uri}",
            details={"max_redirects": MAX_REDIRECTS},
        )

    def _headers(self, credential: str) -> dict[str, str]:
        return {"x-goog-api-key": credential, "content-type": "application/json"}

    async def _post(
        self, path: str, body: dict[str, Any], credential: str, request_type: RequestType
    ) -> dict[str, Any]:
        response = await self._client.post(
            f"{self._base_url}/{path}", headers=self._headers(credential), json=body
        )
        _raise_for_status(response, request_type)
        return _json_body(response, request_type)


def _origin(url: httpx.URL) -> tuple[str, str, int | None]:
    return url.scheme, url.host, url.port


def _json_body(response: httpx.Response, request_type: RequestType) -> dict[str, Any]:
    """Decode a successful response, which must be a JSON object."""
    try:
        data = response.json()
    except ValueError as e:
        raise GenerationError(
            "Generation service returned a non-JSON response",
            request_type=request_type.value,
            status_code=response.status_code,
        ) from e
    if not isinstance(data, dict):
        raise GenerationError(
            "Generation service returned an unexpected JSON document",
            request_type=request_type.value,
            status_code=response.status_code,
        )
    return data


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"].get("message") or response.reason_phrase
    return response.reason_phrase


def _raise_for_status(response: httpx.Response, request_type: RequestType | None) -> None:
    """Convert HTTP errors to the generation error taxonomy."""
    status_code = response.status_code
    if status_code < 400:
        return

    message = _error_message(response)
    kind = request_type.value if request_type else None

    if status_code in (401, 403):
        raise CredentialError(f"Credential rejected: {message}", status_code=status_code)
    if status_code in TRANSIENT_STATUS_CODES:
        raise TransientGenerationError(
            f"Service unavailable: {message}", request_type=kind, status_code=status_code
        )
    if status_code in (400, 404, 422):
        raise InvalidRequestError(
            f"Request rejected: {message}", request_type=kind, status_code=status_code
        )
    raise GenerationError(
        f"HTTP error from generation service: {message}", request_type=kind, status_code=status_code
    )


def _image_body(payload: RequestPayload) -> dict[str, Any]:
    return {
        "instances": [{"prompt": payload.prompt}],
        "parameters": {
            "sampleCount": 1,
            "outputMimeType": "image/jpeg",
            "aspectRatio": payload.aspect_ratio or "1:1",
        },
    }


def _edit_body(payload: RequestPayload) -> dict[str, Any]:
    return {
        "contents": [
            {
                "parts": [
                    {"inlineData": {"data": payload.image_base64, "mimeType": payload.mime_type}},
                    {"text": payload.prompt},
                ]
            }
        ],
        "generationConfig": {"responseModalities": ["IMAGE"]},
    }


def _script_body(payload: RequestPayload) -> dict[str, Any]:
    return {"contents": [{"parts": [{"text": payload.prompt}]}]}


def _video_body(request_type: RequestType, payload: RequestPayload) -> dict[str, Any]:
    instance: dict[str, Any] = {"prompt": payload.prompt}
    if request_type is RequestType.EXTEND_VIDEO:
        instance["video"] = {"uri": payload.video_uri}
    elif payload.image_base64:
        instance["image"] = {"bytesBase64Encoded": payload.image_base64, "mimeType": payload.mime_type}

    parameters: dict[str, Any] = {"sampleCount": 1}
    if payload.aspect_ratio:
        parameters["aspectRatio"] = payload.aspect_ratio
    if payload.resolution:
        parameters["resolution"] = payload.resolution
    return {"instances": [instance], "parameters": parameters}


def _parse_image_prediction(data: dict[str, Any], request_type: RequestType) -> GenerationResult:
    for prediction in data.get("predictions") or []:
        encoded = prediction.get("bytesBase64Encoded")
        if encoded:
            return GenerationResult(
                mime_type=prediction.get("mimeType", "image/jpeg"), data_base64=encoded
            )
    raise GenerationError(
        "Image generation failed or returned no images", request_type=request_type.value
    )


def _candidate_parts(data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    return (candidates[0].get("content") or {}).get("parts") or []


def _parse_inline_image(data: dict[str, Any], request_type: RequestType) -> GenerationResult:
    for part in _candidate_parts(data):
        inline = part.get("inlineData")
        if inline and inline.get("data"):
            return GenerationResult(
                mime_type=inline.get("mimeType", "image/png"), data_base64=inline["data"]
            )
    raise GenerationError(
        "Image editing failed or returned no image data", request_type=request_type.value
    )


def _parse_text(data: dict[str, Any], request_type: RequestType) -> GenerationResult:
    text = "".join(part.get("text", "") for part in _candidate_parts(data)).strip()
    if not text:
        raise GenerationError("Script generation returned no text", request_type=request_type.value)
    return GenerationResult(mime_type="text/plain", text=text)


def _parse_operation(data: dict[str, Any], request_type: RequestType) -> OperationHandle:
    name = data.get("name")
    if not name:
        raise GenerationError("Operation response has no name", request_type=request_type.value)

    error = data.get("error")
    descriptor = None
    samples = (
        ((data.get("response") or {}).get("generateVideoResponse") or {}).get("generatedSamples") or []
    )
    if samples:
        uri = (samples[0].get("video") or {}).get("uri")
        if uri:
            descriptor = ArtifactDescriptor(uri=uri)

    return OperationHandle(
        name=name,
        request_type=request_type,
        done=bool(data.get("done")),
        result=descriptor,
        error=error.get("message", str(error)) if isinstance(error, dict) else error,
    )
